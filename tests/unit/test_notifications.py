from datetime import UTC, datetime

import pytest

from app.domain.enums import EndedBy, NotificationKind
from app.domain.notifications import ChatEndedNotice, RequestExpiredNotice, notice_payload


def test_notice_kind_is_fixed_per_type() -> None:
    notice = ChatEndedNotice(
        assignment_id="a1",
        customer_id="c1",
        operator_id="op1",
        ended_by=EndedBy.CUSTOMER,
        completed_at=datetime(2026, 3, 1, 10, 0, tzinfo=UTC),
    )

    assert notice.kind == NotificationKind.CHAT_ENDED
    assert notice_payload(notice) == {
        "assignment_id": "a1",
        "customer_id": "c1",
        "operator_id": "op1",
        "ended_by": "customer",
        "completed_at": "2026-03-01T10:00:00+00:00",
    }


def test_expired_notice_payload() -> None:
    notice = RequestExpiredNotice(
        request_id="r1",
        customer_id="c1",
        created_at=datetime(2026, 3, 1, 9, 0, tzinfo=UTC),
    )

    assert notice.kind == NotificationKind.REQUEST_EXPIRED
    assert notice_payload(notice)["request_id"] == "r1"


def test_unknown_notice_type_is_rejected() -> None:
    with pytest.raises(TypeError):
        notice_payload(object())
