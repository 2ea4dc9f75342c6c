import logging
from typing import Protocol

from app.domain.notifications import Notice, notice_payload

logger = logging.getLogger(__name__)


class ChatTransport(Protocol):
    async def deliver(self, notice: Notice) -> None: ...


class NoopChatTransport:
    async def deliver(self, notice: Notice) -> None:
        _ = notice
        return None


class LoggingChatTransport:
    """Default hand-off: records each notice for the message transport to pick up."""

    async def deliver(self, notice: Notice) -> None:
        logger.info("chat transport notice %s %s", notice.kind.value, notice_payload(notice))

