from datetime import datetime
from enum import Enum as PyEnum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.domain.enums import AssignmentStatus, ChatRequestStatus, EndedBy


def _enum_values(enum_cls: type[PyEnum]) -> list[str]:
    return [member.value for member in enum_cls]


def _new_id() -> str:
    return uuid4().hex


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class OperatorModel(Base, TimestampMixin):
    __tablename__ = "operators"
    __table_args__ = (
        CheckConstraint("active_chats >= 0", name="ck_operator_active_chats_non_negative"),
        CheckConstraint("max_chats > 0", name="ck_operator_max_chats_positive"),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    is_online: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    active_chats: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_chats: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    last_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ChatRequestModel(Base, TimestampMixin):
    __tablename__ = "chat_requests"
    __table_args__ = (
        Index("ix_chat_requests_customer_created", "customer_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    customer_id: Mapped[str] = mapped_column(String(128), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(120), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[ChatRequestStatus] = mapped_column(
        Enum(
            ChatRequestStatus,
            name="chat_request_status",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=ChatRequestStatus.WAITING,
        index=True,
    )
    assigned_operator_id: Mapped[str | None] = mapped_column(
        String(128), ForeignKey("operators.id", ondelete="SET NULL"), nullable=True
    )
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ChatAssignmentModel(Base, TimestampMixin):
    __tablename__ = "chat_assignments"
    __table_args__ = (
        UniqueConstraint("request_id", name="uq_chat_assignment_request"),
        # At most one open assignment per customer.
        Index(
            "uq_chat_assignment_open_customer",
            "customer_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'active')"),
            sqlite_where=text("status IN ('pending', 'active')"),
        ),
        Index("ix_chat_assignments_operator_status", "operator_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    request_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("chat_requests.id", ondelete="CASCADE"), nullable=False
    )
    customer_id: Mapped[str] = mapped_column(String(128), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(120), nullable=False)
    operator_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("operators.id", ondelete="CASCADE"), nullable=False
    )
    operator_name: Mapped[str] = mapped_column(String(120), nullable=False)
    status: Mapped[AssignmentStatus] = mapped_column(
        Enum(
            AssignmentStatus,
            name="chat_assignment_status",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=AssignmentStatus.ACTIVE,
    )
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_message_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_by: Mapped[EndedBy | None] = mapped_column(
        Enum(EndedBy, name="chat_ended_by", values_callable=_enum_values),
        nullable=True,
    )
