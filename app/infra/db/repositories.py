from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import Select, and_, exists, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from app.domain.enums import AssignmentStatus, ChatRequestStatus, EndedBy
from app.domain.records import ChatAssignment, ChatRequest, OperatorStatus
from app.infra.db.models import ChatAssignmentModel, ChatRequestModel, OperatorModel

OPEN_ASSIGNMENT_STATUSES = (AssignmentStatus.PENDING, AssignmentStatus.ACTIVE)


def to_operator_status(row: OperatorModel) -> OperatorStatus:
    return OperatorStatus(
        id=row.id,
        name=row.name,
        is_online=row.is_online,
        is_available=row.is_available,
        active_chats=row.active_chats,
        max_chats=row.max_chats,
        last_seen=row.last_seen,
    )


def to_chat_request(row: ChatRequestModel) -> ChatRequest:
    return ChatRequest(
        id=row.id,
        customer_id=row.customer_id,
        customer_name=row.customer_name,
        message=row.message,
        status=row.status,
        created_at=row.created_at,
        assigned_operator_id=row.assigned_operator_id,
        assigned_at=row.assigned_at,
    )


def to_chat_assignment(row: ChatAssignmentModel) -> ChatAssignment:
    return ChatAssignment(
        id=row.id,
        request_id=row.request_id,
        customer_id=row.customer_id,
        customer_name=row.customer_name,
        operator_id=row.operator_id,
        operator_name=row.operator_name,
        status=row.status,
        created_at=row.created_at,
        accepted_at=row.accepted_at,
        completed_at=row.completed_at,
        last_message_at=row.last_message_at,
        ended_by=row.ended_by,
    )


class OperatorRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, operator_id: str) -> OperatorModel | None:
        return await self.session.get(OperatorModel, operator_id, populate_existing=True)

    async def list_all(self) -> list[OperatorModel]:
        stmt: Select[tuple[OperatorModel]] = select(OperatorModel).order_by(
            OperatorModel.created_at.asc(), OperatorModel.id.asc()
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def upsert(
        self,
        operator_id: str,
        *,
        now: datetime,
        default_max_chats: int,
        name: str | None = None,
        is_online: bool | None = None,
        is_available: bool | None = None,
        max_chats: int | None = None,
    ) -> OperatorModel:
        changes: dict[str, object] = {"last_seen": now, "updated_at": now}
        if name is not None:
            changes["name"] = name
        if is_online is not None:
            changes["is_online"] = is_online
        if is_available is not None:
            changes["is_available"] = is_available
        if max_chats is not None:
            changes["max_chats"] = max_chats

        stmt = (
            pg_insert(OperatorModel)
            .values(
                id=operator_id,
                name=name if name is not None else operator_id,
                is_online=bool(is_online),
                is_available=bool(is_available),
                active_chats=0,
                max_chats=max_chats if max_chats is not None else default_max_chats,
                last_seen=now,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_update(index_elements=[OperatorModel.id], set_=changes)
            .returning(OperatorModel)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def adjust_load(self, operator_id: str, delta: int) -> OperatorModel | None:
        stmt = (
            update(OperatorModel)
            .where(OperatorModel.id == operator_id)
            .values(active_chats=func.greatest(OperatorModel.active_chats + delta, 0))
            .returning(OperatorModel)
            .execution_options(populate_existing=True, synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def reserve_slot(self, operator_id: str) -> OperatorModel | None:
        """Increment load only while the operator is still assignable."""
        stmt = (
            update(OperatorModel)
            .where(
                OperatorModel.id == operator_id,
                OperatorModel.is_online.is_(True),
                OperatorModel.is_available.is_(True),
                OperatorModel.active_chats < OperatorModel.max_chats,
            )
            .values(active_chats=OperatorModel.active_chats + 1)
            .returning(OperatorModel)
            .execution_options(populate_existing=True, synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def set_all_offline(self) -> int:
        stmt = (
            update(OperatorModel)
            .where(OperatorModel.is_online.is_(True))
            .values(is_online=False)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)


class ChatRequestRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, request_id: str) -> ChatRequestModel | None:
        return await self.session.get(ChatRequestModel, request_id, populate_existing=True)

    async def create(
        self,
        customer_id: str,
        customer_name: str,
        message: str,
        now: datetime,
    ) -> ChatRequestModel:
        request = ChatRequestModel(
            customer_id=customer_id,
            customer_name=customer_name,
            message=message,
            status=ChatRequestStatus.WAITING,
            created_at=now,
            updated_at=now,
        )
        self.session.add(request)
        await self.session.flush()
        return request

    async def latest_for_customer(self, customer_id: str) -> ChatRequestModel | None:
        stmt: Select[tuple[ChatRequestModel]] = (
            select(ChatRequestModel)
            .where(ChatRequestModel.customer_id == customer_id)
            .order_by(ChatRequestModel.created_at.desc(), ChatRequestModel.id.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_pending(self) -> list[ChatRequestModel]:
        newer = aliased(ChatRequestModel)
        superseded = exists().where(
            newer.customer_id == ChatRequestModel.customer_id,
            or_(
                newer.created_at > ChatRequestModel.created_at,
                and_(
                    newer.created_at == ChatRequestModel.created_at,
                    newer.id > ChatRequestModel.id,
                ),
            ),
        )
        stmt: Select[tuple[ChatRequestModel]] = (
            select(ChatRequestModel)
            .where(ChatRequestModel.status == ChatRequestStatus.WAITING, ~superseded)
            .order_by(ChatRequestModel.created_at.desc(), ChatRequestModel.id.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def has_newer_for_customer(self, request: ChatRequestModel) -> bool:
        stmt = select(
            exists().where(
                ChatRequestModel.customer_id == request.customer_id,
                or_(
                    ChatRequestModel.created_at > request.created_at,
                    and_(
                        ChatRequestModel.created_at == request.created_at,
                        ChatRequestModel.id > request.id,
                    ),
                ),
            )
        )
        result = await self.session.execute(stmt)
        return bool(result.scalar())

    async def list_waiting_created_before(self, cutoff: datetime) -> list[ChatRequestModel]:
        stmt: Select[tuple[ChatRequestModel]] = (
            select(ChatRequestModel)
            .where(
                ChatRequestModel.status == ChatRequestStatus.WAITING,
                ChatRequestModel.created_at < cutoff,
            )
            .order_by(ChatRequestModel.created_at.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def mark_terminal(
        self,
        request_id: str,
        status: ChatRequestStatus,
        operator_id: str | None,
        now: datetime,
    ) -> ChatRequestModel | None:
        """Compare-and-set on ``status = waiting``; ``None`` when it already moved."""
        values: dict[str, object] = {"status": status, "updated_at": now}
        if status == ChatRequestStatus.ASSIGNED:
            values["assigned_operator_id"] = operator_id
            values["assigned_at"] = now

        stmt = (
            update(ChatRequestModel)
            .where(
                ChatRequestModel.id == request_id,
                ChatRequestModel.status == ChatRequestStatus.WAITING,
            )
            .values(**values)
            .returning(ChatRequestModel)
            .execution_options(populate_existing=True, synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()


class ChatAssignmentRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, assignment_id: str) -> ChatAssignmentModel | None:
        return await self.session.get(
            ChatAssignmentModel, assignment_id, populate_existing=True
        )

    async def create(
        self,
        request: ChatRequestModel,
        operator: OperatorModel,
        status: AssignmentStatus,
        now: datetime,
    ) -> ChatAssignmentModel:
        assignment = ChatAssignmentModel(
            request_id=request.id,
            customer_id=request.customer_id,
            customer_name=request.customer_name,
            operator_id=operator.id,
            operator_name=operator.name,
            status=status,
            accepted_at=now,
            created_at=now,
            updated_at=now,
        )
        self.session.add(assignment)
        await self.session.flush()
        return assignment

    async def get_open_for_customer(self, customer_id: str) -> ChatAssignmentModel | None:
        stmt: Select[tuple[ChatAssignmentModel]] = (
            select(ChatAssignmentModel)
            .where(
                ChatAssignmentModel.customer_id == customer_id,
                ChatAssignmentModel.status.in_(OPEN_ASSIGNMENT_STATUSES),
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def latest_between(
        self, customer_id: str, operator_id: str
    ) -> ChatAssignmentModel | None:
        is_open = ChatAssignmentModel.status.in_(OPEN_ASSIGNMENT_STATUSES)
        stmt: Select[tuple[ChatAssignmentModel]] = (
            select(ChatAssignmentModel)
            .where(
                ChatAssignmentModel.customer_id == customer_id,
                ChatAssignmentModel.operator_id == operator_id,
            )
            .order_by(is_open.desc(), ChatAssignmentModel.created_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_filtered(
        self,
        operator_id: str | None = None,
        statuses: Sequence[AssignmentStatus] | None = None,
    ) -> list[ChatAssignmentModel]:
        stmt: Select[tuple[ChatAssignmentModel]] = select(ChatAssignmentModel)
        if operator_id is not None:
            stmt = stmt.where(ChatAssignmentModel.operator_id == operator_id)
        if statuses is not None:
            stmt = stmt.where(ChatAssignmentModel.status.in_(list(statuses)))
        stmt = stmt.order_by(ChatAssignmentModel.created_at.asc())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def complete(
        self,
        assignment_id: str,
        status: AssignmentStatus,
        ended_by: EndedBy,
        now: datetime,
    ) -> ChatAssignmentModel | None:
        stmt = (
            update(ChatAssignmentModel)
            .where(
                ChatAssignmentModel.id == assignment_id,
                ChatAssignmentModel.status.in_(OPEN_ASSIGNMENT_STATUSES),
            )
            .values(
                status=status,
                completed_at=now,
                ended_by=ended_by,
                updated_at=now,
            )
            .returning(ChatAssignmentModel)
            .execution_options(populate_existing=True, synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def record_activity(
        self, assignment_id: str, at: datetime
    ) -> ChatAssignmentModel | None:
        stmt = (
            update(ChatAssignmentModel)
            .where(
                ChatAssignmentModel.id == assignment_id,
                ChatAssignmentModel.status.in_(OPEN_ASSIGNMENT_STATUSES),
            )
            .values(last_message_at=at)
            .returning(ChatAssignmentModel)
            .execution_options(populate_existing=True, synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
