from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utcnow
from app.infra.db.models import OperatorModel

DEFAULT_OPERATORS: list[dict[str, str | int]] = [
    {"id": "op-avery", "name": "Avery Stone", "max_chats": 5},
    {"id": "op-jordan", "name": "Jordan Lee", "max_chats": 3},
    {"id": "op-sam", "name": "Sam Rivera", "max_chats": 2},
]


async def seed_default_operators(session: AsyncSession) -> int:
    existing_rows = await session.execute(select(OperatorModel.id))
    existing_ids = set(existing_rows.scalars().all())

    inserts: list[OperatorModel] = []
    now = utcnow()
    for item in DEFAULT_OPERATORS:
        operator_id = str(item["id"])
        if operator_id in existing_ids:
            continue

        inserts.append(
            OperatorModel(
                id=operator_id,
                name=str(item["name"]),
                is_online=False,
                is_available=True,
                active_chats=0,
                max_chats=int(item["max_chats"]),
                last_seen=now,
            )
        )

    if inserts:
        session.add_all(inserts)
        await session.flush()
    return len(inserts)
