import pytest

from app.infra.db.seed import DEFAULT_OPERATORS, seed_default_operators


class _ScalarResult:
    def __init__(self, values: list[str]) -> None:
        self._values = values

    def scalars(self) -> "_ScalarResult":
        return self

    def all(self) -> list[str]:
        return list(self._values)


class FakeSeedSession:
    def __init__(self, existing_ids: list[str]) -> None:
        self.existing_ids = existing_ids
        self.added: list = []
        self.flushed = False

    async def execute(self, _stmt) -> _ScalarResult:
        return _ScalarResult(self.existing_ids)

    def add_all(self, rows) -> None:
        self.added.extend(rows)

    async def flush(self) -> None:
        self.flushed = True


def test_demo_operators_are_well_formed() -> None:
    ids = [item["id"] for item in DEFAULT_OPERATORS]

    assert len(ids) == len(set(ids))
    assert all(str(operator_id).startswith("op-") for operator_id in ids)
    assert all(int(item["max_chats"]) >= 1 for item in DEFAULT_OPERATORS)
    assert all(str(item["name"]).strip() for item in DEFAULT_OPERATORS)


@pytest.mark.asyncio
async def test_seed_skips_existing_operators() -> None:
    session = FakeSeedSession(existing_ids=["op-avery"])

    inserted = await seed_default_operators(session)

    assert inserted == len(DEFAULT_OPERATORS) - 1
    assert "op-avery" not in {row.id for row in session.added}
    assert all(row.is_online is False and row.active_chats == 0 for row in session.added)
    assert session.flushed


@pytest.mark.asyncio
async def test_seed_is_a_no_op_when_everything_exists() -> None:
    session = FakeSeedSession(existing_ids=[str(item["id"]) for item in DEFAULT_OPERATORS])

    assert await seed_default_operators(session) == 0
    assert session.added == []
    assert session.flushed is False
