import asyncio

from app.core.db import close_engine, get_session_factory, init_engine, initialize_database
from app.infra.db.seed import seed_default_operators


async def main() -> None:
    engine = init_engine()
    try:
        await initialize_database(engine)
        session_factory = get_session_factory()
        async with session_factory() as session:
            created = await seed_default_operators(session)
            await session.commit()
        print(f"Successfully loaded {created} operators !")
    finally:
        await close_engine(engine)


if __name__ == "__main__":
    asyncio.run(main())
