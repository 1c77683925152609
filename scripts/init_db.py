"""Initialize database tables and identifier counters."""
import argparse
import asyncio

from refurbline.database import init_db, get_db_session
from refurbline.models.identifier_counter import CounterNamespace
from refurbline.services.identifier_service import IdentifierService


async def init(qlid_start: int) -> None:
    """Create all tables, then seed the counters."""
    print("Creating database tables...")
    await init_db()
    print("Database tables created successfully!")

    async with get_db_session() as db:
        service = IdentifierService(db, actor="init_db")
        if qlid_start:
            counter = await service.initialize_counter(CounterNamespace.QLID, qlid_start, source="SCRIPT")
            print(f"QLID counter set to {counter.current_value}")

        result = await service.verify_and_repair_qlid_counter()
        print(f"QLID counter {result['status']}: {result['counter_value']} (max issued {result['max_issued_tick']})")
        print(f"Next QLID: {await service.preview_next_qlid()}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--qlid-start", type=int, default=0, help="Last tick issued by a previous system")
    args = parser.parse_args()
    asyncio.run(init(args.qlid_start))
