"""
Script to create all database tables.

Creates the file_deliveries and outbox_messages tables without Alembic,
handy for a local PostgreSQL started with Docker.
"""
import asyncio
from ublsender.database import engine
from ublsender.models.base import Base
from ublsender.models.delivery import FileDelivery  # noqa: F401
from ublsender.models.outbox import OutboxMessage  # noqa: F401


async def create_all_tables():
    """Create all tables in the database."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("All tables created successfully!")


async def drop_all_tables():
    """Drop all tables in the database (for testing)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    print("All tables dropped!")


async def main():
    """Main entry point."""
    print("Creating database tables...")
    await create_all_tables()
    print("Done!")


if __name__ == "__main__":
    asyncio.run(main())
