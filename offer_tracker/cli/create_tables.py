# offer_tracker/cli/create_tables.py
import asyncio
import click
from sqlalchemy.ext.asyncio import create_async_engine
from offer_tracker.database import Base

# Import the models so they're registered with the Base
from offer_tracker import models  # noqa: F401


@click.command("create-tables")
@click.option('--echo', is_flag=True, help='Echo the generated SQL')
def create_tables(echo):
    """Create all database tables directly using SQLAlchemy"""
    from offer_tracker.core.config import get_settings
    settings = get_settings()

    async def _create_tables():
        engine = create_async_engine(settings.DATABASE_URL, echo=echo)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await engine.dispose()
        print("All tables created successfully!")

    asyncio.run(_create_tables())

if __name__ == "__main__":
    create_tables()
