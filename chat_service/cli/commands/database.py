"""Database management commands.

Example:
    # Verify connectivity
    chat-service db init

    # Verify connectivity and create missing tables (development)
    chat-service db init --create-tables

    # Apply all pending migrations
    chat-service db upgrade
"""

from pathlib import Path
import sys

import click
from sqlalchemy import text

from chat_service.cli.utils import coro, error, info, success
from chat_service.core.settings import get_db_settings

# Repository root holding alembic.ini and the alembic/ scripts directory.
PROJECT_ROOT = Path(__file__).resolve().parents[3]


def get_alembic_config(ini_path: Path | None = None):
    """Build an Alembic config pointing at the project's migration scripts."""
    from alembic.config import Config

    ini_path = ini_path or PROJECT_ROOT / "alembic.ini"
    config = Config(str(ini_path)) if ini_path.exists() else Config()
    config.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    config.set_main_option("sqlalchemy.url", get_db_settings().url)
    return config


@click.group(name="db")
def db() -> None:
    """Database management commands."""


@db.command()
@click.option(
    "--create-tables/--no-create-tables",
    default=False,
    help="Create missing tables from the model metadata",
)
@coro
async def init(create_tables: bool) -> None:
    """Verify database connectivity, optionally creating tables."""
    from chat_service.infra.database import close_database, get_async_session, init_database

    db_settings = get_db_settings()
    info(f"Connecting to: {db_settings.url.split('@')[-1]}")

    try:
        await init_database(create_tables=create_tables)
        async with get_async_session() as session:
            result = await session.execute(text("SELECT COUNT(*) FROM users"))
            user_count = result.scalar_one()
        success("Database connected successfully!")
        info(f"Users: {user_count}")
    except Exception as e:
        error(f"Database check failed: {e}")
        sys.exit(1)
    finally:
        await close_database()


@db.command()
@click.argument("revision", default="head")
def upgrade(revision: str) -> None:
    """Apply migrations up to REVISION (default: head)."""
    from alembic import command

    info(f"Upgrading database to {revision}...")
    try:
        command.upgrade(get_alembic_config(), revision)
    except Exception as e:
        error(f"Migration failed: {e}")
        sys.exit(1)
    success("Database is up to date")


@db.command()
@click.argument("revision", default="-1")
def downgrade(revision: str) -> None:
    """Revert migrations down to REVISION (default: one step)."""
    from alembic import command

    info(f"Downgrading database to {revision}...")
    try:
        command.downgrade(get_alembic_config(), revision)
    except Exception as e:
        error(f"Downgrade failed: {e}")
        sys.exit(1)
    success("Downgrade complete")
