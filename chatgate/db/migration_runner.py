"""
Migration Runner - Applies pending Alembic migrations at startup.

Enabled with AUTO_MIGRATE=true. Alembic's command API is synchronous, so the
asyncpg URL is rewritten to psycopg2 and the runner is called off the event
loop.
"""

from pathlib import Path

from sqlalchemy import Engine, create_engine
from structlog import get_logger

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from chatgate.config import settings

logger = get_logger(__name__)

# alembic.ini lives at the project root
ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"


def get_sync_database_url(url: str | None = None) -> str:
    """Rewrite an async driver URL into its psycopg2 equivalent."""
    url = url or settings.database_url
    return url.replace("+asyncpg", "+psycopg2")


def _build_config() -> Config:
    alembic_cfg = Config(str(ALEMBIC_INI_PATH))
    alembic_cfg.set_main_option("sqlalchemy.url", get_sync_database_url().replace("%", "%%"))
    return alembic_cfg


def _current_revision(engine: Engine) -> str | None:
    with engine.connect() as conn:
        return MigrationContext.configure(conn).get_current_revision()


def run_migrations() -> None:
    """
    Upgrade the database to head if it is behind.

    Raises:
        RuntimeError: The upgrade failed
    """
    if not ALEMBIC_INI_PATH.exists():
        logger.warning("alembic_config_missing", path=str(ALEMBIC_INI_PATH))
        return

    alembic_cfg = _build_config()
    engine = create_engine(get_sync_database_url())
    try:
        current = _current_revision(engine)
        head = ScriptDirectory.from_config(alembic_cfg).get_current_head()
        if current == head:
            logger.info("database_schema_current", revision=current)
            return

        logger.info("database_migrating", from_revision=current, to_revision=head)
        command.upgrade(alembic_cfg, "head")
        logger.info("database_migrated", revision=_current_revision(engine))
    except Exception as e:
        logger.error("database_migration_failed", error=str(e))
        raise RuntimeError(f"Database migration failed: {e}") from e
    finally:
        engine.dispose()
