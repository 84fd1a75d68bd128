"""
Database migration ledger for the escape room backend.
Applies named schema changes (indexes, mostly) exactly once per database.
"""

from sqlmodel import SQLModel, Field, text, Session, select
from typing import List, Optional, Tuple
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)


class Migration(SQLModel, table=True):
    """Track applied migrations"""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    applied_at: datetime


MIGRATIONS: List[Tuple[str, str]] = [
    (
        "001_leaderboard_index",
        """
        -- ranking order used by the leaderboard
        CREATE INDEX IF NOT EXISTS idx_scores_ranking ON scores(duration_seconds, created_at)
        """,
    ),
    (
        "002_session_indexes",
        """
        CREATE INDEX IF NOT EXISTS idx_sessions_ends_at ON sessions(ends_at);
        CREATE INDEX IF NOT EXISTS idx_sessions_finished_at ON sessions(finished_at)
        """,
    ),
]


def ensure_migration_table(engine):
    Migration.metadata.create_all(engine, tables=[Migration.__table__])


def has_migration_been_applied(engine, migration_name: str) -> bool:
    ensure_migration_table(engine)
    with Session(engine) as session:
        result = session.exec(
            select(Migration).where(Migration.name == migration_name)
        ).first()
        return result is not None


def apply_migration(engine, migration_name: str, migration_sql: str) -> bool:
    """Apply a migration and record it. Returns False if it was already applied."""
    if has_migration_been_applied(engine, migration_name):
        logger.info(f"Migration {migration_name} already applied, skipping")
        return False

    logger.info(f"Applying migration: {migration_name}")
    with Session(engine) as session:
        try:
            for statement in migration_sql.strip().split(';'):
                statement = statement.strip()
                if statement:
                    session.execute(text(statement))
            session.add(Migration(name=migration_name, applied_at=datetime.now(timezone.utc)))
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Failed to apply migration {migration_name}: {e}")
            raise
    logger.info(f"Migration {migration_name} applied successfully")
    return True


def run_migrations(engine) -> List[str]:
    """Run all pending migrations; returns the names applied this time."""
    applied = [name for name, sql in MIGRATIONS if apply_migration(engine, name, sql)]
    logger.info("All migrations completed")
    return applied


if __name__ == "__main__":
    from .init_db import init_db

    logging.basicConfig(level=logging.INFO)
    run_migrations(init_db())
