from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import math
from typing import List, Optional

from sqlmodel import Session, select as sqlmodel_select, col
from sqlalchemy import delete, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError, IntegrityError, TimeoutError as PoolTimeoutError

from . import models
from .errors import AlreadyRunning, Conflict, GameError, InvalidInput, NotFound, StorageUnavailable
from .logging_utils import get_logger

logger = get_logger("escape_room.crud")

MAX_TEAM_LENGTH = 64

engine = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we store is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def clean_team(team: Optional[str]) -> str:
    """Return the display form of a team name, or raise InvalidInput."""
    if not isinstance(team, str):
        raise InvalidInput("team is required")
    name = team.strip()
    if not name:
        raise InvalidInput("team is required")
    # casefold can grow a name ("ß" -> "ss"), and the key column has the same limit
    if len(name) > MAX_TEAM_LENGTH or len(team_key(name)) > MAX_TEAM_LENGTH:
        raise InvalidInput(f"team name too long (max {MAX_TEAM_LENGTH} characters)")
    # team names travel as a single path segment in /api/sessions/{team}
    if "/" in name:
        raise InvalidInput("team name cannot contain '/'")
    return name


def team_key(name: str) -> str:
    """Lookup key shared by sessions and scores: case-insensitive, trimmed."""
    return name.strip().casefold()


@contextmanager
def storage_errors(db: Session, operation: str):
    """Roll back on any failure and turn driver faults into StorageUnavailable.

    IntegrityError and GameError propagate unchanged so callers can interpret
    constraint violations and business rejections themselves.
    """
    try:
        yield
    except IntegrityError:
        db.rollback()
        raise
    except (DBAPIError, PoolTimeoutError) as exc:
        db.rollback()
        logger.exception("storage_error", extra={"operation": operation, "error": type(exc).__name__})
        raise StorageUnavailable() from exc
    except GameError:
        db.rollback()
        raise


# --- sessions ---------------------------------------------------------------

@dataclass
class SessionStatus:
    team: str
    started_at: datetime
    ends_at: datetime
    remaining_seconds: int
    is_over: bool

    def to_dict(self) -> dict:
        return {
            "team": self.team,
            "started_at": self.started_at.isoformat(),
            "ends_at": self.ends_at.isoformat(),
            "remaining_seconds": self.remaining_seconds,
            "is_over": self.is_over,
        }


def _dialect_insert(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "sqlite":
        return sqlite_insert
    if dialect == "postgresql":
        return pg_insert
    raise RuntimeError(f"unsupported database dialect: {dialect}")


def start_session(db: Session, team: str, duration_seconds: int, reset: bool = False) -> models.GameSession:
    """Create or restart the countdown for a team in one upsert statement.

    Without ``reset`` the conflict branch only fires when the existing row is
    finished, so an unfinished session (running or expired) is left alone and
    AlreadyRunning is raised.
    """
    name = clean_team(team)
    if isinstance(duration_seconds, bool) or not isinstance(duration_seconds, int) or duration_seconds <= 0:
        raise InvalidInput("duration_seconds must be a positive integer")

    now = utcnow()
    values = {
        "team_key": team_key(name),
        "team_name": name,
        "started_at": now,
        "ends_at": now + timedelta(seconds=duration_seconds),
        "finished_at": None,
    }
    table = models.GameSession.__table__
    with storage_errors(db, "start_session"):
        stmt = _dialect_insert(db)(table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.team_key],
            set_={
                "team_name": stmt.excluded.team_name,
                "started_at": stmt.excluded.started_at,
                "ends_at": stmt.excluded.ends_at,
                "finished_at": None,
            },
            where=None if reset else table.c.finished_at.is_not(None),
        )
        result = db.execute(stmt.execution_options(preserve_rowcount=True))
        if result.rowcount == 0:
            raise AlreadyRunning(f"team {name!r} already has a running session")
        db.commit()

    logger.info("session_started", extra={"team": name, "duration_seconds": duration_seconds, "reset": reset})
    return models.GameSession(**values)


def get_session_by_team(db: Session, team: str) -> Optional[models.GameSession]:
    return db.get(models.GameSession, team_key(clean_team(team)))


def get_status(db: Session, team: str) -> SessionStatus:
    name = clean_team(team)
    with storage_errors(db, "get_status"):
        gs = db.get(models.GameSession, team_key(name))
    if gs is None:
        raise NotFound(f"no session for team {name!r}")

    now = utcnow()
    ends_at = as_utc(gs.ends_at)
    # round up so remaining hits 0 exactly when now reaches ends_at
    remaining = max(0, math.ceil((ends_at - now).total_seconds()))
    return SessionStatus(
        team=gs.team_name,
        started_at=as_utc(gs.started_at),
        ends_at=ends_at,
        remaining_seconds=remaining,
        is_over=remaining == 0 or gs.finished_at is not None,
    )


def reset_session(db: Session, team: str) -> bool:
    """Delete the team's session row. Returns whether a row existed."""
    name = clean_team(team)
    with storage_errors(db, "reset_session"):
        result = db.execute(
            delete(models.GameSession).where(col(models.GameSession.team_key) == team_key(name))
        )
        db.commit()
    logger.info("session_reset", extra={"team": name})
    return result.rowcount > 0


def mark_finished(db: Session, team: str, finished_at: datetime) -> bool:
    """Flip the session to finished if it is not already. Does not commit."""
    name = clean_team(team)
    with storage_errors(db, "mark_finished"):
        result = db.execute(
            update(models.GameSession)
            .where(col(models.GameSession.team_key) == team_key(name))
            .where(col(models.GameSession.finished_at).is_(None))
            .values(finished_at=finished_at)
            .execution_options(synchronize_session=False)
        )
    return result.rowcount == 1


# --- scores -----------------------------------------------------------------

def get_score(db: Session, team: str) -> Optional[models.Score]:
    return db.exec(
        sqlmodel_select(models.Score).where(models.Score.team_key == team_key(clean_team(team)))
    ).first()


def team_exists(db: Session, team: str) -> bool:
    """Return True if the team name is already taken on the leaderboard."""
    with storage_errors(db, "team_exists"):
        return get_score(db, team) is not None


def insert_score(db: Session, team: str, duration_seconds: int, badge: str, created_at: datetime) -> models.Score:
    """Stage a score row and flush it. Does not commit.

    A unique-key violation means another request won the race for this team
    name; the transaction is rolled back and Conflict is raised.
    """
    name = clean_team(team)
    score = models.Score(
        team_key=team_key(name),
        team_name=name,
        duration_seconds=duration_seconds,
        badge=badge,
        created_at=created_at,
    )
    db.add(score)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise Conflict("team name taken")
    return score


def score_row(score: models.Score) -> dict:
    return {
        "team_name": score.team_name,
        "duration_seconds": score.duration_seconds,
        "created_at": as_utc(score.created_at).isoformat(),
        "badge": score.badge,
    }


def get_leaderboard(db: Session, limit: int = 10) -> List[dict]:
    """Return the fastest teams as dicts, fastest first.

    Ties on duration go to whoever committed first. Reads straight from the
    scores table on every call.
    """
    with storage_errors(db, "get_leaderboard"):
        rows = db.exec(
            sqlmodel_select(models.Score)
            .order_by(col(models.Score.duration_seconds), col(models.Score.created_at), col(models.Score.id))
            .limit(limit)
        ).all()
    return [score_row(s) for s in rows]
