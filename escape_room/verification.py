"""
Final-answer verification and score commits.

``verify_final`` is the timed path: elapsed time comes from the team's
session row, never from the client. ``save_score`` is the untimed path for
flows that keep their own clock; it trusts the caller's duration.
"""

from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from . import crud, models, scoring
from .errors import Conflict, InvalidInput, NoSessionError
from .logging_utils import get_logger
from .settings import Settings, settings as default_settings

logger = get_logger("escape_room.verification")


@dataclass
class VerifyResult:
    success: bool
    badge: Optional[str] = None
    duration_seconds: Optional[int] = None

    def to_dict(self) -> dict:
        if not self.success:
            return {"success": False}
        return {"success": True, "badge": self.badge, "duration_seconds": self.duration_seconds}


def expected_password(answers: Mapping[str, str], order: Sequence[str]) -> str:
    """Concatenate puzzle portions in canonical order.

    Portions are the client-reported results of the individual puzzles and
    are taken as given.
    """
    return "".join(answers[key] for key in order)


def _check_verify_input(password, suspect, answers, cfg: Settings) -> None:
    if not isinstance(password, str) or password == "":
        raise InvalidInput("password is required")
    if not isinstance(answers, Mapping) or not answers:
        raise InvalidInput("answers are required")
    if isinstance(suspect, bool) or not isinstance(suspect, int):
        raise InvalidInput("suspect must be an integer")
    if not (cfg.suspect_min <= suspect <= cfg.suspect_max):
        raise InvalidInput(f"suspect must be between {cfg.suspect_min} and {cfg.suspect_max}")
    missing = [key for key in cfg.answer_order if not isinstance(answers.get(key), str)]
    if missing:
        raise InvalidInput("answers missing portion for: " + ", ".join(missing))


def _reject(name: str, reason: str) -> Conflict:
    logger.info("verify_conflict", extra={"team": name, "reason": reason})
    return Conflict(reason)


def verify_final(
    db: Session,
    team: str,
    password: str,
    suspect: int,
    answers: Mapping[str, str],
    settings: Optional[Settings] = None,
) -> VerifyResult:
    """Check the combined password and, when right, record the team's score.

    A wrong password or suspect is a normal negative result and touches no
    state. A right answer requires an unfinished, unexpired session; the
    session is marked finished and the score inserted in a single
    transaction, so concurrent submissions for one team produce exactly one
    score. Losers see Conflict("already finished") or Conflict("team name
    taken").
    """
    cfg = settings or default_settings
    name = crud.clean_team(team)
    _check_verify_input(password, suspect, answers, cfg)

    if password != expected_password(answers, cfg.answer_order) or suspect != cfg.expected_suspect:
        logger.info("verify_wrong_answer", extra={"team": name})
        return VerifyResult(success=False)

    with crud.storage_errors(db, "verify_final"):
        now = crud.utcnow()
        gs = db.get(models.GameSession, crud.team_key(name))
        if gs is None:
            raise NoSessionError(f"no session for team {name!r}")
        if gs.finished_at is not None:
            raise _reject(name, "already finished")
        if now > crud.as_utc(gs.ends_at):
            raise _reject(name, "time expired")

        duration = max(0, int((now - crud.as_utc(gs.started_at)).total_seconds()))
        tier = scoring.badge(duration, cfg.badge_thresholds)

        if not crud.mark_finished(db, name, now):
            raise _reject(name, "already finished")
        if crud.get_score(db, name) is not None:
            raise _reject(name, "team name taken")
        crud.insert_score(db, name, duration, tier, now)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise _reject(name, "team name taken")

    logger.info("score_committed", extra={"team": name, "duration_seconds": duration, "badge": tier})
    return VerifyResult(success=True, badge=tier, duration_seconds=duration)


def save_score(
    db: Session,
    team: str,
    duration_seconds: int,
    settings: Optional[Settings] = None,
) -> models.Score:
    """Record a score for a caller-timed run. No session is consulted."""
    cfg = settings or default_settings
    name = crud.clean_team(team)
    if isinstance(duration_seconds, bool) or not isinstance(duration_seconds, int) or duration_seconds < 0:
        raise InvalidInput("duration must be a non-negative integer")

    tier = scoring.badge(duration_seconds, cfg.badge_thresholds)
    with crud.storage_errors(db, "save_score"):
        if crud.get_score(db, name) is not None:
            raise _reject(name, "team name taken")
        score = crud.insert_score(db, name, duration_seconds, tier, crud.utcnow())
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise _reject(name, "team name taken")
        db.refresh(score)

    logger.info("score_saved", extra={"team": name, "duration_seconds": duration_seconds, "badge": tier})
    return score
