"""
Runtime configuration for the escape room backend.
Everything is read from environment variables once, at import time.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

# best tier first; a threshold table must keep this order as bounds grow
BADGE_TIERS = ("gold", "silver", "bronze")
NO_BADGE = "none"

DEFAULT_BADGE_THRESHOLDS = "gold=120,silver=300,bronze=480"
DEFAULT_ANSWER_ORDER = "caesar,phishing,strongestPassword,osint"
DEFAULT_CORS_ORIGINS = ",".join([
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
])


def parse_badge_thresholds(raw: str) -> Tuple[Tuple[str, int], ...]:
    """Parse ``"gold=120,silver=300"`` into ``(("gold", 120), ("silver", 300))``.

    The result is sorted by bound. Tiers must be known, unique, have distinct
    positive bounds, and rank strictly worse as the bound grows; otherwise a
    ValueError is raised.
    """
    table: List[Tuple[str, int]] = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            tier, bound_s = chunk.split("=", 1)
            bound = int(bound_s)
        except ValueError:
            raise ValueError(f"bad badge threshold entry: {chunk!r}")
        tier = tier.strip().lower()
        if tier not in BADGE_TIERS:
            raise ValueError(f"unknown badge tier: {tier!r}")
        if bound <= 0:
            raise ValueError(f"badge bound must be positive: {chunk!r}")
        table.append((tier, bound))

    table.sort(key=lambda entry: entry[1])
    tiers = [t for t, _ in table]
    bounds = [b for _, b in table]
    if len(set(tiers)) != len(tiers):
        raise ValueError("badge tiers must be unique")
    if len(set(bounds)) != len(bounds):
        raise ValueError("badge bounds must be distinct")
    ranks = [BADGE_TIERS.index(t) for t in tiers]
    if ranks != sorted(ranks):
        raise ValueError("better badge tiers must have smaller bounds")
    return tuple(table)


def parse_answer_order(raw: str) -> Tuple[str, ...]:
    keys = tuple(k.strip() for k in raw.split(",") if k.strip())
    if not keys:
        raise ValueError("answer order cannot be empty")
    if len(set(keys)) != len(keys):
        raise ValueError("answer order keys must be unique")
    return keys


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./escape.db"
    db_timeout_seconds: int = 30
    badge_thresholds: Tuple[Tuple[str, int], ...] = field(
        default_factory=lambda: parse_badge_thresholds(DEFAULT_BADGE_THRESHOLDS)
    )
    answer_order: Tuple[str, ...] = field(
        default_factory=lambda: parse_answer_order(DEFAULT_ANSWER_ORDER)
    )
    expected_suspect: int = 1
    suspect_min: int = 1
    suspect_max: int = 5
    cors_origins: Tuple[str, ...] = tuple(DEFAULT_CORS_ORIGINS.split(","))
    host: str = "0.0.0.0"
    port: int = 3000

    def __post_init__(self):
        if self.suspect_min > self.suspect_max:
            raise ValueError("SUSPECT_MIN must not exceed SUSPECT_MAX")
        if not (self.suspect_min <= self.expected_suspect <= self.suspect_max):
            raise ValueError("EXPECTED_SUSPECT must lie within the suspect range")
        if self.db_timeout_seconds <= 0:
            raise ValueError("DB_TIMEOUT_SECONDS must be positive")


def load_settings(environ: Optional[dict] = None) -> Settings:
    env = os.environ if environ is None else environ

    def get(name: str, default: str) -> str:
        return env.get(name) or default

    def get_int(name: str, default: int) -> int:
        raw = (env.get(name) or "").strip()
        if not raw:
            return default
        try:
            return int(raw)
        except ValueError:
            raise ValueError(f"{name} must be an integer, got {raw!r}")

    origins = tuple(o.strip() for o in get("CORS_ORIGINS", DEFAULT_CORS_ORIGINS).split(",") if o.strip())
    return Settings(
        database_url=get("DATABASE_URL", "sqlite:///./escape.db"),
        db_timeout_seconds=get_int("DB_TIMEOUT_SECONDS", 30),
        badge_thresholds=parse_badge_thresholds(get("BADGE_THRESHOLDS", DEFAULT_BADGE_THRESHOLDS)),
        answer_order=parse_answer_order(get("ANSWER_ORDER", DEFAULT_ANSWER_ORDER)),
        expected_suspect=get_int("EXPECTED_SUSPECT", 1),
        suspect_min=get_int("SUSPECT_MIN", 1),
        suspect_max=get_int("SUSPECT_MAX", 5),
        cors_origins=origins,
        host=get("HOST", "0.0.0.0"),
        port=get_int("PORT", 3000),
    )


settings = load_settings()
