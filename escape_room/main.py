from fastapi import FastAPI, Depends, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlmodel import Session
from pydantic import BaseModel, Field, StrictBool, StrictInt, field_validator
from typing import Dict, Optional
from starlette.middleware.base import BaseHTTPMiddleware

from . import crud, verification
from .deps import get_session
from .errors import GameError, InvalidInput
from .init_db import init_db
from .migrations import run_migrations
from .logging_utils import setup_logging, get_logger, request_id_ctx
from .settings import settings

from contextlib import asynccontextmanager
import logging
import time
import uuid


setup_logging(logging.INFO)
logger = get_logger("escape_room")


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = init_db(settings.database_url, settings.db_timeout_seconds)
    try:
        run_migrations(engine)
    except Exception as e:
        logger.warning("migrations_failed", extra={"error": str(e)})
    crud.engine = engine

    yield

    crud.engine = None
    engine.dispose()


app = FastAPI(title="Escape Room", lifespan=lifespan)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = request_id_ctx.set(rid)
        start = time.time()
        response = None
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = rid
            return response
        except Exception:
            logger.exception(
                "request_error",
                extra={"path": request.url.path, "method": request.method},
            )
            raise
        finally:
            logger.info(
                "request",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": getattr(response, "status_code", 500),
                    "duration_ms": int((time.time() - start) * 1000),
                    "client": request.client.host if request.client else "-",
                    "user_agent": request.headers.get("user-agent", "-"),
                },
            )
            request_id_ctx.reset(token)


app.add_middleware(RequestLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=False,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Accept", "Content-Type", "X-Request-ID"],
)


@app.exception_handler(GameError)
async def game_error_handler(request: Request, exc: GameError):
    level = logging.WARNING if exc.status_code >= 500 else logging.INFO
    logger.log(level, "game_error", extra={"path": request.url.path, "error": exc.code, "reason": exc.message})
    return JSONResponse(status_code=exc.status_code, content={"error": exc.code, "detail": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.info("validation_error", extra={"method": request.method, "path": request.url.path, "errors": jsonable_encoder(exc.errors())})
    return JSONResponse(
        status_code=400,
        content={
            "error": InvalidInput.code,
            "detail": jsonable_encoder(exc.errors()),
            "message": "Input validation failed",
        },
    )


@app.get("/api/health")
def health():
    return {"status": "ok"}


class TeamBody(BaseModel):
    team: str = Field(..., max_length=crud.MAX_TEAM_LENGTH)

    @field_validator('team')
    @classmethod
    def validate_team(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError('Team name cannot be empty')
        if '/' in v:
            raise ValueError('Team name cannot contain "/"')
        return v


class StartSessionRequest(TeamBody):
    duration_seconds: StrictInt
    reset: StrictBool = False


class VerifyRequest(TeamBody):
    password: str
    suspect: StrictInt
    answers: Dict[str, str]


class SaveScoreRequest(TeamBody):
    duration: StrictInt


@app.post("/api/sessions", status_code=201)
def start_session(body: StartSessionRequest, session: Session = Depends(get_session)):
    gs = crud.start_session(session, body.team, body.duration_seconds, reset=body.reset)
    return {
        "team": gs.team_name,
        "started_at": gs.started_at.isoformat(),
        "ends_at": gs.ends_at.isoformat(),
    }


@app.get("/api/sessions/{team}")
def session_status(team: str, session: Session = Depends(get_session)):
    return crud.get_status(session, team).to_dict()


@app.delete("/api/sessions/{team}", status_code=204)
def reset_session(team: str, session: Session = Depends(get_session)):
    crud.reset_session(session, team)
    return Response(status_code=204)


@app.post("/api/verify")
def verify(body: VerifyRequest, session: Session = Depends(get_session)):
    result = verification.verify_final(session, body.team, body.password, body.suspect, body.answers)
    return result.to_dict()


@app.post("/api/save-score", status_code=201)
def save_score(body: SaveScoreRequest, session: Session = Depends(get_session)):
    score = verification.save_score(session, body.team, body.duration)
    return {"badge": score.badge}


@app.get("/api/scores")
def scores(limit: int = 10, session: Session = Depends(get_session)):
    if limit < 1 or limit > 100:
        raise InvalidInput("Limit must be between 1 and 100")
    return crud.get_leaderboard(session, limit)


@app.get("/api/check-team")
def check_team(team: Optional[str] = None, session: Session = Depends(get_session)):
    """Tell the lobby whether a team name is already on the leaderboard."""
    return {"exists": crud.team_exists(session, team)}
