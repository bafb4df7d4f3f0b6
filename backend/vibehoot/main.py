import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import socketio
from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .catalog import InMemoryQuizCatalog
from .db import db, settings
from .engine import GameEngine
from .gateway import GameGateway
from .ledger import SessionLedger
from .models import Player, Quiz
from .schemas import LeaderboardOut, PublicSessionOut, UpsertQuizIn
from .store import build_session_store, purge_periodically

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
origin_regex = settings.CORS_ORIGIN_REGEX or None

catalog = InMemoryQuizCatalog(db.quizzes)
ledger = SessionLedger(db.sessions)
engine = GameEngine(
    build_session_store(settings),
    catalog,
    ledger,
    session_ttl=settings.SESSION_TTL_SECONDS,
    ended_ttl=settings.SESSION_ENDED_TTL_SECONDS,
)

sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=origins or "*")
gateway = GameGateway(
    sio,
    engine,
    auto_show_results=settings.AUTO_SHOW_RESULTS,
    results_grace_sec=settings.RESULTS_GRACE_SECONDS,
)
gateway.register()


@asynccontextmanager
async def lifespan(_: FastAPI):
    purger = asyncio.create_task(purge_periodically(engine.store, settings.SESSION_PURGE_INTERVAL_SECONDS))
    yield
    purger.cancel()
    try:
        await purger
    except asyncio.CancelledError:
        pass
    await engine.store.close()


app = FastAPI(title="Vibehoot API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ["*"],
    allow_origin_regex=origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Socket.IO handles /socket.io/, everything else falls through to FastAPI.
asgi_app = socketio.ASGIApp(sio, other_asgi_app=app)


def require_admin(x_admin_key: Optional[str] = Header(default=None)):
    if x_admin_key != settings.ADMIN_KEY:
        raise HTTPException(status_code=401, detail="Invalid admin key")


@app.get("/api/health")
async def health():
    return {"status": "ok"}


@app.get("/api/session/{join_code}", response_model=PublicSessionOut, response_model_by_alias=True)
async def get_session(join_code: str):
    s = await engine.get_session(join_code)
    if not s:
        raise HTTPException(404, "Session not found")
    return PublicSessionOut(
        join_code=join_code,
        status=s.status,
        players=s.players,
        current_question_index=s.current_question_index,
        answer_count=len(s.answers),
        question_start_time=s.question_start_time,
        start_time=s.start_time,
    )


@app.get("/api/session/{join_code}/leaderboard", response_model=LeaderboardOut, response_model_by_alias=True)
async def get_leaderboard(join_code: str):
    leaderboard: list[Player] = await engine.get_leaderboard(join_code)
    return LeaderboardOut(leaderboard=leaderboard)


@app.post("/api/admin/quizzes")
async def upsert_quiz(payload: UpsertQuizIn, _: None = Depends(require_admin)):
    quiz = Quiz(id=payload.quiz_id, title=payload.title, owner_id=payload.owner_id, questions=payload.questions)
    await catalog.put_quiz(quiz)
    logger.info("Stored quiz %s (%d questions) for owner %s", quiz.id, len(quiz.questions), quiz.owner_id)
    return {"ok": True, "quizId": quiz.id, "questionCount": len(quiz.questions)}


@app.get("/api/admin/session/{join_code}/ledger")
async def get_ledger_record(join_code: str, _: None = Depends(require_admin)):
    record = await ledger.get_record(join_code)
    if not record:
        raise HTTPException(404, "Session not found")
    return record


@app.get("/api/admin/verify")
async def verify(_: None = Depends(require_admin)):
    return {"ok": True}
