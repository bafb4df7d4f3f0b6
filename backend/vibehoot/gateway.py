from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Dict, List, Optional, Type

import socketio
from pydantic import BaseModel, ValidationError

from .engine import GameEngine
from .errors import GameError
from .models import Player, ResultsOutcome
from .schemas import CreateGameIn, JoinCodeIn, JoinGameIn, SubmitAnswerIn

logger = logging.getLogger(__name__)


def room_for(join_code: str) -> str:
    return f"game:{join_code}"


def _failure(error: str, code: str) -> dict[str, Any]:
    return {"success": False, "error": error, "code": code}


def _leaderboard_payload(players: List[Player]) -> list[dict[str, Any]]:
    return [p.to_wire() for p in players]


def command(schema: Type[BaseModel]):
    """Turn a gateway method into a Socket.IO handler with an ack reply.

    The inbound payload is validated into ``schema``; whatever the method
    returns becomes the acknowledgement. Engine rejections and unexpected
    failures are both reported through the same ack as ``success: false``.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self: "GameGateway", sid: str, data: Any = None):
            name = func.__name__
            try:
                payload = schema.model_validate(data or {})
            except ValidationError as exc:
                logger.info("Rejected %s from %s: invalid payload", name, sid)
                return _failure(f"Invalid payload: {exc.errors()[0]['msg']}", "INVALID_PAYLOAD")

            logger.info("%s from %s: %s", name, sid, payload.model_dump())
            try:
                return await func(self, sid, payload)
            except GameError as exc:
                logger.info("Rejected %s from %s: %s", name, sid, exc)
                return _failure(str(exc), exc.code)
            except Exception:
                logger.exception("Command %s from %s failed", name, sid)
                return _failure("Internal server error", "INTERNAL")

        return wrapper

    return decorator


class GameGateway:
    """Binds Socket.IO connections to engine operations and room broadcasts."""

    def __init__(
        self,
        sio: socketio.AsyncServer,
        engine: GameEngine,
        *,
        auto_show_results: bool = False,
        results_grace_sec: float = 0.0,
    ):
        self.sio = sio
        self.engine = engine
        self.auto_show_results = auto_show_results
        self.results_grace_sec = results_grace_sec
        # sid -> {"join_code": ..., "player_id": ...}
        self.connections: Dict[str, Dict[str, Any]] = {}
        self.timers: Dict[str, asyncio.Task] = {}

    def register(self) -> None:
        self.sio.on("connect", self.connect)
        self.sio.on("disconnect", self.disconnect)
        self.sio.on("create_game", self.create_game)
        self.sio.on("join_game", self.join_game)
        self.sio.on("start_game", self.start_game)
        self.sio.on("next_question", self.next_question)
        self.sio.on("submit_answer", self.submit_answer)
        self.sio.on("show_results", self.show_results)
        self.sio.on("get_leaderboard", self.get_leaderboard)
        self.sio.on("end_game", self.end_game)

    async def _enter(self, sid: str, join_code: str, player_id: Optional[str] = None) -> None:
        await self.sio.enter_room(sid, room_for(join_code))
        self.connections[sid] = {"join_code": join_code, "player_id": player_id}

    async def _broadcast(self, event: str, join_code: str, data: Any = None) -> None:
        await self.sio.emit(event, data, to=room_for(join_code))

    async def connect(self, sid: str, environ: dict, auth: Any = None):
        logger.info("Client connected %s", sid)

    async def disconnect(self, sid: str, reason: Any = None):
        logger.info("Client disconnected %s", sid)
        ctx = self.connections.pop(sid, None)
        if ctx and ctx.get("join_code") and ctx.get("player_id"):
            await self._broadcast("player_disconnected", ctx["join_code"], {"playerId": ctx["player_id"]})

    @command(CreateGameIn)
    async def create_game(self, sid: str, payload: CreateGameIn):
        join_code = await self.engine.create_session(payload.quiz_id, payload.host_id)
        await self._enter(sid, join_code)
        return {"success": True, "joinCode": join_code}

    @command(JoinGameIn)
    async def join_game(self, sid: str, payload: JoinGameIn):
        state = await self.engine.join_session(payload.join_code, payload.nickname, payload.player_id)
        await self._enter(sid, payload.join_code, payload.player_id)
        await self._broadcast(
            "player_joined",
            payload.join_code,
            {"playerId": payload.player_id, "nickname": payload.nickname, "score": 0},
        )
        return {"success": True, "state": state.to_wire()}

    @command(JoinCodeIn)
    async def start_game(self, sid: str, payload: JoinCodeIn):
        state = await self.engine.start_game(payload.join_code)
        if state is None:
            return _failure("Session not found", "NOT_FOUND")
        await self._broadcast("game_started", payload.join_code)
        return {"success": True}

    @command(JoinCodeIn)
    async def next_question(self, sid: str, payload: JoinCodeIn):
        join_code = payload.join_code
        outcome = await self.engine.next_question(join_code)
        self._cancel_timer(join_code)

        if outcome.question is None:
            leaderboard = _leaderboard_payload(await self.engine.get_leaderboard(join_code))
            await self._broadcast("game_ended", join_code, {"leaderboard": leaderboard})
            return {"success": True, "ended": True, "leaderboard": leaderboard}

        question = outcome.question
        # correctOptionIndex stays on the server until results are shown
        data = {
            "questionIndex": outcome.state.current_question_index,
            "totalQuestions": outcome.total_questions,
            "text": question.text,
            "options": question.options,
            "timeLimit": question.time_limit,
        }
        await self._broadcast("question_start", join_code, data)
        if self.auto_show_results:
            self._schedule_timer(
                join_code, outcome.state.current_question_index, question.time_limit + self.results_grace_sec
            )
        return {"success": True, **data}

    @command(SubmitAnswerIn)
    async def submit_answer(self, sid: str, payload: SubmitAnswerIn):
        join_code = payload.join_code
        result = await self.engine.submit_answer(join_code, payload.player_id, payload.option_index)

        state = await self.engine.get_session(join_code)
        answer_count = len(state.answers) if state else 0
        total_players = len(state.players) if state else 0
        await self._broadcast(
            "answer_count_update", join_code, {"answerCount": answer_count, "totalPlayers": total_players}
        )

        # player clients listen on the event as well as the ack
        await self.sio.emit("answer_result", result.to_wire(), to=sid)
        return {"success": True, **result.to_wire()}

    @command(JoinCodeIn)
    async def show_results(self, sid: str, payload: JoinCodeIn):
        outcome = await self.engine.show_results(payload.join_code)
        self._cancel_timer(payload.join_code)
        data = await self._broadcast_results(payload.join_code, outcome)
        return {"success": True, **data}

    @command(JoinCodeIn)
    async def get_leaderboard(self, sid: str, payload: JoinCodeIn):
        leaderboard = _leaderboard_payload(await self.engine.get_leaderboard(payload.join_code))
        await self._broadcast("leaderboard_update", payload.join_code, {"leaderboard": leaderboard})
        return {"success": True, "leaderboard": leaderboard}

    @command(JoinCodeIn)
    async def end_game(self, sid: str, payload: JoinCodeIn):
        join_code = payload.join_code
        if await self.engine.get_session(join_code) is None:
            return _failure("Session not found", "NOT_FOUND")
        await self.engine.end_game(join_code)
        self._cancel_timer(join_code)
        leaderboard = _leaderboard_payload(await self.engine.get_leaderboard(join_code))
        await self._broadcast("game_ended", join_code, {"leaderboard": leaderboard})
        return {"success": True, "leaderboard": leaderboard}

    async def _broadcast_results(self, join_code: str, outcome: ResultsOutcome) -> dict[str, Any]:
        data = {
            "correctOptionIndex": outcome.correct_option_index,
            "answerDistribution": outcome.answer_distribution,
            "correctCount": outcome.correct_count,
        }
        await self._broadcast("question_results", join_code, data)
        return data

    # ---- question deadline timers ----

    def _schedule_timer(self, join_code: str, question_index: int, delay: float) -> None:
        self._cancel_timer(join_code)
        logger.debug("[timer-set] session=%s question=%d delay=%.1fs", join_code, question_index, delay)
        self.timers[join_code] = asyncio.create_task(self._run_timer(join_code, question_index, delay))

    def _cancel_timer(self, join_code: str) -> None:
        task = self.timers.pop(join_code, None)
        if task and not task.done():
            task.cancel()

    async def _run_timer(self, join_code: str, question_index: int, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            outcome = await self.engine.close_question(join_code, question_index)
            if outcome is None:
                logger.info("[timer-abort] session=%s question=%d already closed", join_code, question_index)
                return
            logger.info("[timer-fire] session=%s question=%d", join_code, question_index)
            await self._broadcast_results(join_code, outcome)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Question timer for session %s failed", join_code)
        finally:
            if self.timers.get(join_code) is asyncio.current_task():
                self.timers.pop(join_code, None)
