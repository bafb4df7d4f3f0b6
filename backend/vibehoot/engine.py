from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional

from .catalog import QuizCatalog
from .errors import (
    DuplicateAnswer,
    InvalidPhase,
    JoinCodeUnavailable,
    NoCurrentQuestion,
    PlayerNotFound,
    SessionNotFound,
)
from .ledger import SessionLedger
from .models import (
    Answer,
    GameState,
    GameStatus,
    NextQuestionOutcome,
    Player,
    Question,
    ResultsOutcome,
    SubmitOutcome,
)
from .store import SessionStore
from .utils import compute_points, generate_join_code, now_ms, sort_leaderboard

logger = logging.getLogger(__name__)

MAX_JOIN_CODE_ATTEMPTS = 20

# Phases from which the host may advance to the next question.
ADVANCEABLE = (GameStatus.ACTIVE, GameStatus.SHOWING_QUESTION, GameStatus.SHOWING_RESULTS)


class GameEngine:
    """Owns every mutation of a session's ``GameState``.

    Each mutating operation runs its read-modify-write inside a lock keyed by
    join code, so concurrent joins and answers for one session never overwrite
    each other.
    """

    def __init__(
        self,
        store: SessionStore,
        catalog: QuizCatalog,
        ledger: SessionLedger,
        *,
        session_ttl: Optional[int] = None,
        ended_ttl: Optional[int] = None,
    ):
        self.store = store
        self.catalog = catalog
        self.ledger = ledger
        self.session_ttl = session_ttl
        self.ended_ttl = ended_ttl
        self.locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @asynccontextmanager
    async def _lock(self, join_code: str) -> AsyncIterator[None]:
        """Hold the join code's lock; it is dropped once nobody holds or awaits it."""
        lock = self.locks.setdefault(join_code, asyncio.Lock())
        self._lock_users[join_code] = self._lock_users.get(join_code, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[join_code] -= 1
            if not self._lock_users[join_code]:
                del self._lock_users[join_code]
                self.locks.pop(join_code, None)

    async def get_session(self, join_code: str) -> GameState | None:
        raw = await self.store.get(join_code)
        return GameState.model_validate_json(raw) if raw else None

    async def save_session(self, join_code: str, s: GameState):
        ttl = self.ended_ttl if s.status == GameStatus.ENDED else self.session_ttl
        await self.store.set(join_code, s.model_dump_json(by_alias=True), ttl=ttl)

    async def _require_session(self, join_code: str) -> GameState:
        s = await self.get_session(join_code)
        if not s:
            raise SessionNotFound()
        return s

    async def _current_question(self, s: GameState) -> Question:
        questions = await self.catalog.get_ordered_questions(s.quiz_id)
        if not 0 <= s.current_question_index < len(questions):
            raise NoCurrentQuestion()
        return questions[s.current_question_index]

    async def create_session(self, quiz_id: str, host_id: str) -> str:
        for _ in range(MAX_JOIN_CODE_ATTEMPTS):
            join_code = generate_join_code()
            async with self._lock(join_code):
                existing = await self.get_session(join_code)
                if existing and existing.status != GameStatus.ENDED:
                    logger.info("Join code %s already in use, regenerating", join_code)
                    continue

                session_id = await self.ledger.record_created(join_code, quiz_id, host_id)
                s = GameState(session_id=session_id, quiz_id=quiz_id, host_id=host_id)
                await self.save_session(join_code, s)

            logger.info("Created session %s for quiz %s (host %s)", join_code, quiz_id, host_id)
            return join_code

        raise JoinCodeUnavailable()

    async def join_session(self, join_code: str, nickname: str, player_id: str) -> GameState:
        async with self._lock(join_code):
            s = await self._require_session(join_code)
            if s.status != GameStatus.WAITING:
                raise InvalidPhase("Game already started")

            # re-joining replaces the entry and resets the score
            s.players[player_id] = Player(id=player_id, nickname=nickname)
            await self.save_session(join_code, s)

        logger.info("Player %s (%s) joined %s", player_id, nickname, join_code)
        return s

    async def start_game(self, join_code: str) -> GameState | None:
        async with self._lock(join_code):
            s = await self.get_session(join_code)
            if not s:
                return None
            if s.status != GameStatus.WAITING:
                raise InvalidPhase("Game already started")

            s.status = GameStatus.ACTIVE
            s.start_time = now_ms()
            s.current_question_index = -1
            await self.save_session(join_code, s)
            await self.ledger.record_started(join_code)

        logger.info("Started session %s with %d players", join_code, len(s.players))
        return s

    async def next_question(self, join_code: str) -> NextQuestionOutcome:
        async with self._lock(join_code):
            s = await self._require_session(join_code)
            if s.status == GameStatus.ENDED:
                raise InvalidPhase("Game has ended")
            if s.status not in ADVANCEABLE:
                raise InvalidPhase("Game has not started")

            questions = await self.catalog.get_ordered_questions(s.quiz_id)
            s.current_question_index += 1
            s.answers = {}
            s.question_start_time = now_ms()
            s.status = GameStatus.SHOWING_QUESTION

            question = None
            if s.current_question_index < len(questions):
                question = questions[s.current_question_index]
            else:
                s.status = GameStatus.ENDED
                s.question_start_time = None

            await self.save_session(join_code, s)
            if s.status == GameStatus.ENDED:
                await self.ledger.record_ended(join_code)

        if question:
            logger.info(
                "Session %s showing question %d/%d", join_code, s.current_question_index + 1, len(questions)
            )
        else:
            logger.info("Session %s ran out of questions, game ended", join_code)
        return NextQuestionOutcome(state=s, question=question, total_questions=len(questions))

    async def submit_answer(self, join_code: str, player_id: str, option_index: int) -> SubmitOutcome:
        async with self._lock(join_code):
            s = await self._require_session(join_code)
            if s.status != GameStatus.SHOWING_QUESTION:
                raise InvalidPhase("Not accepting answers")
            if player_id not in s.players:
                raise PlayerNotFound()
            if player_id in s.answers:
                raise DuplicateAnswer()

            question = await self._current_question(s)
            started = s.question_start_time if s.question_start_time is not None else now_ms()
            response_time_ms = max(0, now_ms() - started)
            correct = option_index == question.correct_option_index
            points = compute_points(correct, response_time_ms, question.time_limit)

            s.answers[player_id] = Answer(
                player_id=player_id,
                option_index=option_index,
                response_time_ms=response_time_ms,
            )
            s.players[player_id].score += points
            await self.save_session(join_code, s)

        logger.debug(
            "Session %s: %s answered %d (correct=%s, +%d, %dms)",
            join_code, player_id, option_index, correct, points, response_time_ms,
        )
        return SubmitOutcome(correct=correct, score=points)

    async def show_results(self, join_code: str) -> ResultsOutcome:
        async with self._lock(join_code):
            s = await self._require_session(join_code)
            if s.status == GameStatus.ENDED:
                raise InvalidPhase("Game has ended")
            return await self._reveal(join_code, s)

    async def close_question(self, join_code: str, question_index: int) -> ResultsOutcome | None:
        """Reveal results only if ``question_index`` is still the open question.

        Used by deadline timers, which may fire after the host has already
        moved on; in that case nothing changes and ``None`` is returned.
        """
        async with self._lock(join_code):
            s = await self.get_session(join_code)
            if (
                not s
                or s.status != GameStatus.SHOWING_QUESTION
                or s.current_question_index != question_index
            ):
                return None
            return await self._reveal(join_code, s)

    async def _reveal(self, join_code: str, s: GameState) -> ResultsOutcome:
        question = await self._current_question(s)

        s.status = GameStatus.SHOWING_RESULTS
        await self.save_session(join_code, s)

        distribution = [0] * len(question.options)
        correct_count = 0
        for answer in s.answers.values():
            if 0 <= answer.option_index < len(distribution):
                distribution[answer.option_index] += 1
            if answer.option_index == question.correct_option_index:
                correct_count += 1

        logger.info(
            "Session %s results for question %d: %d/%d correct",
            join_code, s.current_question_index, correct_count, len(s.answers),
        )
        return ResultsOutcome(
            state=s,
            correct_option_index=question.correct_option_index,
            answer_distribution=distribution,
            correct_count=correct_count,
        )

    async def get_leaderboard(self, join_code: str) -> List[Player]:
        s = await self.get_session(join_code)
        if not s:
            return []
        return sort_leaderboard(s.players.values())

    async def end_game(self, join_code: str) -> None:
        async with self._lock(join_code):
            s = await self.get_session(join_code)
            if not s:
                return
            if s.status == GameStatus.ENDED:
                raise InvalidPhase("Game has ended")

            s.status = GameStatus.ENDED
            s.question_start_time = None
            await self.save_session(join_code, s)
            await self.ledger.record_ended(join_code)

        logger.info("Session %s ended by host", join_code)
