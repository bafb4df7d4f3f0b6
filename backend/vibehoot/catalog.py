from __future__ import annotations

from typing import List

from .db import InMemoryCollection
from .models import Question, Quiz


class QuizCatalog:
    """Read-only view of authored quizzes, as the engine needs it."""

    async def get_ordered_questions(self, quiz_id: str) -> List[Question]:
        raise NotImplementedError


class InMemoryQuizCatalog(QuizCatalog):
    def __init__(self, collection: InMemoryCollection | None = None):
        self.quizzes = collection if collection is not None else InMemoryCollection()

    async def put_quiz(self, quiz: Quiz) -> None:
        await self.quizzes.update_one({"id": quiz.id}, {"$set": quiz.model_dump()}, upsert=True)

    async def get_quiz(self, quiz_id: str) -> Quiz | None:
        doc = await self.quizzes.find_one({"id": quiz_id})
        return Quiz(**doc) if doc else None

    async def get_ordered_questions(self, quiz_id: str) -> List[Question]:
        quiz = await self.get_quiz(quiz_id)
        if not quiz:
            return []
        return sorted(quiz.questions, key=lambda q: q.order)
