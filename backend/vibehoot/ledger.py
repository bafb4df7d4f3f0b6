from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .db import InMemoryCollection
from .models import GameStatus


class SessionLedger:
    """Append-only status mirror of each game, kept for offline reporting.

    A join code can be reused once its previous game has ended, so updates
    always target the row that has not been closed yet.
    """

    def __init__(self, collection: InMemoryCollection | None = None):
        self.sessions = collection if collection is not None else InMemoryCollection()

    async def record_created(self, join_code: str, quiz_id: str, host_id: str) -> str:
        session_id = uuid.uuid4().hex
        await self.sessions.insert_one(
            {
                "id": session_id,
                "join_code": join_code,
                "quiz_id": quiz_id,
                "host_id": host_id,
                "status": GameStatus.WAITING.value,
                "created_at": _utcnow(),
                "started_at": None,
                "ended_at": None,
            }
        )
        return session_id

    async def record_started(self, join_code: str) -> None:
        await self.sessions.update_one(
            {"join_code": join_code, "ended_at": None},
            {"$set": {"status": GameStatus.ACTIVE.value, "started_at": _utcnow()}},
        )

    async def record_ended(self, join_code: str) -> None:
        await self.sessions.update_one(
            {"join_code": join_code, "ended_at": None},
            {"$set": {"status": GameStatus.ENDED.value, "ended_at": _utcnow()}},
        )

    async def get_record(self, join_code: str) -> Optional[Dict[str, Any]]:
        """Most recent row for ``join_code``."""
        return await self.sessions.find_one({"join_code": join_code})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
