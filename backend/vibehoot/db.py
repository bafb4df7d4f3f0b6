from __future__ import annotations

import asyncio
import copy
from functools import lru_cache
from typing import Any, Dict, List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    ADMIN_KEY: str = "change-me"
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:8080"
    CORS_ORIGIN_REGEX: Optional[str] = None
    REDIS_URL: Optional[str] = None
    SESSION_TTL_SECONDS: int = 24 * 60 * 60
    SESSION_ENDED_TTL_SECONDS: int = 60 * 60
    SESSION_PURGE_INTERVAL_SECONDS: float = 60.0
    AUTO_SHOW_RESULTS: bool = False
    RESULTS_GRACE_SECONDS: float = 1.0
    LOG_LEVEL: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


class InMemoryCollection:
    def __init__(self):
        self._docs: List[Dict[str, Any]] = []
        self._lock = asyncio.Lock()

    async def find_one(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        async with self._lock:
            for doc in reversed(self._docs):
                if self._matches(doc, query):
                    return copy.deepcopy(doc)
        return None

    async def find_all(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        async with self._lock:
            return [copy.deepcopy(doc) for doc in self._docs if self._matches(doc, query)]

    async def update_one(self, query: Dict[str, Any], update: Dict[str, Any], upsert: bool = False) -> bool:
        """Apply ``update`` to the newest matching document.

        Returns ``True`` when a document was modified or inserted.
        """
        async with self._lock:
            for idx in range(len(self._docs) - 1, -1, -1):
                if self._matches(self._docs[idx], query):
                    self._docs[idx] = self._apply_update(copy.deepcopy(self._docs[idx]), update)
                    return True

            if upsert:
                new_doc = copy.deepcopy(query)
                new_doc = self._apply_update(new_doc, update)
                self._docs.append(new_doc)
                return True
        return False

    async def insert_one(self, document: Dict[str, Any]):
        async with self._lock:
            self._docs.append(copy.deepcopy(document))

    def _apply_update(self, doc: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        for op, payload in update.items():
            if op == "$set":
                for key, value in payload.items():
                    doc[key] = copy.deepcopy(value)
            else:  # pragma: no cover - only $set is used today
                raise ValueError(f"Unsupported update operator: {op}")
        return doc

    def _matches(self, doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
        for key, expected in (query or {}).items():
            if doc.get(key) != expected:
                return False
        return True


class InMemoryDatabase:
    def __init__(self):
        self.quizzes = InMemoryCollection()
        self.sessions = InMemoryCollection()


db: Any = InMemoryDatabase()
