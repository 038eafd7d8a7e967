"""
Base class shared by the four memory-type stores.

Every store exposes the same async contract (``initialize``, ``store``,
``retrieve``) and runs its blocking SQLAlchemy work in a worker thread.
"""

from __future__ import annotations

import asyncio
import json
import re
from datetime import datetime
from typing import Any, Mapping, Optional

from sqlalchemy import func

import core.config as config
from core.context import MemoryContext
from core.db import DB

logger = config.logger

_TOKEN_RE = re.compile(r"[a-z0-9]+")


def normalize_content(content: Any) -> dict:
    """Strings become ``{"text": ...}``; mappings are copied; anything else is wrapped."""
    if isinstance(content, str):
        return {"text": content}
    if isinstance(content, Mapping):
        return dict(content)
    if content is None:
        return {}
    return {"value": content}


def content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, Mapping):
        for key in ("text", "caption_summary", "summary", "description"):
            value = content.get(key)
            if isinstance(value, str) and value:
                return value
    try:
        return json.dumps(content, default=str)
    except (TypeError, ValueError):
        return str(content)


def keyword_score(query: Optional[str], text: str) -> float:
    """Fraction of query terms present in text, 0.0 when the query is empty."""
    if not query:
        return 0.0
    terms = set(_TOKEN_RE.findall(query.lower()))
    if not terms:
        return 0.0
    words = set(_TOKEN_RE.findall(text.lower()))
    return len(terms & words) / len(terms)


def iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def has_keyword(content: Any, keywords) -> bool:
    if not isinstance(content, str):
        return False
    lowered = content.lower()
    return any(keyword in lowered for keyword in keywords)


def attr(mapping: Any, snake: str, camel: Optional[str] = None, default: Any = None) -> Any:
    """Read a flag from a context or metadata mapping under either naming style."""
    if mapping is None:
        return default
    value = mapping.get(snake)
    if value is None and camel:
        value = mapping.get(camel)
    return default if value is None else value


class MemoryTypeStore:
    memory_type = ""
    model = None

    def __init__(self, agent_id: Any, user_id: str):
        self.agent_id = str(agent_id)
        self.user_id = str(user_id)
        self.initialized = False
        self.metrics = {
            "stores": 0,
            "retrievals": 0,
            "failures": 0,
            "records": 0,
            "last_store": None,
            "last_retrieval": None,
        }

    def _session(self):
        if DB.SessionLocal is None:
            raise RuntimeError("Database not initialized")
        return DB.SessionLocal()

    def _owned(self, db):
        return db.query(self.model).filter(
            self.model.agent_id == self.agent_id,
            self.model.user_id == self.user_id,
        )

    async def initialize(self) -> None:
        if self.initialized:
            return
        self.metrics["records"] = await asyncio.to_thread(self._count_sync)
        self.initialized = True
        logger.info(
            "Memory store initialized",
            extra={
                "memory_type": self.memory_type,
                "agent_id": self.agent_id,
                "user_id": self.user_id,
                "records": self.metrics["records"],
            },
        )

    def _count_sync(self) -> int:
        db = self._session()
        try:
            return self._owned(db).with_entities(func.count(self.model.id)).scalar() or 0
        finally:
            db.close()

    async def store(self, content: Any, context: Any, metadata: Optional[dict] = None) -> dict:
        if not self.initialized:
            await self.initialize()
        ctx = MemoryContext.from_value(context)
        try:
            record = await asyncio.to_thread(self._store_sync, content, ctx, dict(metadata or {}))
        except Exception:
            self.metrics["failures"] += 1
            raise
        self.metrics["stores"] += 1
        self.metrics["records"] += 1
        self.metrics["last_store"] = datetime.utcnow().isoformat()
        record.setdefault("memory_type", self.memory_type)
        record.setdefault("stored", True)
        return record

    async def retrieve(self, query: Optional[str], context: Any, options: Optional[dict] = None) -> list[dict]:
        if not self.initialized:
            await self.initialize()
        ctx = MemoryContext.from_value(context)
        options = dict(options or {})
        try:
            results = await asyncio.to_thread(self._retrieve_sync, query, ctx, options)
        except Exception:
            self.metrics["failures"] += 1
            raise
        self.metrics["retrievals"] += 1
        self.metrics["last_retrieval"] = datetime.utcnow().isoformat()
        return results

    async def get(self, record_id: str) -> Optional[dict]:
        return await asyncio.to_thread(self._get_sync, record_id)

    def _get_sync(self, record_id: str) -> Optional[dict]:
        db = self._session()
        try:
            row = self._owned(db).filter(self.model.id == record_id).first()
            return self._serialize(row, None) if row is not None else None
        finally:
            db.close()

    def _scan_limit(self, options: Mapping[str, Any]) -> int:
        limit = options.get("limit") or config.DEFAULT_RETRIEVE_LIMIT
        return max(1, min(int(limit), config.STORE_SCAN_LIMIT))

    def _store_sync(self, content: Any, ctx: MemoryContext, metadata: dict) -> dict:
        raise NotImplementedError

    def _retrieve_sync(self, query: Optional[str], ctx: MemoryContext, options: dict) -> list[dict]:
        raise NotImplementedError

    def _serialize(self, row, query: Optional[str]) -> dict:
        raise NotImplementedError

    def stats(self) -> dict:
        return {
            "memory_type": self.memory_type,
            "initialized": self.initialized,
            **self.metrics,
        }
