"""
Per-fingerprint result cache for agent responses.

The cache is an explicitly injected collaborator: ResultCache owns the TTL
rules and lazy eviction, and delegates storage to any CacheStore (in-memory
for tests, MongoDB via agents.librarian.Librarian in production). Writes
are keyed by fingerprint and idempotent, so no locking is needed.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Callable, Iterable
from datetime import datetime, time, timedelta, timezone
from typing import Any, Protocol
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from core.schema import AgentContext, AgentResponse, CacheEntry, TTLClass

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def fingerprint(
    framework: str,
    context: AgentContext,
    fields: Iterable[str] | None = None,
) -> str:
    """Deterministic digest of a stage's effective input.

    Args:
        framework: Framework identifier.
        context: Context the agent will receive (upstream included).
        fields: Optional subset of AgentContext field names the agent reads;
            other fields do not affect the fingerprint.

    Returns:
        Hex SHA-256 of the canonical JSON of (framework, normalized context).
    """
    include = set(fields) if fields is not None else None
    normalized = context.model_dump(
        mode="json", by_alias=False, exclude_none=True, include=include
    )
    if not normalized.get("upstream"):
        normalized.pop("upstream", None)
    canonical = json.dumps(
        {"framework": framework, "context": normalized},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class CacheStore(Protocol):
    """Key/value persistence with optional expiry."""

    async def get(self, key: str) -> dict[str, Any] | None: ...

    async def put(
        self, key: str, value: dict[str, Any], expires_at: datetime | None = None
    ) -> None: ...

    async def delete(self, key: str) -> None: ...


class InMemoryCacheStore:
    """Process-local CacheStore backed by a dict."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self._items: dict[str, tuple[dict[str, Any], datetime | None]] = {}
        self._clock = clock

    async def get(self, key: str) -> dict[str, Any] | None:
        item = self._items.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and self._clock() >= expires_at:
            self._items.pop(key, None)
            return None
        return value

    async def put(
        self, key: str, value: dict[str, Any], expires_at: datetime | None = None
    ) -> None:
        self._items[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._items.pop(key, None)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items


class ResultCache:
    """TTL-aware cache of AgentResponses keyed by fingerprint.

    Expired entries are evicted lazily on read; there is no background sweep.
    Store failures are logged and treated as misses so a cache outage never
    fails a stage.
    """

    def __init__(
        self,
        store: CacheStore,
        *,
        stable_ttl: timedelta = timedelta(days=365),
        tz: str = "UTC",
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._stable_ttl = stable_ttl
        self._tz = ZoneInfo(tz)
        self._clock = clock

    @property
    def store(self) -> CacheStore:
        return self._store

    def expires_at(self, ttl_class: TTLClass, created_at: datetime) -> datetime | None:
        """Expiry instant for an entry created at created_at.

        DAILY entries expire at the next local midnight in the configured
        timezone; STABLE_PROFILE entries after stable_ttl.
        """
        if ttl_class is TTLClass.STABLE_PROFILE:
            return created_at + self._stable_ttl
        if ttl_class is TTLClass.DAILY:
            local = created_at.astimezone(self._tz)
            next_day = datetime.combine(local.date() + timedelta(days=1), time(0), tzinfo=self._tz)
            return next_day.astimezone(timezone.utc)
        raise ValueError(f"{ttl_class.value} entries are never cached")

    async def lookup(self, key: str) -> CacheEntry | None:
        """Return the live entry for key, evicting it if expired."""
        try:
            raw = await self._store.get(key)
        except Exception:
            logger.warning("cache_read_failed", extra={"fingerprint": key[:12]}, exc_info=True)
            return None
        if raw is None:
            return None
        try:
            entry = CacheEntry.model_validate(raw)
        except ValidationError:
            logger.warning("cache_entry_corrupt", extra={"fingerprint": key[:12]})
            await self._evict(key)
            return None
        if entry.is_expired(self._clock()):
            logger.debug("cache_entry_expired", extra={"fingerprint": key[:12]})
            await self._evict(key)
            return None
        logger.debug("cache_hit", extra={"fingerprint": key[:12], "framework": entry.framework})
        return entry

    async def save(
        self,
        key: str,
        framework: str,
        response: AgentResponse,
        ttl_class: TTLClass,
    ) -> CacheEntry | None:
        """Store response under key; NO_CACHE responses are not stored."""
        if ttl_class is TTLClass.NO_CACHE:
            return None
        created_at = self._clock()
        entry = CacheEntry(
            fingerprint=key,
            framework=framework,
            response=response,
            ttl_class=ttl_class,
            created_at=created_at,
            expires_at=self.expires_at(ttl_class, created_at),
        )
        try:
            await self._store.put(key, entry.model_dump(mode="json"), entry.expires_at)
        except Exception:
            logger.warning("cache_write_failed", extra={"fingerprint": key[:12]}, exc_info=True)
            return None
        return entry

    async def _evict(self, key: str) -> None:
        try:
            await self._store.delete(key)
        except Exception:
            logger.warning("cache_evict_failed", extra={"fingerprint": key[:12]}, exc_info=True)
