"""Best-effort shared cache for the canonical set, per-query results and the job lock."""

from __future__ import annotations

import fnmatch
import json
import logging
import time
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Final, Protocol

from pydantic import ValidationError

from app.config import settings
from app.models.investor import Investor, QueryCacheEntry
from app.observability.metrics import metrics

logger = logging.getLogger(__name__)

INVESTORS_KEY: Final[str] = "investors:all"
INVESTOR_KEY_PATTERN: Final[str] = "investor:*"
SCRAPE_LOCK_KEY: Final[str] = "scrape:lock"
LAST_SCRAPE_KEY: Final[str] = "scrape:last"
QUERY_KEY_PREFIX: Final[str] = "search:"
_LOCKED: Final[str] = "1"


def normalize_query(query: str | None) -> str:
    if not query or not isinstance(query, str):
        return ""
    return query.lower().strip()


def query_key(query: str) -> str:
    return f"{QUERY_KEY_PREFIX}{normalize_query(query)}"


class CacheBackend(Protocol):
    """Minimal async key/value contract shared by Redis and the in-process backend."""

    async def get(self, key: str) -> str | None:
        ...

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        ...

    async def delete(self, *keys: str) -> None:
        ...

    async def keys(self, pattern: str) -> list[str]:
        ...

    async def ping(self) -> bool:
        ...


class InMemoryCacheBackend(CacheBackend):
    """Process-local backend with TTL emulation for local runs and tests."""

    def __init__(self) -> None:
        self._values: dict[str, tuple[str, float | None]] = {}
        self._lock = Lock()

    async def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._values.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= time.monotonic():
                self._values.pop(key, None)
                return None
            return value

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        expires_at = time.monotonic() + ttl_seconds if ttl_seconds else None
        with self._lock:
            self._values[key] = (value, expires_at)

    async def delete(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._values.pop(key, None)

    async def keys(self, pattern: str) -> list[str]:
        with self._lock:
            candidates = list(self._values)
        return [key for key in candidates if fnmatch.fnmatchcase(key, pattern)]

    async def ping(self) -> bool:
        return True


class RedisCacheBackend(CacheBackend):
    """Adapter over a ``redis.asyncio`` client created with ``decode_responses=True``."""

    def __init__(self, client: Any) -> None:
        self._client = client

    async def get(self, key: str) -> str | None:
        value = await self._client.get(key)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        if ttl_seconds:
            await self._client.set(key, value, ex=ttl_seconds)
        else:
            await self._client.set(key, value)

    async def delete(self, *keys: str) -> None:
        if keys:
            await self._client.delete(*keys)

    async def keys(self, pattern: str) -> list[str]:
        found: list[str] = []
        async for key in self._client.scan_iter(match=pattern):
            found.append(key.decode("utf-8") if isinstance(key, bytes) else key)
        return found

    async def ping(self) -> bool:
        return bool(await self._client.ping())


class SharedCache:
    """Typed accessors over a cache backend that never raise.

    The backend is an accelerator, never a source of truth: a missing backend,
    a failed read or an undecodable value is a miss, and a failed write is
    logged and dropped.
    """

    def __init__(
        self,
        backend: CacheBackend | None,
        *,
        query_ttl_seconds: int | None = None,
        lock_ttl_seconds: int | None = None,
    ) -> None:
        self._backend = backend
        self._query_ttl = query_ttl_seconds or settings.query_cache_ttl_seconds
        self._lock_ttl = lock_ttl_seconds or settings.job_lock_ttl_seconds

    @property
    def enabled(self) -> bool:
        return self._backend is not None

    # Canonical set

    async def get_cached_all(self) -> list[Investor] | None:
        payload = await self.get_json(INVESTORS_KEY)
        if not isinstance(payload, list):
            return None
        return _parse_investors(payload, key=INVESTORS_KEY)

    async def set_cached_all(self, investors: list[Investor]) -> None:
        await self.set_json(INVESTORS_KEY, [investor.to_payload() for investor in investors])

    async def invalidate_all(self) -> None:
        if self._backend is None:
            return
        try:
            per_id_keys = await self._backend.keys(INVESTOR_KEY_PATTERN)
            await self._backend.delete(INVESTORS_KEY, *per_id_keys)
        except Exception as exc:
            self._log_failure("cache.write_failed", INVESTORS_KEY, exc)

    # Per-query results

    async def get_query(self, query: str) -> QueryCacheEntry | None:
        key = query_key(query)
        payload = await self.get_json(key)
        if payload is None:
            return None
        if isinstance(payload, list):
            # Legacy layout stored the bare investor list.
            return QueryCacheEntry(investors=_parse_investors(payload, key=key))
        if isinstance(payload, dict):
            raw_response = payload.get("raw_response", payload.get("rawResponse"))
            return QueryCacheEntry(
                investors=_parse_investors(payload.get("investors") or [], key=key),
                raw_response=raw_response if isinstance(raw_response, str) else None,
            )
        logger.warning("cache.unexpected_shape", extra={"key": key})
        return None

    async def set_query(
        self,
        query: str,
        investors: list[Investor],
        raw_response: str | None = None,
    ) -> None:
        payload: dict[str, Any] = {"investors": [investor.to_payload() for investor in investors]}
        if raw_response is not None:
            payload["raw_response"] = raw_response
        await self.set_json(query_key(query), payload, ttl_seconds=self._query_ttl)

    # Job lock

    async def is_locked(self) -> bool:
        return await self._get(SCRAPE_LOCK_KEY) == _LOCKED

    async def set_locked(self, locked: bool) -> None:
        if self._backend is None:
            return
        try:
            if locked:
                await self._backend.set(SCRAPE_LOCK_KEY, _LOCKED, ttl_seconds=self._lock_ttl)
                await self._backend.set(LAST_SCRAPE_KEY, datetime.now(timezone.utc).isoformat())
            else:
                await self._backend.delete(SCRAPE_LOCK_KEY)
        except Exception as exc:
            self._log_failure("cache.write_failed", SCRAPE_LOCK_KEY, exc)

    async def clear_lock(self) -> None:
        await self.set_locked(False)

    async def get_last_run_time(self) -> datetime | None:
        raw = await self._get(LAST_SCRAPE_KEY)
        if not raw:
            return None
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            logger.warning("cache.invalid_timestamp", extra={"key": LAST_SCRAPE_KEY})
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    # Generic JSON helpers

    async def get_json(self, key: str) -> Any:
        raw = await self._get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("cache.decode_failed", extra={"key": key})
            return None

    async def set_json(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        if self._backend is None:
            return
        try:
            await self._backend.set(key, json.dumps(value), ttl_seconds=ttl_seconds)
        except Exception as exc:
            self._log_failure("cache.write_failed", key, exc)

    async def delete(self, key: str) -> None:
        if self._backend is None:
            return
        try:
            await self._backend.delete(key)
        except Exception as exc:
            self._log_failure("cache.write_failed", key, exc)

    async def ping(self) -> bool:
        if self._backend is None:
            return False
        try:
            return await self._backend.ping()
        except Exception as exc:
            self._log_failure("cache.read_failed", "ping", exc)
            return False

    async def _get(self, key: str) -> str | None:
        if self._backend is None:
            return None
        try:
            return await self._backend.get(key)
        except Exception as exc:
            self._log_failure("cache.read_failed", key, exc)
            return None

    @staticmethod
    def _log_failure(event: str, key: str, exc: Exception) -> None:
        metrics.increment(event, tags={"key": key.split(":", 1)[0], "error": type(exc).__name__})
        logger.warning(event, extra={"key": key, "error": str(exc)})


def _parse_investors(entries: list[Any], *, key: str) -> list[Investor]:
    investors: list[Investor] = []
    skipped = 0
    for entry in entries:
        try:
            investors.append(Investor.model_validate(entry))
        except ValidationError:
            skipped += 1
    if skipped:
        logger.warning("cache.invalid_entries", extra={"key": key, "skipped": skipped})
    return investors


def build_shared_cache(client: Any | None = None) -> SharedCache:
    """Wrap the configured Redis client, or an in-process backend when none is set."""
    if client is not None:
        return SharedCache(RedisCacheBackend(client))
    return SharedCache(InMemoryCacheBackend())
