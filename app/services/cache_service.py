"""
Cache Service - cached dashboard views with explicit invalidation.

Provides a thin cache wrapper with:
  - Per-agency "my forms" listing cache (5 min TTL)
  - Invalidation helpers called after every form / approval mutation
    (backend failures there are logged and swallowed)

Uses Redis in production (via REDIS_URL), and a simple in-memory dict
for development/testing.
"""

import json
import logging
import os
import time

from flask import current_app, has_app_context

logger = logging.getLogger(__name__)

# ── In-memory backend ────────────────────────────────────────────────────

_memory_store: dict = {}  # key → (value_json, expire_ts)


class _MemoryBackend:
    """Simple dict cache for dev/testing."""

    def get(self, key):
        entry = _memory_store.get(key)
        if entry is None:
            return None
        val, expires = entry
        if expires and time.time() > expires:
            _memory_store.pop(key, None)
            return None
        return val

    def setex(self, key, ttl_seconds, value):
        _memory_store[key] = (value, time.time() + ttl_seconds)

    def delete(self, *keys):
        for k in keys:
            _memory_store.pop(k, None)

    def flushdb(self):
        _memory_store.clear()

    def ping(self):
        return True


# ── Singleton cache backend ──────────────────────────────────────────────

_backend = None


def _get_backend():
    """Lazy-initialise Redis, or the in-memory backend when none is configured."""
    global _backend
    if _backend is not None:
        return _backend

    redis_url = os.getenv("REDIS_URL")
    if redis_url and not redis_url.startswith("memory://"):
        import redis as _redis
        try:
            _backend = _redis.from_url(redis_url, decode_responses=True)
            _backend.ping()
            logger.info("Cache: using Redis at %s", redis_url.split("@")[-1])
        except _redis.RedisError as exc:
            logger.warning("Redis unavailable (%s), falling back to memory cache", exc)
            _backend = _MemoryBackend()
    else:
        _backend = _MemoryBackend()
    return _backend


# ── Default TTLs ─────────────────────────────────────────────────────────

DEFAULT_TTL = 300   # 5 minutes


# ── Key builders ─────────────────────────────────────────────────────────

def _my_forms_key(owner_id):
    return f"forms:mine:{owner_id}"


# ── Public API ───────────────────────────────────────────────────────────


def get_cached(key, ttl=DEFAULT_TTL, loader=None):
    """Generic cache-aside.  If *loader* is provided, it's called on miss
    and the result is cached."""
    be = _get_backend()
    raw = be.get(key)
    if raw is not None:
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            pass
    if loader is None:
        return None
    value = loader()
    if value is not None:
        be.setex(key, ttl, json.dumps(value, default=str))
    return value


def delete_cached(key):
    """Generic delete."""
    _get_backend().delete(key)


def get_my_forms(owner_id, loader, ttl=None):
    """Cached dashboard listing for one agency."""
    if ttl is None:
        ttl = current_app.config.get("CACHE_TTL_SECONDS", DEFAULT_TTL) if has_app_context() else DEFAULT_TTL
    return get_cached(_my_forms_key(owner_id), ttl=ttl, loader=loader)


def invalidate_my_forms(owner_id):
    """Drop the cached listing after the agency's forms change.

    Called after commit, so backend errors are logged and never raised.
    """
    key = _my_forms_key(owner_id)
    try:
        delete_cached(key)
    except Exception:
        logger.exception("Cache invalidation failed for %s", key)


def clear_all():
    """Flush entire cache (mainly for testing)."""
    _get_backend().flushdb()


def health_check():
    """Return cache backend status."""
    try:
        be = _get_backend()
        be.ping()
        backend_type = "redis" if not isinstance(be, _MemoryBackend) else "memory"
        return {"status": "ok", "backend": backend_type}
    except Exception as exc:
        return {"status": "error", "detail": str(exc)}
