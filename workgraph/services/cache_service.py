"""
Workstream view cache.

Derived views of a workstream (rollup aggregate, rendered tree, resolved
permissions) are cached per workstream under one key prefix:

    wg:ws:<workstream_id>:<view>[:<part>...]

Invalidating a workstream therefore means deleting one prefix, whatever
views exist. Adding a cached view only needs its name in WORKSTREAM_VIEWS.

Uses Redis when REDIS_URL points at a Redis server and falls back to an
in-process dict when it is unset, "memory://", or unreachable.
"""

import json
import logging
import os
import time

from flask import current_app, has_app_context

logger = logging.getLogger(__name__)

KEY_PREFIX = "wg"

WORKSTREAM_VIEWS = ("rollup", "tree", "permissions")

DEFAULT_TTL = 300


# ── In-memory fallback ───────────────────────────────────────────────────

_memory_store: dict = {}  # key → (value_json, expire_ts)


class _MemoryBackend:
    """Dict cache for dev/testing, same call surface as the redis client."""

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

    def scan_iter(self, match=None):
        """Glob matching for 'prefix*' patterns only."""
        if match is None:
            return list(_memory_store)
        if match.endswith("*"):
            prefix = match[:-1]
            return [k for k in list(_memory_store) if k.startswith(prefix)]
        return [k for k in list(_memory_store) if k == match]

    def flushdb(self):
        _memory_store.clear()

    def ping(self):
        return True


# ── Singleton cache backend ──────────────────────────────────────────────

_backend = None


def _redis_url():
    if has_app_context():
        return current_app.config.get("REDIS_URL")
    return os.getenv("REDIS_URL")


def _get_backend():
    """Lazy-initialise Redis or fall back to in-memory."""
    global _backend
    if _backend is not None:
        return _backend

    redis_url = _redis_url()
    if redis_url and not redis_url.startswith("memory://"):
        try:
            import redis as _redis
            _backend = _redis.from_url(redis_url, decode_responses=True)
            _backend.ping()
            logger.info("Cache: using Redis at %s", redis_url.split("@")[-1])
        except Exception as exc:
            logger.warning("Redis unavailable (%s), falling back to memory cache", exc)
            _backend = _MemoryBackend()
    else:
        _backend = _MemoryBackend()
    return _backend


def reset_backend():
    """Forget the chosen backend so the next call re-reads REDIS_URL."""
    global _backend
    _backend = None


def default_ttl():
    if has_app_context():
        return current_app.config.get("CACHE_TTL_SECONDS", DEFAULT_TTL)
    return DEFAULT_TTL


# ── Key builders ─────────────────────────────────────────────────────────


def _workstream_prefix(workstream_id):
    # Trailing colon keeps ws 1 from matching ws 12
    return f"{KEY_PREFIX}:ws:{workstream_id}:"


def workstream_key(view, workstream_id, *parts):
    """Build the cache key of a registered view of one workstream."""
    if view not in WORKSTREAM_VIEWS:
        raise ValueError(f"Unknown cached view {view!r}; register it in WORKSTREAM_VIEWS")
    key = f"{_workstream_prefix(workstream_id)}{view}"
    if parts:
        key += ":" + ":".join(str(p) for p in parts)
    return key


# ── Public API ───────────────────────────────────────────────────────────


def get_cached(key, ttl=None, loader=None):
    """Cache-aside read. On a miss *loader* is called and its result stored."""
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
        be.setex(key, ttl or default_ttl(), json.dumps(value, default=str))
    return value


def set_cached(key, value, ttl=None):
    _get_backend().setex(key, ttl or default_ttl(), json.dumps(value, default=str))


def delete_cached(key):
    _get_backend().delete(key)


def delete_prefix(prefix):
    """Delete every key starting with *prefix*; returns the number removed."""
    be = _get_backend()
    keys = list(be.scan_iter(match=f"{prefix}*"))
    if keys:
        be.delete(*keys)
    return len(keys)


def invalidate_workstreams(workstream_ids):
    """Drop every cached view of the given workstreams.

    Callers pass the full closure they need cleared (usually the node plus its
    ancestors, see hierarchy_service.invalidate_with_ancestors).
    """
    ids = sorted({wid for wid in workstream_ids if wid is not None})
    removed = 0
    for wid in ids:
        removed += delete_prefix(_workstream_prefix(wid))
    logger.debug(
        "Invalidated cached views for %d workstream(s)", len(ids),
        extra={"event_type": "cache_invalidate", "invalidated": ids},
    )
    return removed


def clear_all():
    """Flush the entire cache (mainly for tests)."""
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
