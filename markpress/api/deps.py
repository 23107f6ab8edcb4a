from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone

import redis
from fastapi import HTTPException, Request

from markpress.config import ADMIN_LOCK_STEP_SECONDS, ADMIN_PASSWORD, RATE_LIMIT_PER_MINUTE, REDIS_URL
from markpress.core.rate_limit import RateLimiter, connect_redis
from markpress.storage import LocalBlobStore, get_store

logger = logging.getLogger("markpress")

rate_limiter = RateLimiter(RATE_LIMIT_PER_MINUTE, redis_url=REDIS_URL)
_attempts_redis = connect_redis(REDIS_URL)
_admin_attempts_memory: dict[str, dict] = {}
_ADMIN_ATTEMPTS_TTL_SECONDS = 3600


def get_blob_store() -> LocalBlobStore:
    return get_store()


async def enforce_rate_limit(request: Request):
    client = request.client.host if request.client else "unknown"
    allowed, retry_after = rate_limiter.hit(client)
    if not allowed:
        headers = {"Retry-After": str(retry_after)}
        raise HTTPException(
            status_code=429,
            detail=f"Rate limit exceeded. Try again in {retry_after} seconds.",
            headers=headers,
        )


def _fresh_attempts() -> dict:
    return {"failures": 0, "penalty": 0, "lock_until": None}


def _get_admin_attempts(client: str) -> dict:
    if _attempts_redis is not None:
        try:
            raw = _attempts_redis.get(f"markpress:admin_attempts:{client}")
            return json.loads(raw) if raw else _fresh_attempts()
        except redis.RedisError:
            logger.warning("event=admin_attempts_read_failed client=%s", client)
    return _admin_attempts_memory.setdefault(client, _fresh_attempts())


def _set_admin_attempts(client: str, state: dict) -> None:
    if _attempts_redis is not None:
        try:
            _attempts_redis.setex(
                f"markpress:admin_attempts:{client}", _ADMIN_ATTEMPTS_TTL_SECONDS, json.dumps(state)
            )
            return
        except redis.RedisError:
            logger.warning("event=admin_attempts_write_failed client=%s", client)
    _admin_attempts_memory[client] = state


async def require_admin(request: Request):
    """Admin gate: password header or query, locked out with growing penalties."""
    client = request.client.host if request.client else "unknown"
    state = _get_admin_attempts(client)
    now = datetime.now(timezone.utc)
    lock_until = datetime.fromisoformat(state["lock_until"]) if state.get("lock_until") else None

    if lock_until and now < lock_until:
        minutes = max(1, int((lock_until - now).total_seconds() // 60) + 1)
        raise HTTPException(status_code=429, detail=f"Too many attempts. Try again in {minutes} minutes.")
    if lock_until:
        state["lock_until"] = None

    password = request.headers.get("x-admin-password") or request.query_params.get("password")
    if not password:
        raise HTTPException(status_code=401, detail="Admin password required")

    if ADMIN_PASSWORD and password == ADMIN_PASSWORD:
        state["failures"] = 0
        _set_admin_attempts(client, state)
        return

    state["failures"] = state.get("failures", 0) + 1
    if state["failures"] >= 3:
        state["failures"] = 0
        state["penalty"] = state.get("penalty", 0) + 1
        duration = state["penalty"] * ADMIN_LOCK_STEP_SECONDS
        state["lock_until"] = (now + timedelta(seconds=duration)).isoformat()
        _set_admin_attempts(client, state)
        logger.warning("event=admin_locked client=%s seconds=%s", client, duration)
        raise HTTPException(
            status_code=429,
            detail=f"Too many attempts. Locked for {max(1, duration // 60)} minutes.",
        )
    _set_admin_attempts(client, state)
    raise HTTPException(status_code=401, detail="Invalid password")


def require_user(request: Request) -> str:
    """User id forwarded by the upstream identity provider."""
    user_id = (request.headers.get("x-user-id") or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Sign in required")
    return user_id


def optional_user(request: Request) -> str | None:
    return (request.headers.get("x-user-id") or "").strip() or None
