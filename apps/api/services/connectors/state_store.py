"""Short-lived pending-authorization store keyed by the OAuth ``state`` value.

Holds ``state -> (user_id, platform, code_verifier, shop)`` between the
authorize redirect and the provider callback. Redis-backed with an in-process
fallback when Redis is unreachable. Every state is single-use.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Dict, Optional, Tuple

import redis.asyncio as redis

from config import settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "hub:oauth:state:"

_local_pending: Dict[str, Tuple[str, float]] = {}
_local_lock = asyncio.Lock()


@dataclass(frozen=True)
class PendingAuthorization:
    state: str
    user_id: str
    platform: str
    code_verifier: Optional[str] = field(default=None, repr=False)
    shop: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "PendingAuthorization":
        return cls(**json.loads(raw))


async def _save_local(key: str, payload: str, ttl_seconds: int) -> None:
    now = time.time()
    async with _local_lock:
        for stale in [k for k, (_, expires_at) in _local_pending.items() if expires_at <= now]:
            _local_pending.pop(stale, None)
        _local_pending[key] = (payload, now + ttl_seconds)


async def _consume_local(key: str) -> Optional[str]:
    async with _local_lock:
        entry = _local_pending.pop(key, None)
    if entry is None:
        return None
    payload, expires_at = entry
    if expires_at <= time.time():
        return None
    return payload


class PendingAuthorizationStore:
    """``redis_url=None`` keeps everything in process."""

    def __init__(self, redis_url: Optional[str] = None, ttl_seconds: int = 600) -> None:
        self.redis_url = redis_url
        self.ttl_seconds = max(int(ttl_seconds), 1)

    async def save(self, pending: PendingAuthorization) -> None:
        key = f"{KEY_PREFIX}{pending.state}"
        payload = pending.to_json()
        if self.redis_url:
            try:
                client = redis.from_url(self.redis_url, decode_responses=True)
                try:
                    await client.set(key, payload, ex=self.ttl_seconds)
                finally:
                    await client.aclose()
                return
            except Exception as exc:
                logger.warning("Redis unavailable for OAuth state, using local store: %s", exc)
        await _save_local(key, payload, self.ttl_seconds)

    async def consume(self, state: str) -> Optional[PendingAuthorization]:
        """Return and delete the pending authorization, or None if unknown/expired."""
        if not state:
            return None
        key = f"{KEY_PREFIX}{state}"
        payload: Optional[str] = None
        if self.redis_url:
            try:
                client = redis.from_url(self.redis_url, decode_responses=True)
                try:
                    payload = await client.getdel(key)
                finally:
                    await client.aclose()
            except Exception as exc:
                logger.warning("Redis unavailable for OAuth state lookup, using local store: %s", exc)
        if payload is None:
            payload = await _consume_local(key)
        if payload is None:
            return None
        return PendingAuthorization.from_json(payload)


def get_state_store() -> PendingAuthorizationStore:
    return PendingAuthorizationStore(
        redis_url=settings.REDIS_URL or None,
        ttl_seconds=settings.OAUTH_STATE_TTL_SECONDS,
    )
