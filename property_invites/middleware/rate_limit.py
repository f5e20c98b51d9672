"""
Token-bucket rate limiting with a shared counter store.

Each limiter key (e.g. ``validate_invite:client:203.0.113.7``) owns one
bucket. A call refills the bucket for the whole windows elapsed since the
last refill, then consumes one token if any is left.

Backends:
- RedisBucketStore:    hash per key, updated in a WATCH/MULTI transaction.
                       Fails open if Redis is unreachable.
- DatabaseBucketStore: ``rate_limits`` table, one row per key, updated
                       under a row lock.

Configuration (environment variables):
- RATE_LIMIT_ENABLED:        Kill switch (default: "true")
- RATE_LIMIT_BACKEND:        "redis" or "database" (default: "redis")
- RATE_LIMIT_WINDOW_SECONDS: Window duration in seconds (default: "60")
- RATE_LIMIT_STALE_HOURS:    Idle buckets older than this are purged (default: "24")
- REDIS_URL:                 Redis connection URL (default: "redis://redis:6379/0")

Usage (FastAPI dependency injection):
    from property_invites.middleware.rate_limit import rate_limit_dependency

    @router.post("/api/invites")
    async def create_invite(
        _rate_limit=Depends(rate_limit_dependency("create_invite", create_user_policy)),
    ):
        ...
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

import redis
from fastapi import Depends, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from property_invites.config.rate_limits import (
    BACKEND_DATABASE,
    BucketPolicy,
    get_backend,
    get_redis_url,
    get_stale_hours,
    is_rate_limit_enabled,
)
from property_invites.database.session import get_db_session
from property_invites.models.base import ensure_utc, utc_now
from property_invites.models.rate_limit import RateLimitBucket
from property_invites.platform.audit import extract_client_ip
from property_invites.platform.auth_context import Caller, require_caller
from property_invites.platform.errors import RateLimitedError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Bucket math
# ---------------------------------------------------------------------------

@dataclass
class BucketState:
    """Stored bucket state."""
    tokens: int
    last_refill: datetime


@dataclass
class RateLimitResult:
    """
    Result of a rate limit check.

    Attributes:
        allowed:     Whether the request is allowed.
        remaining:   Tokens left in the bucket after this call.
        limit:       Bucket capacity.
        retry_after: Seconds until the next token is available (0 if allowed).
    """

    allowed: bool
    remaining: int
    limit: int
    retry_after: int


def consume_token(
    state: Optional[BucketState],
    policy: BucketPolicy,
    now: datetime,
) -> Tuple[BucketState, RateLimitResult]:
    """
    Apply one request to a bucket.

    A missing bucket starts full and the first request takes one token.
    Refill is whole tokens only; ``last_refill`` moves forward only when at
    least one token was added, so partial progress carries over.
    """
    if state is None:
        tokens = policy.max_tokens - 1
        return (
            BucketState(tokens=tokens, last_refill=now),
            RateLimitResult(allowed=True, remaining=tokens, limit=policy.max_tokens, retry_after=0),
        )

    last_refill = ensure_utc(state.last_refill)
    elapsed = max(0.0, (now - last_refill).total_seconds())
    refill = math.floor(elapsed / policy.window_seconds * policy.refill_rate)

    tokens = min(policy.max_tokens, state.tokens + refill)
    if refill > 0:
        last_refill = now
        elapsed = 0.0

    if tokens > 0:
        tokens -= 1
        return (
            BucketState(tokens=tokens, last_refill=last_refill),
            RateLimitResult(allowed=True, remaining=tokens, limit=policy.max_tokens, retry_after=0),
        )

    retry_after = max(1, math.ceil(policy.seconds_per_token - elapsed))
    return (
        BucketState(tokens=0, last_refill=last_refill),
        RateLimitResult(allowed=False, remaining=0, limit=policy.max_tokens, retry_after=retry_after),
    )


def _allow_all(policy: BucketPolicy) -> RateLimitResult:
    return RateLimitResult(allowed=True, remaining=policy.max_tokens, limit=policy.max_tokens, retry_after=0)


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------

class RedisBucketStore:
    """
    Buckets stored as Redis hashes ``{tokens, last_refill}``.

    The read-modify-write runs in ``Redis.transaction`` so a concurrent
    writer on the same key makes the transaction retry instead of losing
    an update. If Redis is unavailable requests are allowed and a warning
    is logged.
    """

    def __init__(self, redis_url: Optional[str] = None, client: Optional[redis.Redis] = None):
        self.redis_url = redis_url or get_redis_url()
        self._redis: Optional[redis.Redis] = client

    def _get_redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
        return self._redis

    def consume(self, key: str, policy: BucketPolicy, now: datetime) -> RateLimitResult:
        redis_key = f"ratelimit:{key}"
        ttl_seconds = max(policy.window_seconds, get_stale_hours() * 3600)

        def _apply(pipe) -> RateLimitResult:
            raw = pipe.hgetall(redis_key)
            state = None
            if raw:
                state = BucketState(
                    tokens=int(raw["tokens"]),
                    last_refill=datetime.fromtimestamp(float(raw["last_refill"]), tz=now.tzinfo),
                )
            new_state, result = consume_token(state, policy, now)
            pipe.multi()
            pipe.hset(
                redis_key,
                mapping={
                    "tokens": new_state.tokens,
                    "last_refill": new_state.last_refill.timestamp(),
                },
            )
            pipe.expire(redis_key, ttl_seconds)
            return result

        try:
            return self._get_redis().transaction(_apply, redis_key, value_from_callable=True)
        except (redis.ConnectionError, redis.TimeoutError, redis.RedisError) as exc:
            logger.warning(
                "Redis unavailable for rate limiting - allowing request (fail-open)",
                extra={
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                    "limiter_key": key,
                },
            )
            return _allow_all(policy)


# ---------------------------------------------------------------------------
# Database backend
# ---------------------------------------------------------------------------

class DatabaseBucketStore:
    """
    Buckets stored in the ``rate_limits`` table.

    Each call locks the key's row, applies the bucket math and commits the
    session, so consumption survives even if the rest of the request is
    rolled back. Use it before any other work in the session.
    """

    def __init__(self, session: Session):
        self.session = session

    def _locked(self, key: str) -> Optional[RateLimitBucket]:
        return (
            self.session.query(RateLimitBucket)
            .filter(RateLimitBucket.limiter_key == key)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def consume(self, key: str, policy: BucketPolicy, now: datetime) -> RateLimitResult:
        bucket = self._locked(key)
        if bucket is None:
            new_state, result = consume_token(None, policy, now)
            try:
                with self.session.begin_nested():
                    self.session.add(RateLimitBucket(
                        limiter_key=key,
                        tokens=new_state.tokens,
                        last_refill=new_state.last_refill,
                        max_tokens=policy.max_tokens,
                        refill_rate=policy.refill_rate,
                        window_seconds=policy.window_seconds,
                        created_at=now,
                        updated_at=now,
                    ))
                self.session.commit()
                return result
            except IntegrityError:
                # Another request created the bucket first
                bucket = self._locked(key)
                if bucket is None:
                    raise

        new_state, result = consume_token(
            BucketState(tokens=bucket.tokens, last_refill=bucket.last_refill),
            policy,
            now,
        )
        bucket.tokens = new_state.tokens
        bucket.last_refill = new_state.last_refill
        bucket.max_tokens = policy.max_tokens
        bucket.refill_rate = policy.refill_rate
        bucket.window_seconds = policy.window_seconds
        bucket.updated_at = now
        self.session.commit()
        return result

    def purge_stale(self, older_than: datetime) -> int:
        """Delete buckets not touched since `older_than`. Does not commit."""
        return (
            self.session.query(RateLimitBucket)
            .filter(RateLimitBucket.updated_at < older_than)
            .delete(synchronize_session=False)
        )


# ---------------------------------------------------------------------------
# RateLimiter
# ---------------------------------------------------------------------------

class RateLimiter:
    """Checks and consumes bucket tokens through a backend store."""

    def __init__(
        self,
        store,
        enabled: Optional[bool] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.enabled = is_rate_limit_enabled() if enabled is None else enabled
        self._clock = clock or utc_now

    def check_and_consume(self, key: str, policy: BucketPolicy) -> RateLimitResult:
        if not self.enabled:
            return _allow_all(policy)

        result = self.store.consume(key, policy, self._clock())
        if not result.allowed:
            logger.warning(
                "Rate limit triggered",
                extra={
                    "action": "rate_limit.triggered",
                    "limiter_key": key,
                    "limit": result.limit,
                    "window_seconds": policy.window_seconds,
                    "retry_after": result.retry_after,
                },
            )
        return result


_redis_store: Optional[RedisBucketStore] = None


def get_redis_bucket_store() -> RedisBucketStore:
    """Module-level Redis store so the connection pool is shared."""
    global _redis_store
    if _redis_store is None:
        _redis_store = RedisBucketStore(get_redis_url())
    return _redis_store


def build_rate_limiter(session: Optional[Session] = None) -> RateLimiter:
    """Build a limiter for the configured backend."""
    if get_backend() == BACKEND_DATABASE:
        if session is None:
            raise ValueError("The database rate limit backend needs a session")
        return RateLimiter(DatabaseBucketStore(session))
    return RateLimiter(get_redis_bucket_store())


def purge_stale_buckets(session: Session, now: Optional[datetime] = None) -> int:
    """Delete database buckets idle longer than RATE_LIMIT_STALE_HOURS."""
    now = now or utc_now()
    return DatabaseBucketStore(session).purge_stale(now - timedelta(hours=get_stale_hours()))


# ---------------------------------------------------------------------------
# FastAPI helpers
# ---------------------------------------------------------------------------

def client_key(request: Request) -> str:
    """Identify an anonymous client by its (proxy-aware) address."""
    return extract_client_ip(request) or "unknown"


def get_request_rate_limiter(session: Session = Depends(get_db_session)) -> RateLimiter:
    return build_rate_limiter(session)


def rate_limit_dependency(
    endpoint_name: str,
    policy_factory: Callable[[], BucketPolicy],
) -> Callable:
    """
    Create a FastAPI dependency that enforces a per-identity bucket.

    Raises RateLimitedError (429 with Retry-After) when the bucket is empty.
    """

    async def _dependency(
        request: Request,
        caller: Caller = Depends(require_caller),
        limiter: RateLimiter = Depends(get_request_rate_limiter),
    ) -> RateLimitResult:
        result = limiter.check_and_consume(
            f"{endpoint_name}:user:{caller.user_id}",
            policy_factory(),
        )
        if not result.allowed:
            logger.info(
                "Request rejected by rate limiter",
                extra={
                    "endpoint": endpoint_name,
                    "user_id": caller.user_id,
                    "path": request.url.path,
                    "method": request.method,
                },
            )
            raise RateLimitedError(retry_after=result.retry_after)
        return result

    return _dependency
