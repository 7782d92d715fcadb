import asyncio
import json
import threading
import time
from typing import Any, Callable, List, Optional, Tuple

import redis

from taskapi.obs.logger import JsonLogger
from taskapi.obs.middleware import ResponseRecorder


async def send_json_response(
    send: Callable,
    data: Any,
    status: int = 200,
    headers: Optional[List[Tuple[bytes, bytes]]] = None,
):
    body = json.dumps(data, separators=(",", ":")).encode()
    await send({
        "type": "http.response.start",
        "status": status,
        "headers": [
            (b"content-type", b"application/json"),
            (b"content-length", str(len(body)).encode()),
            *(headers or []),
        ],
    })
    await send({
        "type": "http.response.body",
        "body": body,
    })


class TokenBucket:
    """Process-local token bucket: `burst` capacity refilled at `rate` tokens/sec."""

    def __init__(self, rate: float, burst: int, clock: Callable[[], float] = time.monotonic):
        if rate <= 0:
            raise ValueError("rate must be positive")
        if burst < 1:
            raise ValueError("burst must be at least 1")
        self.rate = float(rate)
        self.burst = int(burst)
        self._clock = clock
        self._lock = threading.Lock()
        self._tokens = float(burst)
        self._last = clock()

    def allow(self) -> bool:
        with self._lock:
            now = self._clock()
            elapsed = max(0.0, now - self._last)
            self._last = now
            self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False


# KEYS[1] = bucket key; ARGV = rate, burst, now (seconds)
_REDIS_BUCKET_LUA = """
local rate = tonumber(ARGV[1])
local burst = tonumber(ARGV[2])
local now = tonumber(ARGV[3])
local state = redis.call('HMGET', KEYS[1], 'tokens', 'ts')
local tokens = tonumber(state[1])
local ts = tonumber(state[2])
if tokens == nil or ts == nil then
  tokens = burst
  ts = now
end
tokens = math.min(burst, tokens + math.max(0, now - ts) * rate)
local allowed = 0
if tokens >= 1 then
  tokens = tokens - 1
  allowed = 1
end
redis.call('HSET', KEYS[1], 'tokens', tostring(tokens), 'ts', tostring(now))
redis.call('EXPIRE', KEYS[1], math.ceil(burst / rate) + 1)
return allowed
"""


class RedisTokenBucket:
    """Token bucket stored in Redis so several workers share one quota.

    Refill and take happen in a single Lua script. If Redis is unreachable the
    request is allowed and a warning is logged.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        rate: float,
        burst: int,
        key: str = "rate_limit:tasks-api",
        logger: Optional[JsonLogger] = None,
        clock: Callable[[], float] = time.time,
    ):
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.redis_client = redis_client
        self.rate = float(rate)
        self.burst = int(burst)
        self.key = key
        self.logger = logger
        self._clock = clock
        self._script = redis_client.register_script(_REDIS_BUCKET_LUA)

    def allow(self) -> bool:
        try:
            allowed = self._script(keys=[self.key], args=[self.rate, self.burst, self._clock()])
        except redis.RedisError as e:
            if self.logger:
                self.logger.warning("rate_limit_backend_error", error=str(e))
            return True
        return int(allowed) == 1


def build_rate_limiter(settings, logger: Optional[JsonLogger] = None):
    """Return a limiter for the configured rate, or None when disabled."""
    if settings.RATE_LIMIT_RPS <= 0:
        return None
    if settings.RATE_LIMIT_REDIS_URL:
        client = redis.from_url(settings.RATE_LIMIT_REDIS_URL)
        return RedisTokenBucket(
            client, settings.RATE_LIMIT_RPS, settings.RATE_LIMIT_BURST, logger=logger
        )
    return TokenBucket(settings.RATE_LIMIT_RPS, settings.RATE_LIMIT_BURST)


def retry_after_seconds(rate: float) -> int:
    # floor(1/rate): rounds to 0 for rates of 1 rps and above
    if rate <= 0:
        return 1
    return int(1.0 / rate)


class RateLimitMiddleware:
    def __init__(self, app, limiter=None):
        self.app = app
        self.limiter = limiter

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http" or self.limiter is None:
            return await self.app(scope, receive, send)

        if self.limiter.allow():
            return await self.app(scope, receive, send)

        await send_json_response(
            send,
            {"error": "too_many_requests"},
            status=429,
            headers=[(b"retry-after", str(retry_after_seconds(self.limiter.rate)).encode())],
        )


class RecoveryMiddleware:
    """Turns any exception from inner stages into a 500 instead of a crash."""

    def __init__(self, app, logger: JsonLogger):
        self.app = app
        self.logger = logger

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            return await self.app(scope, receive, send)

        recorder = ResponseRecorder(send)
        try:
            await self.app(scope, receive, recorder)
        except Exception as exc:
            self.logger.exception(
                "panic_recovered",
                exc,
                method=scope.get("method", ""),
                path=scope.get("path", ""),
                response_started=recorder.started,
            )
            if not recorder.started:
                await send_json_response(send, {"error": "internal_error"}, status=500)


class TimeoutMiddleware:
    """Cancels handlers running longer than `timeout_seconds` and answers 504."""

    def __init__(self, app, timeout_seconds: Optional[float], logger: JsonLogger):
        self.app = app
        self.timeout_seconds = timeout_seconds
        self.logger = logger

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http" or not self.timeout_seconds or self.timeout_seconds <= 0:
            return await self.app(scope, receive, send)

        recorder = ResponseRecorder(send)
        try:
            await asyncio.wait_for(self.app(scope, receive, recorder), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            self.logger.warning(
                "request_timeout",
                method=scope.get("method", ""),
                path=scope.get("path", ""),
                timeout_seconds=self.timeout_seconds,
            )
            if not recorder.started:
                await send_json_response(send, {"error": "timeout"}, status=504)
