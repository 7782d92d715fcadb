import hmac
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional

from starlette.datastructures import Headers

from taskapi.infrastructure.resilience import send_json_response
from taskapi.obs.logger import JsonLogger


class AuthMode(str, Enum):
    NONE = "none"
    API_KEY = "api_key"
    BEARER = "bearer"


API_KEY_CHALLENGE = 'ApiKey realm="tasks", header="X-API-Key"'
BEARER_CHALLENGE = 'Bearer realm="tasks"'


@dataclass(frozen=True)
class AuthConfig:
    mode: AuthMode = AuthMode.NONE
    api_key: str = ""
    bearer_token: str = ""
    skip_paths: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_settings(cls, settings) -> "AuthConfig":
        return cls(
            mode=AuthMode(settings.AUTH_MODE),
            api_key=settings.API_KEY,
            bearer_token=settings.BEARER_TOKEN,
            skip_paths=settings.auth_skip_paths,
        )


def constant_time_eq(got: str, expected: str) -> bool:
    # An unset credential never matches, not even an empty header
    if not expected:
        return False
    return hmac.compare_digest(got.encode(), expected.encode())


class AuthMiddleware:
    def __init__(self, app, config: AuthConfig, logger: Optional[JsonLogger] = None):
        self.app = app
        self.config = config
        self.logger = logger

    async def __call__(self, scope, receive, send):
        if (
            scope["type"] != "http"
            or self.config.mode == AuthMode.NONE
            or scope.get("path") in self.config.skip_paths
        ):
            return await self.app(scope, receive, send)

        headers = Headers(scope=scope)

        if self.config.mode == AuthMode.API_KEY:
            # Header: X-API-Key: <key>
            if constant_time_eq(headers.get("x-api-key", ""), self.config.api_key):
                return await self.app(scope, receive, send)
            return await self._unauthorized(scope, send, API_KEY_CHALLENGE)

        if self.config.mode == AuthMode.BEARER:
            # Header: Authorization: Bearer <token>
            authz = headers.get("authorization", "")
            if authz.startswith("Bearer ") and constant_time_eq(
                authz[len("Bearer "):].strip(), self.config.bearer_token
            ):
                return await self.app(scope, receive, send)
            return await self._unauthorized(scope, send, BEARER_CHALLENGE)

    async def _unauthorized(self, scope, send, challenge: str):
        if self.logger:
            self.logger.info("auth_rejected", mode=self.config.mode.value, path=scope.get("path", ""))
        await send_json_response(
            send,
            {"error": "unauthorized"},
            status=401,
            headers=[(b"www-authenticate", challenge.encode())],
        )
