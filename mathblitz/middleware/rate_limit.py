"""Sliding-window rate limiter middleware for FastAPI."""
import json
import math
import time
from collections import defaultdict, deque
from dataclasses import dataclass

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from mathblitz.config import settings


@dataclass(frozen=True)
class RateLimitRule:
    name: str
    path_prefix: str
    limit: int
    window_s: float
    method: str | None = None
    message: str = "Too many requests from this IP. Please try again later."

    def matches(self, request: Request) -> bool:
        if self.method is not None and request.method != self.method:
            return False
        return request.url.path.startswith(self.path_prefix)


def default_rules() -> list[RateLimitRule]:
    return [
        RateLimitRule(
            "api", "/api",
            settings.api_rate_limit_requests, settings.api_rate_limit_window_s,
        ),
        RateLimitRule(
            "submit", "/api/game/submit",
            settings.submit_rate_limit_requests, settings.submit_rate_limit_window_s,
            method="POST",
            message="Too many submission attempts. Please wait before trying again.",
        ),
        RateLimitRule(
            "user", "/api/game/user",
            settings.user_rate_limit_requests, settings.user_rate_limit_window_s,
            method="POST",
            message="Too many user creation attempts. Please wait before trying again.",
        ),
    ]


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Per-IP sliding-window rate limiter.
    Every matching rule must have room; a request is counted against all of
    them only when it is let through.
    """

    def __init__(self, app, rules: list[RateLimitRule] | None = None):
        super().__init__(app)
        self._rules = rules if rules is not None else default_rules()
        # (rule name, ip) → deque of request timestamps
        self._windows: dict[tuple[str, str], deque] = defaultdict(deque)

    def _get_ip(self, request: Request) -> str:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return request.client.host if request.client else "unknown"

    async def dispatch(self, request: Request, call_next) -> Response:
        ip = self._get_ip(request)
        now = time.monotonic()
        rules = [rule for rule in self._rules if rule.matches(request)]

        for rule in rules:
            dq = self._windows[(rule.name, ip)]

            # Evict timestamps outside the window
            while dq and now - dq[0] > rule.window_s:
                dq.popleft()

            if len(dq) >= rule.limit:
                return Response(
                    content=json.dumps({"detail": rule.message, "retryAfter": rule.window_s}),
                    status_code=429,
                    media_type="application/json",
                    headers={"Retry-After": str(math.ceil(rule.window_s))},
                )

        for rule in rules:
            self._windows[(rule.name, ip)].append(now)
        return await call_next(request)
