"""Redis-backed fixed-window request limiting."""

from __future__ import annotations

import logging
import time
from functools import lru_cache
from ipaddress import ip_address, ip_network, IPv4Address, IPv4Network, IPv6Address, IPv6Network
from typing import Callable, Iterable, Protocol, runtime_checkable

from fastapi import status
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.types import ASGIApp

from core import ACCESS_TOKEN_TYPE, decode_token, settings

ACCESS_COOKIE_NAME = "access_token"
logger = logging.getLogger(__name__)


@runtime_checkable
class SupportsRateLimitClient(Protocol):
    async def incr(self, key: str) -> int: ...

    async def expire(self, key: str, ttl: int) -> None: ...


@lru_cache
def _trusted_proxy_networks() -> tuple[IPv4Network | IPv6Network, ...]:
    networks: list[IPv4Network | IPv6Network] = []
    for cidr in settings.rate_limit_trusted_proxies:
        try:
            networks.append(ip_network(cidr, strict=False))
        except ValueError as exc:
            raise ValueError(f"Invalid CIDR in RATE_LIMIT_TRUSTED_PROXIES: {cidr}") from exc
    return tuple(networks)


def _forwarded_client_ip(request: Request) -> str | None:
    for header in settings.rate_limit_ip_headers:
        value = request.headers.get(header)
        if not value:
            continue
        for candidate in value.split(","):
            ip_candidate = candidate.strip()
            if not ip_candidate:
                continue
            try:
                ip_address(ip_candidate)
            except ValueError:
                continue
            return ip_candidate
    return None


def extract_bearer_token(request: Request) -> str | None:
    authorization = request.headers.get("authorization")
    if not authorization:
        return None

    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = value.strip()
    return token or None


def _token_subject(token: str) -> str | None:
    try:
        payload = decode_token(token)
    except ValueError:
        return None
    if payload.get("type") != ACCESS_TOKEN_TYPE:
        return None

    subject = payload.get("sub")
    if isinstance(subject, str):
        return subject.strip() or None
    return None


def _authenticated_client_identifier(request: Request) -> str | None:
    for token in (extract_bearer_token(request), request.cookies.get(ACCESS_COOKIE_NAME)):
        if not token:
            continue
        subject = _token_subject(token)
        if subject:
            return f"user:{subject}"
    return None


def _remote_ip(request: Request) -> tuple[str | None, IPv4Address | IPv6Address | None]:
    host = request.client.host if request.client else None
    if not host:
        return None, None
    try:
        addr = ip_address(host)
    except ValueError:
        return host, None
    return host, addr


def _is_trusted_proxy(remote_ip: IPv4Address | IPv6Address | None) -> bool:
    if remote_ip is None:
        return False
    return any(remote_ip in network for network in _trusted_proxy_networks())


def default_client_identifier(request: Request) -> str:
    """Resolve a stable client identifier for rate limiting."""
    authenticated_identifier = _authenticated_client_identifier(request)
    if authenticated_identifier is not None:
        return authenticated_identifier

    remote_host, remote_ip = _remote_ip(request)
    # Forwarded headers are only honoured from configured proxy networks.
    if _is_trusted_proxy(remote_ip):
        forwarded_ip = _forwarded_client_ip(request)
        if forwarded_ip:
            return forwarded_ip

    return remote_host or "anonymous"


class RateLimiter:
    """Fixed-window counter per client key.

    A limit or window of zero disables limiting.
    """

    def __init__(
        self,
        redis_client: SupportsRateLimitClient,
        limit: int,
        window_seconds: int,
        prefix: str = "circle:rl",
    ) -> None:
        self.redis = redis_client
        self.limit = max(limit, 0)
        self.window_seconds = max(window_seconds, 0)
        self.prefix = prefix

    @property
    def enabled(self) -> bool:
        return self.limit > 0 and self.window_seconds > 0

    def _window_key(self, client_key: str, now: float) -> str:
        window_index = int(now) // self.window_seconds
        return f"{self.prefix}:{client_key}:{window_index}"

    def seconds_until_reset(self, now: float | None = None) -> int:
        if not self.enabled:
            return 0
        current = time.time() if now is None else now
        return self.window_seconds - int(current) % self.window_seconds

    async def allow(self, key: str) -> bool:
        """Count one request for ``key``; False once the window is exhausted."""
        if not self.enabled:
            return True

        window_key = self._window_key(key, time.time())
        hits = await self.redis.incr(window_key)
        if hits == 1:
            await self.redis.expire(window_key, self.window_seconds)
        return hits <= self.limit


@lru_cache
def get_redis_client() -> SupportsRateLimitClient:
    return Redis.from_url(settings.redis_url, decode_responses=False)


_cached_rate_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """Shared limiter built from settings on first use."""
    global _cached_rate_limiter
    if _cached_rate_limiter is None:
        _cached_rate_limiter = RateLimiter(
            redis_client=get_redis_client(),
            limit=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    return _cached_rate_limiter


def set_rate_limiter(limiter: RateLimiter | None) -> None:
    """Replace the shared limiter; tests install an in-memory one."""
    global _cached_rate_limiter
    _cached_rate_limiter = limiter


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: ASGIApp,
        limiter_factory: Callable[[], RateLimiter],
        exempt_paths: Iterable[str] | None = None,
        client_identifier: Callable[[Request], str] | None = None,
    ) -> None:
        super().__init__(app)
        self.limiter_factory = limiter_factory
        self.exempt_paths = set(exempt_paths or ())
        self.client_identifier = client_identifier or default_client_identifier

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint):
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        try:
            limiter = self.limiter_factory()
        except Exception as exc:
            logger.warning("Rate limiter unavailable", exc_info=exc)
            return await call_next(request)

        client_key = self.client_identifier(request) or "anonymous"
        try:
            is_allowed = await limiter.allow(client_key)
        except Exception as exc:
            # Redis outages fail open.
            logger.warning(
                "Rate limit check failed",
                extra={"client_key": client_key},
                exc_info=exc,
            )
            return await call_next(request)

        if not is_allowed:
            return JSONResponse(
                {"detail": "Too Many Requests"},
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                headers={"Retry-After": str(limiter.seconds_until_reset())},
            )

        return await call_next(request)
