"""Shared test doubles for the dispatcher and deployment layers."""

import asyncio
import inspect
from typing import Any, Callable, Dict, Optional

from jose import jwt

from wtmigrate.domain.interfaces.transport import CallTransport
from wtmigrate.domain.models.calls import CallDescriptor, CallOutcome
from wtmigrate.infrastructure.resilience.retry_policy import RetryPolicy

DEPLOYMENT_URL = "https://wt.example.com"

# Retries in tests back off for a few milliseconds at most.
FAST_POLICY = RetryPolicy(base_delay_ms=1, growth=2.0, max_delay_ms=8, max_attempts=4)


def encode_token(claims: Dict[str, Any]) -> str:
    """Signs claims with a throwaway key; only the unverified claims are ever read."""
    return jwt.encode(claims, "test-secret", algorithm="HS256")


class FakeTransport(CallTransport):
    """Scripted transport. ``handler(descriptor)`` returns (or resolves to) a CallOutcome."""

    def __init__(self, handler: Callable[[CallDescriptor], Any], base_url: str = DEPLOYMENT_URL, delay: float = 0.0):
        self._handler = handler
        self._base_url = base_url
        self.delay = delay
        self.calls = []
        self.closed = False

    @property
    def base_url(self) -> str:
        return self._base_url

    async def issue(self, descriptor: CallDescriptor) -> CallOutcome:
        self.calls.append(descriptor)
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self._handler(descriptor)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return outcome

    def clone(self, base_url: Optional[str] = None) -> "FakeTransport":
        return FakeTransport(self._handler, base_url or self._base_url, self.delay)

    async def aclose(self) -> None:
        self.closed = True


class Router:
    """Maps ``(method, path)`` to outcomes; the query string is optional in the key."""

    def __init__(self, routes: Optional[Dict[tuple, Any]] = None):
        self.routes = dict(routes or {})

    def __call__(self, descriptor: CallDescriptor) -> CallOutcome:
        route = self.routes.get((descriptor.method, descriptor.path))
        if route is None:
            route = self.routes.get((descriptor.method, descriptor.path.split("?")[0]))
        if route is None:
            return CallOutcome(status=404)
        if callable(route):
            return route(descriptor)
        return route
