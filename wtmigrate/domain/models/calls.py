"""Value objects describing remote calls.

A ``CallDescriptor`` fully describes one call (credentials already resolved);
a ``CallOutcome`` is what the transport observed for one attempt.
"""

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class CallDescriptor:
    """One remote call: HTTP method, path relative to the deployment, bearer token and body."""
    method: str
    path: str = ""
    token: Optional[str] = None
    body: Any = None


@dataclass(frozen=True)
class CallOutcome:
    """Result of a single attempt as reported by the transport.

    ``status`` is 0 when the request never produced a response.
    """
    status: int
    body: Any = None
    transport_error: Optional[BaseException] = None


class _Absent:
    """Sentinel for a "not found" result. Falsy, and distinct from a ``None`` body."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = _Absent()


def is_absent(value: Any) -> bool:
    return value is ABSENT
