"""Domain events emitted by the call dispatcher.

Covers calls being issued, succeeding, failing definitively and retries being
scheduled. Consumers register an event sink on the dispatcher.
"""

from dataclasses import dataclass, field
import time
from typing import Optional


@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass


@dataclass
class CallInitiated(DomainEvent):
    """An attempt is about to be sent."""
    method: str
    path: str
    attempt: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class CallSucceeded(DomainEvent):
    """An attempt completed with a usable result (including absence)."""
    method: str
    path: str
    attempt: int
    status: int
    latency_ms: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class CallFailed(DomainEvent):
    """A call failed definitively (terminal error or retries exhausted)."""
    method: str
    path: str
    attempts: int
    status: int
    error_message: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class RetryScheduled(DomainEvent):
    """A retryable failure was seen and another attempt is scheduled."""
    method: str
    path: str
    attempt_number: int
    delay_seconds: float
    status: int
    reason: Optional[str] = None
    timestamp: float = field(default_factory=time.time)
