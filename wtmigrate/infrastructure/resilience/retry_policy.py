"""Failure classification and backoff for remote calls.

A finished attempt is classified as success, absence (404), retryable
(5xx or transport failure) or terminal (409 and every other client error).
Only retryable outcomes are attempted again, after an exponentially growing,
jittered delay.
"""

import random
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from wtmigrate.core.exceptions import ValidationError
from wtmigrate.domain.models.calls import CallOutcome

# Defaults for the backoff curve, in milliseconds.
DEFAULT_BASE_DELAY_MS = 50
DEFAULT_GROWTH = 2.0
DEFAULT_MAX_DELAY_MS = 5000
DEFAULT_MAX_ATTEMPTS = 10

CONFLICT_MESSAGE = "Conditional PUT failed with etag mismatch"


class Classification(str, Enum):
    SUCCESS = "success"
    ABSENCE = "absence"
    RETRYABLE = "retryable"
    TERMINAL = "terminal"


def classify(outcome: CallOutcome) -> Classification:
    """Maps an attempt outcome onto the retry decision table."""
    if outcome.transport_error is not None or outcome.status == 0:
        return Classification.RETRYABLE
    if outcome.status < 300:
        return Classification.SUCCESS
    if outcome.status == 404:
        return Classification.ABSENCE
    if outcome.status == 409:
        return Classification.TERMINAL
    if outcome.status >= 500:
        return Classification.RETRYABLE
    return Classification.TERMINAL


def failure_message(outcome: CallOutcome) -> str:
    """Human readable description of a failed attempt."""
    if outcome.transport_error is not None or outcome.status == 0:
        return f"Request failed before a response was received: {outcome.transport_error}"
    if outcome.status == 409:
        return CONFLICT_MESSAGE

    inner = ""
    body = outcome.body
    if isinstance(body, dict) and body.get("message"):
        inner = f" and message '{body['message']}'."
    return f"Request failed with status '{outcome.status}'{inner}"


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with multiplicative jitter in ``[1, 2)``."""
    base_delay_ms: float = DEFAULT_BASE_DELAY_MS
    growth: float = DEFAULT_GROWTH
    max_delay_ms: float = DEFAULT_MAX_DELAY_MS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS

    def __post_init__(self):
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValidationError("retry delays must be non-negative")
        if self.growth < 1:
            raise ValidationError("retry growth must be >= 1")
        if isinstance(self.max_attempts, bool) or not isinstance(self.max_attempts, int) or self.max_attempts < 1:
            raise ValidationError("max_attempts(int >= 1) required")

    def delay_for(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        """Returns the delay in seconds before the attempt following ``attempt``.

        Args:
            attempt: Zero-based index of the attempt that just failed.
            rng: Source of uniform values in ``[0, 1)``.
        """
        jitter = rng() + 1
        delay_ms = min(round(jitter * self.base_delay_ms * self.growth ** attempt), self.max_delay_ms)
        return delay_ms / 1000.0

    def should_retry(self, classification: Classification, attempt: int) -> bool:
        return classification is Classification.RETRYABLE and attempt + 1 < self.max_attempts
