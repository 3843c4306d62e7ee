"""Service for executing remote calls with bounded concurrency and retries.

Every attempt of every call is one task in the dispatcher's work queue, so at
most ``max_concurrent`` requests are on the wire for a dispatcher instance.
Retryable failures are resubmitted as a fresh task once their backoff delay
elapses; the delay itself never occupies a lane.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional, Set

from wtmigrate.core.exceptions import (
    DispatcherClosedError, ExhaustedRetryError, RemoteError, TerminalRemoteError
)
from wtmigrate.domain.events.call_events import (
    CallFailed, CallInitiated, CallSucceeded, DomainEvent, RetryScheduled
)
from wtmigrate.domain.interfaces.transport import CallTransport
from wtmigrate.domain.models.calls import ABSENT, CallDescriptor, CallOutcome
from wtmigrate.infrastructure.resilience.retry_policy import (
    Classification, RetryPolicy, classify, failure_message
)
from wtmigrate.infrastructure.resilience.work_queue import (
    DEFAULT_MAX_CONCURRENT, EngineState, WorkQueue
)

logger = logging.getLogger(__name__)

EventSink = Callable[[DomainEvent], None]


class CallDispatcher:
    """Runs remote calls through a work queue of ``max_concurrent`` lanes."""

    def __init__(
        self,
        transport: CallTransport,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        policy: Optional[RetryPolicy] = None,
        event_sink: Optional[EventSink] = None,
    ):
        """Initializes the dispatcher.

        Args:
            transport: Performs single attempts.
            max_concurrent: Maximum number of attempts in flight.
            policy: Backoff and attempt budget (defaults to ``RetryPolicy()``).
            event_sink: Optional consumer of call domain events.
        """
        self.transport = transport
        self.policy = policy or RetryPolicy()
        self.event_sink = event_sink
        self._queue = WorkQueue(
            max_concurrent,
            name=f"calls:{transport.base_url}",
            close_when_drained=False,
        )
        self._outstanding: Set[asyncio.Future] = set()
        self._retry_timers: Dict[asyncio.Future, asyncio.TimerHandle] = {}
        self._closed = False

        logger.info(
            f"CallDispatcher initialized: url={transport.base_url}, max_concurrent={max_concurrent}, "
            f"max_attempts={self.policy.max_attempts}"
        )

    @property
    def base_url(self) -> str:
        return self.transport.base_url

    @property
    def max_concurrent(self) -> int:
        return self._queue.max_concurrent

    @property
    def queue(self) -> WorkQueue:
        return self._queue

    def clone(self, base_url: Optional[str] = None) -> "CallDispatcher":
        """Returns a dispatcher with the same settings and its own queue."""
        return CallDispatcher(
            self.transport.clone(base_url),
            max_concurrent=self.max_concurrent,
            policy=self.policy,
            event_sink=self.event_sink,
        )

    async def request(self, method: str, path: str = "", token: Optional[str] = None, body: Any = None) -> Any:
        """Convenience wrapper around ``call``."""
        return await self.call(CallDescriptor(method=method, path=path, token=token, body=body))

    async def call(self, descriptor: CallDescriptor) -> Any:
        """Executes a call, retrying transient failures.

        Returns:
            The response body, or ``ABSENT`` when the resource does not exist.

        Raises:
            TerminalRemoteError: Conflict or non-retryable client error.
            ExhaustedRetryError: Transient failures on every allowed attempt.
            DispatcherClosedError: The dispatcher was closed before a result arrived.
        """
        if self._closed:
            raise DispatcherClosedError(f"Dispatcher for {self.base_url} is closed")
        if self._queue.state is EngineState.INITIALIZED:
            self._queue.start()
        future = asyncio.get_running_loop().create_future()
        self._outstanding.add(future)
        self._submit(descriptor, 0, future)
        try:
            return await future
        finally:
            self._outstanding.discard(future)

    async def aclose(self) -> None:
        """Stops the lanes, fails outstanding calls and releases the transport."""
        self._closed = True
        timers, self._retry_timers = self._retry_timers, {}
        for handle in timers.values():
            handle.cancel()
        await self._queue.aclose()

        outstanding = [future for future in self._outstanding if not future.done()]
        if outstanding:
            logger.warning(f"Closing dispatcher for {self.base_url} with {len(outstanding)} call(s) outstanding")
        for future in outstanding:
            future.set_exception(
                DispatcherClosedError(f"Dispatcher for {self.base_url} closed before the call completed")
            )
        await self.transport.aclose()

    # --- Attempts ---

    def _submit(self, descriptor: CallDescriptor, attempt: int, future: asyncio.Future) -> None:
        self._retry_timers.pop(future, None)
        if future.done() or self._closed:
            # Caller went away, or the dispatcher closed, while the retry was pending.
            return

        async def run_attempt() -> None:
            await self._attempt(descriptor, attempt, future)

        self._queue.push(run_attempt)

    async def _attempt(self, descriptor: CallDescriptor, attempt: int, future: asyncio.Future) -> None:
        if future.done():
            return

        self._dispatch_event(CallInitiated(method=descriptor.method, path=descriptor.path, attempt=attempt))
        start_time = time.perf_counter()
        try:
            outcome = await self.transport.issue(descriptor)
        except Exception as e:
            # Transports report network failures in the outcome; anything raised is a bug.
            logger.error(f"Transport raised for {descriptor.method} {descriptor.path}: {e}", exc_info=True)
            if not future.done():
                future.set_exception(e)
            return
        latency_ms = (time.perf_counter() - start_time) * 1000

        classification = classify(outcome)
        if classification is Classification.SUCCESS:
            self._dispatch_event(CallSucceeded(
                method=descriptor.method, path=descriptor.path, attempt=attempt,
                status=outcome.status, latency_ms=latency_ms,
            ))
            self._resolve(future, outcome.body)
            return

        if classification is Classification.ABSENCE:
            logger.debug(f"{descriptor.method} {descriptor.path} -> not found")
            self._dispatch_event(CallSucceeded(
                method=descriptor.method, path=descriptor.path, attempt=attempt,
                status=outcome.status, latency_ms=latency_ms,
            ))
            self._resolve(future, ABSENT)
            return

        message = failure_message(outcome)
        if self.policy.should_retry(classification, attempt):
            delay = self.policy.delay_for(attempt)
            logger.warning(
                f"Retryable failure for {descriptor.method} {descriptor.path} on attempt "
                f"{attempt + 1}/{self.policy.max_attempts}: {message}. Retrying in {delay:.3f}s"
            )
            self._dispatch_event(RetryScheduled(
                method=descriptor.method, path=descriptor.path, attempt_number=attempt + 1,
                delay_seconds=delay, status=outcome.status, reason=message,
            ))
            self._retry_timers[future] = asyncio.get_running_loop().call_later(
                delay, self._submit, descriptor, attempt + 1, future
            )
            return

        error = self._build_error(classification, outcome, message, attempt)
        logger.error(f"{descriptor.method} {descriptor.path} failed after {attempt + 1} attempt(s): {error}")
        self._dispatch_event(CallFailed(
            method=descriptor.method, path=descriptor.path, attempts=attempt + 1,
            status=outcome.status, error_message=str(error),
        ))
        if not future.done():
            future.set_exception(error)

    def _build_error(
        self, classification: Classification, outcome: CallOutcome, message: str, attempt: int
    ) -> RemoteError:
        if classification is Classification.RETRYABLE:
            last_error = RemoteError(message, status=outcome.status, body=outcome.body)
            if outcome.transport_error is not None:
                last_error.__cause__ = outcome.transport_error
            return ExhaustedRetryError(last_error, attempts=attempt + 1)
        return TerminalRemoteError(message, status=outcome.status, body=outcome.body)

    @staticmethod
    def _resolve(future: asyncio.Future, value: Any) -> None:
        if not future.done():
            future.set_result(value)

    def _dispatch_event(self, event: DomainEvent) -> None:
        logger.debug(f"EVENT: {event}")
        if self.event_sink:
            try:
                self.event_sink(event)
            except Exception as e:
                logger.error(f"Event sink failed for {type(event).__name__}: {e}", exc_info=True)
