"""Base class for producers that feed their own work queue.

A producer seeds its queue with a first wave of tasks; those tasks push
follow-up tasks (next page, next batch) onto the same queue. The producer is
done when no task re-feeds the queue and the queue has drained.
"""

import logging
from typing import Any, List, Optional

from wtmigrate.domain.interfaces.progress_observer import ProducerObserver
from wtmigrate.infrastructure.resilience.work_queue import (
    DEFAULT_MAX_CONCURRENT, EngineState, Task, WorkQueue
)

logger = logging.getLogger(__name__)


class SelfFeedingProducer:
    """Owns a work queue, fans notifications out to observers and keeps an error tally."""

    def __init__(self, max_concurrent: int = DEFAULT_MAX_CONCURRENT, name: str = "producer"):
        self.name = name
        self._queue = WorkQueue(
            max_concurrent,
            name=name,
            on_error=self._on_task_error,
            on_done=self._on_queue_done,
        )
        self._observers: List[ProducerObserver] = []
        self._errors: List[str] = []
        self._started = False

    # --- Observers ---

    def subscribe(self, observer: ProducerObserver) -> None:
        self._observers.append(observer)

    def _notify(self, method: str, *args: Any) -> None:
        for observer in list(self._observers):
            try:
                getattr(observer, method)(*args)
            except Exception as e:
                logger.error(f"[{self.name}] observer {type(observer).__name__}.{method} failed: {e}", exc_info=True)

    def _emit_error(self, message: str) -> None:
        self._errors.append(message)
        logger.warning(f"[{self.name}] {message}")
        self._notify("error", message)

    # --- Lifecycle ---

    @property
    def state(self) -> EngineState:
        return self._queue.state

    @property
    def max_concurrent(self) -> int:
        return self._queue.max_concurrent

    @property
    def errors(self) -> List[str]:
        return list(self._errors)

    def start(self) -> bool:
        """Seeds the queue and starts it. A second call is a no-op."""
        if self._started:
            logger.debug(f"[{self.name}] already started")
            return False
        self._started = True
        self._seed()
        return self._queue.start()

    def pause(self) -> bool:
        return self._queue.pause()

    def resume(self) -> bool:
        return self._queue.resume()

    async def wait_done(self) -> None:
        await self._queue.wait_done()

    async def run(self) -> "SelfFeedingProducer":
        """Starts the producer and waits for it to finish."""
        self.start()
        await self.wait_done()
        return self

    def _push(self, task: Task) -> None:
        self._queue.push(task)

    def _seed(self) -> None:
        """Pushes the initial tasks. Subclasses must override."""
        raise NotImplementedError

    # --- Queue callbacks ---

    def _on_task_error(self, error: Exception) -> None:
        self._emit_error(f"Unexpected error: {error}")

    def _on_queue_done(self) -> None:
        logger.info(f"[{self.name}] done with {len(self._errors)} error(s)")
        self._notify("done", self)


class CallbackObserver(ProducerObserver):
    """Adapts plain callables to the observer interface."""

    def __init__(self, on_item_succeeded=None, on_item_failed=None, on_error=None, on_done=None):
        self._on_item_succeeded = on_item_succeeded
        self._on_item_failed = on_item_failed
        self._on_error = on_error
        self._on_done = on_done

    def item_succeeded(self, item: Any) -> None:
        if self._on_item_succeeded:
            self._on_item_succeeded(item)

    def item_failed(self, item: Any) -> None:
        if self._on_item_failed:
            self._on_item_failed(item)

    def error(self, message: str) -> None:
        if self._on_error:
            self._on_error(message)

    def done(self, producer: Optional[Any]) -> None:
        if self._on_done:
            self._on_done(producer)
