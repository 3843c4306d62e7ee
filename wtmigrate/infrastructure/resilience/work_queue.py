"""Bounded-concurrency work queue.

Pumps queued tasks through a fixed number of lanes. Each lane is an asyncio
task that pops from a shared FIFO, so at most ``max_concurrent`` tasks are in
flight at once. All queue and counter mutation happens on the event loop
thread, which makes the drain check race-free: a finishing task's own pushes
land before the lane looks at the queue again.
"""

import asyncio
import logging
from collections import deque
from enum import Enum
from typing import Awaitable, Callable, Deque, List, Optional

from wtmigrate.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

Task = Callable[[], Awaitable[None]]

DEFAULT_MAX_CONCURRENT = 10


class EngineState(str, Enum):
    """Lifecycle of a work queue."""
    INITIALIZED = "initialized"
    RUNNING = "running"
    PAUSED = "paused"
    DONE = "done"


class WorkQueue:
    """FIFO of deferred tasks executed by ``max_concurrent`` lanes."""

    def __init__(
        self,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        name: str = "work-queue",
        on_error: Optional[Callable[[Exception], None]] = None,
        on_done: Optional[Callable[[], None]] = None,
        close_when_drained: bool = True,
    ):
        """Initializes the queue.

        Args:
            max_concurrent: Number of lanes (K). Must be a positive integer.
            name: Label used in log messages.
            on_error: Called with the exception when a task fails.
            on_done: Called once when the queue moves to DONE.
            close_when_drained: If False the queue never completes; idle lanes
                park until more work arrives (long-lived dispatchers).
        """
        if isinstance(max_concurrent, bool) or not isinstance(max_concurrent, int) or max_concurrent < 1:
            raise ValidationError("max_concurrent(int >= 1) required")

        self.name = name
        self._max_concurrent = max_concurrent
        self._on_error = on_error
        self._on_done = on_done
        self._close_when_drained = close_when_drained

        self._queue: Deque[Task] = deque()
        self._inflight = 0
        self._state = EngineState.INITIALIZED
        self._lanes: List[asyncio.Task] = []
        self._wakeup = asyncio.Event()
        self._drained = asyncio.Event()

    # --- Accessors ---

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def inflight(self) -> int:
        return self._inflight

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    # --- Control ---

    def push(self, task: Task) -> None:
        """Appends a task to the tail of the queue."""
        if self._state is EngineState.DONE:
            logger.warning(f"[{self.name}] push ignored, queue is done")
            return
        self._queue.append(task)
        if self._state is EngineState.RUNNING:
            self._wakeup.set()

    def start(self) -> bool:
        """Creates the lanes. Only valid from INITIALIZED."""
        if self._state is not EngineState.INITIALIZED:
            logger.debug(f"[{self.name}] start ignored in state {self._state.value}")
            return False

        loop = asyncio.get_running_loop()
        self._state = EngineState.RUNNING
        self._lanes = [
            loop.create_task(self._run_lane(index), name=f"{self.name}-lane-{index}")
            for index in range(self._max_concurrent)
        ]
        logger.info(f"[{self.name}] started with {self._max_concurrent} lanes, {len(self._queue)} queued")
        return True

    def pause(self) -> bool:
        """Stops lanes from taking new tasks. Running tasks finish normally."""
        if self._state is not EngineState.RUNNING:
            logger.debug(f"[{self.name}] pause ignored in state {self._state.value}")
            return False
        self._state = EngineState.PAUSED
        logger.info(f"[{self.name}] paused with {self._inflight} in flight, {len(self._queue)} queued")
        return True

    def resume(self) -> bool:
        """Re-arms the parked lanes. Only valid from PAUSED."""
        if self._state is not EngineState.PAUSED:
            logger.debug(f"[{self.name}] resume ignored in state {self._state.value}")
            return False
        self._state = EngineState.RUNNING
        self._wakeup.set()
        logger.info(f"[{self.name}] resumed with {len(self._queue)} queued")
        return True

    async def wait_done(self) -> None:
        """Waits until the queue has moved to DONE."""
        await self._drained.wait()

    async def aclose(self) -> None:
        """Cancels all lanes. Tasks that were executing are cancelled too."""
        lanes, self._lanes = self._lanes, []
        for lane in lanes:
            lane.cancel()
        if lanes:
            await asyncio.gather(*lanes, return_exceptions=True)
        logger.debug(f"[{self.name}] closed")

    # --- Lanes ---

    async def _run_lane(self, index: int) -> None:
        while self._state is not EngineState.DONE:
            if self._state is EngineState.RUNNING and self._queue:
                task = self._queue.popleft()
                self._inflight += 1
                try:
                    await task()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self._report_error(e)
                finally:
                    self._inflight -= 1
                self._check_drained()
                continue

            self._check_drained()
            if self._state is EngineState.DONE:
                break
            self._wakeup.clear()
            await self._wakeup.wait()
        logger.debug(f"[{self.name}] lane {index} exited")

    def _check_drained(self) -> None:
        if (
            self._close_when_drained
            and self._state is EngineState.RUNNING
            and not self._queue
            and self._inflight == 0
        ):
            self._state = EngineState.DONE
            self._drained.set()
            self._wakeup.set()
            logger.info(f"[{self.name}] drained, done")
            if self._on_done:
                try:
                    self._on_done()
                except Exception as e:
                    logger.error(f"[{self.name}] done handler failed: {e}", exc_info=True)

    def _report_error(self, error: Exception) -> None:
        logger.warning(f"[{self.name}] task failed: {type(error).__name__}: {error}")
        if self._on_error:
            try:
                self._on_error(error)
            except Exception as handler_error:
                logger.error(f"[{self.name}] error handler failed: {handler_error}", exc_info=True)
