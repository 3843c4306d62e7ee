import asyncio

import pytest

from wtmigrate.core.exceptions import ValidationError
from wtmigrate.infrastructure.resilience.work_queue import EngineState, WorkQueue


def make_counter_task(executed, key, delay=0.0):
    async def task():
        if delay:
            await asyncio.sleep(delay)
        executed.append(key)
    return task


@pytest.mark.parametrize("bad_value", [0, -1, 1.5, "3", True, None])
def test_invalid_max_concurrent_raises(bad_value):
    with pytest.raises(ValidationError):
        WorkQueue(bad_value)


def test_initial_state():
    queue = WorkQueue(3)
    assert queue.state is EngineState.INITIALIZED
    assert queue.inflight == 0
    assert queue.pending == 0
    assert queue.max_concurrent == 3


@pytest.mark.asyncio
async def test_every_pushed_task_runs_exactly_once():
    executed = []
    queue = WorkQueue(4)
    for i in range(50):
        queue.push(make_counter_task(executed, i, delay=0.001 * (i % 3)))

    queue.start()
    await asyncio.wait_for(queue.wait_done(), timeout=5)

    assert sorted(executed) == list(range(50))
    assert queue.state is EngineState.DONE


@pytest.mark.asyncio
async def test_tasks_pushed_by_running_tasks_are_executed_before_done():
    executed = []
    queue = WorkQueue(2)

    async def parent():
        await asyncio.sleep(0.01)
        queue.push(make_counter_task(executed, "child"))
        executed.append("parent")

    queue.push(parent)
    queue.start()
    await asyncio.wait_for(queue.wait_done(), timeout=5)

    assert executed == ["parent", "child"]


@pytest.mark.asyncio
async def test_done_fires_once():
    done_calls = []
    queue = WorkQueue(3, on_done=lambda: done_calls.append(1))
    executed = []
    for i in range(10):
        queue.push(make_counter_task(executed, i, delay=0.005))

    queue.start()
    await asyncio.wait_for(queue.wait_done(), timeout=5)
    await asyncio.sleep(0.02)

    assert done_calls == [1]
    assert queue.pending == 0
    assert queue.inflight == 0


@pytest.mark.asyncio
async def test_empty_queue_completes_immediately():
    queue = WorkQueue(2)
    queue.start()
    await asyncio.wait_for(queue.wait_done(), timeout=1)
    assert queue.state is EngineState.DONE


@pytest.mark.asyncio
async def test_push_after_done_is_ignored():
    executed = []
    queue = WorkQueue(1)
    queue.start()
    await queue.wait_done()

    queue.push(make_counter_task(executed, "late"))
    await asyncio.sleep(0.01)

    assert executed == []
    assert queue.pending == 0


@pytest.mark.asyncio
async def test_inflight_never_exceeds_max_concurrent():
    queue = WorkQueue(3)
    observed = []

    async def task():
        observed.append(queue.inflight)
        await asyncio.sleep(0.005)

    for _ in range(20):
        queue.push(task)
    queue.start()
    await asyncio.wait_for(queue.wait_done(), timeout=5)

    assert max(observed) == 3


@pytest.mark.asyncio
async def test_pause_holds_new_tasks_until_resume():
    executed = []
    queue = WorkQueue(2, close_when_drained=True)

    async def blocker():
        await asyncio.sleep(0.02)
        executed.append("blocker")

    queue.push(blocker)
    queue.start()
    await asyncio.sleep(0)  # let a lane pick up the blocker
    assert queue.pause() is True
    assert queue.state is EngineState.PAUSED

    for i in range(5):
        queue.push(make_counter_task(executed, i))
    await asyncio.sleep(0.05)

    # The running task finished; none of the paused pushes ran.
    assert executed == ["blocker"]
    assert queue.pending == 5
    assert queue.state is EngineState.PAUSED

    assert queue.resume() is True
    await asyncio.wait_for(queue.wait_done(), timeout=5)
    assert sorted(executed[1:]) == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_pause_and_resume_only_from_valid_states():
    queue = WorkQueue(1)
    assert queue.pause() is False
    assert queue.resume() is False

    queue.push(make_counter_task([], 1, delay=0.01))
    assert queue.start() is True
    assert queue.start() is False
    assert queue.resume() is False

    await queue.wait_done()
    assert queue.pause() is False


@pytest.mark.asyncio
async def test_failing_task_is_reported_and_does_not_stop_the_queue():
    errors = []
    executed = []
    queue = WorkQueue(1, on_error=errors.append)

    async def failing():
        raise RuntimeError("boom")

    queue.push(failing)
    queue.push(make_counter_task(executed, "after"))
    queue.start()
    await asyncio.wait_for(queue.wait_done(), timeout=5)

    assert executed == ["after"]
    assert len(errors) == 1
    assert str(errors[0]) == "boom"
    assert queue.state is EngineState.DONE


@pytest.mark.asyncio
async def test_long_lived_queue_keeps_accepting_work():
    executed = []
    queue = WorkQueue(2, close_when_drained=False)
    queue.start()

    queue.push(make_counter_task(executed, "first"))
    await asyncio.sleep(0.01)
    assert queue.state is EngineState.RUNNING

    queue.push(make_counter_task(executed, "second"))
    await asyncio.sleep(0.01)
    assert executed == ["first", "second"]

    await queue.aclose()
