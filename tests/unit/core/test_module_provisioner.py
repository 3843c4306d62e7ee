import asyncio
import time

import pytest

from wtmigrate.core.exceptions import ValidationError
from wtmigrate.core.services.module_provisioner import ModuleProvisioner
from wtmigrate.core.services.producer import CallbackObserver
from wtmigrate.domain.models.calls import CallOutcome
from wtmigrate.infrastructure.cache.memo_cache import MemoCache

LODASH = {"name": "lodash", "version": "4.17.4"}
REQUEST = {"name": "request", "version": "2.81.0"}


def scripted_states(script):
    """Answers each provisioning request from a per-module list of states."""
    submitted = []

    def handler(descriptor):
        modules = descriptor.body["modules"]
        submitted.append([m["name"] for m in modules])
        results = []
        for module in modules:
            states = script[module["name"]]
            state = states.pop(0) if len(states) > 1 else states[0]
            if state is not None:
                results.append(dict(module, state=state))
        return CallOutcome(200, results)

    handler.submitted = submitted
    return handler


@pytest.mark.asyncio
async def test_queued_modules_are_resubmitted_with_backpressure(make_deployment):
    handler = scripted_states({"lodash": ["queued", "queued", "available"]})
    deployment, _ = await make_deployment(handler)
    cache = MemoCache()
    provisioner = ModuleProvisioner(deployment, [LODASH], memo_cache=cache)
    try:
        started = time.perf_counter()
        await asyncio.wait_for(provisioner.run(), timeout=5)
        elapsed = time.perf_counter() - started
    finally:
        await deployment.aclose()

    assert provisioner.available_modules == [LODASH]
    assert provisioner.failed_modules == []
    assert provisioner.queued_modules == []
    assert handler.submitted == [["lodash"], ["lodash"], ["lodash"]]
    assert elapsed >= 0.2
    assert LODASH in cache


@pytest.mark.asyncio
async def test_memoized_modules_are_not_submitted(make_deployment):
    handler = scripted_states({"request": ["available"]})
    deployment, transport = await make_deployment(handler)
    cache = MemoCache()
    cache.record(LODASH)
    succeeded = []
    provisioner = ModuleProvisioner(deployment, [LODASH, REQUEST], memo_cache=cache, per_item_delay=0)
    provisioner.subscribe(CallbackObserver(on_item_succeeded=succeeded.append))
    try:
        await provisioner.run()
    finally:
        await deployment.aclose()

    assert handler.submitted == [["request"]]
    assert succeeded == [LODASH, REQUEST]
    assert len(cache) == 2


@pytest.mark.asyncio
async def test_everything_memoized_finishes_without_requests(make_deployment):
    deployment, transport = await make_deployment(scripted_states({}))
    cache = MemoCache()
    cache.record(LODASH)
    provisioner = ModuleProvisioner(deployment, [LODASH], memo_cache=cache)
    try:
        await asyncio.wait_for(provisioner.run(), timeout=1)
    finally:
        await deployment.aclose()

    assert transport.calls == []
    assert provisioner.available_modules == [LODASH]


@pytest.mark.asyncio
async def test_failed_and_unreported_modules(make_deployment):
    handler = scripted_states({"lodash": ["failed"], "request": [None]})
    deployment, _ = await make_deployment(handler)
    provisioner = ModuleProvisioner(deployment, [LODASH, REQUEST], memo_cache=MemoCache(), per_item_delay=0)
    try:
        await provisioner.run()
    finally:
        await deployment.aclose()

    assert provisioner.failed_modules == [LODASH, REQUEST]
    assert provisioner.errors == ["The deployment did not report a state for module request@2.81.0"]


@pytest.mark.asyncio
async def test_batches_respect_the_limit(make_deployment):
    modules = [{"name": f"m{i}", "version": "1.0.0"} for i in range(7)]
    handler = scripted_states({m["name"]: ["available"] for m in modules})
    deployment, _ = await make_deployment(handler)
    provisioner = ModuleProvisioner(deployment, modules, batch_limit=3, max_concurrent=2, memo_cache=MemoCache())
    try:
        await provisioner.run()
    finally:
        await deployment.aclose()

    # Two lanes take a full batch each; the leftover module goes out on a follow-up batch.
    assert sorted(len(batch) for batch in handler.submitted) == [1, 3, 3]
    assert len(provisioner.available_modules) == 7
    assert provisioner.queued_modules == []


@pytest.mark.asyncio
async def test_submit_failure_fails_the_whole_batch(make_deployment):
    deployment, _ = await make_deployment(lambda d: CallOutcome(400, {"message": "bad modules"}))
    provisioner = ModuleProvisioner(deployment, [LODASH, REQUEST], memo_cache=MemoCache())
    try:
        assert provisioner.provision() is True
        await provisioner.wait_done()
    finally:
        await deployment.aclose()

    assert provisioner.failed_modules == [LODASH, REQUEST]
    assert len(provisioner.errors) == 1
    assert "bad modules" in provisioner.errors[0]


@pytest.mark.asyncio
async def test_invalid_arguments(make_deployment):
    deployment, _ = await make_deployment(scripted_states({}))
    try:
        with pytest.raises(ValidationError, match="module.version"):
            ModuleProvisioner(deployment, [{"name": "lodash"}])
        with pytest.raises(ValidationError, match="batch_limit"):
            ModuleProvisioner(deployment, [LODASH], batch_limit=51)
        with pytest.raises(ValidationError, match="per_item_delay"):
            ModuleProvisioner(deployment, [LODASH], per_item_delay=-1)
        with pytest.raises(ValidationError, match="max_concurrent"):
            ModuleProvisioner(deployment, [LODASH], max_concurrent=0)
    finally:
        await deployment.aclose()


@pytest.mark.asyncio
async def test_unsubmitted_modules_do_not_delay_the_next_batch(make_deployment):
    modules = [{"name": f"m{i}", "version": "1.0.0"} for i in range(60)]
    handler = scripted_states({m["name"]: ["available"] for m in modules})
    deployment, _ = await make_deployment(handler)
    provisioner = ModuleProvisioner(deployment, modules, max_concurrent=1, memo_cache=MemoCache())
    try:
        started = time.perf_counter()
        await asyncio.wait_for(provisioner.run(), timeout=5)
        elapsed = time.perf_counter() - started
    finally:
        await deployment.aclose()

    assert [len(batch) for batch in handler.submitted] == [25, 25, 10]
    assert len(provisioner.available_modules) == 60
    assert elapsed < 1.0

