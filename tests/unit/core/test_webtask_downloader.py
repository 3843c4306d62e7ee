import asyncio
from urllib.parse import parse_qs, urlsplit

import pytest

from wtmigrate.core.exceptions import ValidationError
from wtmigrate.core.services.producer import CallbackObserver
from wtmigrate.core.services.webtask_downloader import WebtaskDownloader
from wtmigrate.domain.models.analysis import AnalysisResult
from wtmigrate.domain.models.calls import CallOutcome
from wtmigrate.infrastructure.resilience.work_queue import EngineState


class FakeDeploymentApi:
    """Serves a paginated listing of ``total`` webtasks plus their downloads."""

    def __init__(self, total, tenant="acme", missing=(), broken=(), list_status=200):
        self.names = [f"wt{i:03d}" for i in range(total)]
        self.tenant = tenant
        self.missing = set(missing)
        self.broken = set(broken)
        self.list_status = list_status
        self.list_queries = []

    def __call__(self, descriptor):
        parts = urlsplit(descriptor.path)
        if parts.path == "api/webtask":
            self.list_queries.append(descriptor.path)
            if self.list_status != 200:
                return CallOutcome(self.list_status, {"message": "listing unavailable"})
            query = parse_qs(parts.query)
            offset, limit = int(query["offset"][0]), int(query["limit"][0])
            page = self.names[offset:offset + limit]
            return CallOutcome(200, [{"container": self.tenant, "name": name} for name in page])

        name = parts.path.rsplit("/", 1)[-1]
        if name in self.missing:
            return CallOutcome(404)
        if name in self.broken:
            return CallOutcome(400, {"message": f"{name} is broken"})
        return CallOutcome(200, {"code": f"// {name}", "meta": {}})


@pytest.mark.asyncio
async def test_pagination_stops_at_short_page(make_deployment):
    api = FakeDeploymentApi(237)
    deployment, _ = await make_deployment(api)
    downloader = WebtaskDownloader(deployment)
    try:
        await asyncio.wait_for(downloader.run(), timeout=10)
    finally:
        await deployment.aclose()

    assert len(api.list_queries) == 3
    assert len(downloader.downloaded) == 237
    assert downloader.failed == []
    assert downloader.pagination_done
    assert downloader.state is EngineState.DONE
    assert {r.webtask_name for r in downloader.downloaded} == set(api.names)
    assert all(r.webtask.code == f"// {r.webtask_name}" for r in downloader.downloaded)


@pytest.mark.asyncio
async def test_exact_multiple_of_page_size_needs_an_empty_page(make_deployment):
    api = FakeDeploymentApi(20)
    deployment, _ = await make_deployment(api)
    downloader = WebtaskDownloader(deployment, names_only=True, page_size=10, max_concurrent=3)
    try:
        await asyncio.wait_for(downloader.run(), timeout=10)
    finally:
        await deployment.aclose()

    assert len(api.list_queries) == 3
    assert len(downloader.downloaded) == 20


@pytest.mark.asyncio
async def test_single_fetch_chain_after_seeded_fetches(make_deployment):
    api = FakeDeploymentApi(41)
    fetches_seen = []

    def counting(descriptor):
        if urlsplit(descriptor.path).path == "api/webtask":
            fetches_seen.append(downloader._fetches)
        return api(descriptor)

    deployment, _ = await make_deployment(counting)
    downloader = WebtaskDownloader(deployment, names_only=True, page_size=4, max_concurrent=3)
    try:
        await asyncio.wait_for(downloader.run(), timeout=10)
    finally:
        await deployment.aclose()

    assert len(api.list_queries) == 11
    assert fetches_seen[:3] == [3, 2, 1]
    assert set(fetches_seen[3:]) == {1}
    assert len(downloader.downloaded) == 41


@pytest.mark.asyncio
async def test_names_only_does_not_download(make_deployment):
    api = FakeDeploymentApi(5)
    deployment, transport = await make_deployment(api)
    downloader = WebtaskDownloader(deployment, names_only=True)
    try:
        await downloader.run()
    finally:
        await deployment.aclose()

    assert len(downloader.downloaded) == 5
    assert all(r.webtask is None for r in downloader.downloaded)
    assert len(transport.calls) == len(api.list_queries) == 1


@pytest.mark.asyncio
async def test_filter_selects_webtasks(make_deployment):
    api = FakeDeploymentApi(30)
    deployment, _ = await make_deployment(api)
    downloader = WebtaskDownloader(
        deployment, names_only=True, filter=lambda info: info["webtask_name"].endswith("0")
    )
    try:
        await downloader.run()
    finally:
        await deployment.aclose()

    assert sorted(r.webtask_name for r in downloader.downloaded) == ["wt000", "wt010", "wt020"]


@pytest.mark.asyncio
async def test_failures_are_recorded_per_item(make_deployment):
    api = FakeDeploymentApi(6, missing={"wt001"}, broken={"wt002"})
    deployment, _ = await make_deployment(api)
    failed, errors, done = [], [], []
    downloader = WebtaskDownloader(deployment)
    downloader.subscribe(CallbackObserver(
        on_item_failed=failed.append, on_error=errors.append, on_done=done.append
    ))
    try:
        await downloader.run()
    finally:
        await deployment.aclose()

    assert len(downloader.downloaded) == 4
    assert sorted(r.webtask_name for r in failed) == ["wt001", "wt002"]
    by_name = {r.webtask_name: r.error for r in downloader.failed}
    assert by_name["wt001"] == "The webtask 'acme/wt001' no longer exists."
    assert "wt002 is broken" in by_name["wt002"]
    assert len(errors) == 2
    assert done == [downloader]


@pytest.mark.asyncio
async def test_listing_failure_ends_pagination_with_error(make_deployment):
    api = FakeDeploymentApi(10, list_status=403)
    deployment, _ = await make_deployment(api)
    downloader = WebtaskDownloader(deployment)
    try:
        await asyncio.wait_for(downloader.run(), timeout=5)
    finally:
        await deployment.aclose()

    assert downloader.downloaded == []
    assert len(downloader.errors) == 1
    assert "listing unavailable" in downloader.errors[0]
    assert len(api.list_queries) == 1


@pytest.mark.asyncio
async def test_analysis_runs_for_each_download(make_deployment, mocker):
    api = FakeDeploymentApi(3)
    deployment, _ = await make_deployment(api)
    analyzer = mocker.Mock()
    analyzer.analyze = mocker.AsyncMock(return_value=AnalysisResult())
    downloader = WebtaskDownloader(deployment, run_analysis=True, analyzer=analyzer)
    try:
        await downloader.run()
    finally:
        await deployment.aclose()

    assert analyzer.analyze.await_count == 3
    assert all(isinstance(r.analysis, AnalysisResult) for r in downloader.downloaded)


@pytest.mark.asyncio
async def test_pause_and_resume(make_deployment):
    api = FakeDeploymentApi(15)
    deployment, _ = await make_deployment(api)
    downloader = WebtaskDownloader(deployment, names_only=True, page_size=5, max_concurrent=2)
    try:
        assert downloader.download() is True
        assert downloader.download() is False
        assert downloader.pause() is True
        await asyncio.sleep(0.02)
        assert api.list_queries == []
        assert downloader.state is EngineState.PAUSED

        assert downloader.resume() is True
        await asyncio.wait_for(downloader.wait_done(), timeout=5)
    finally:
        await deployment.aclose()

    assert len(downloader.downloaded) == 15


def test_deployment_is_required():
    with pytest.raises(ValidationError):
        WebtaskDownloader(object())


@pytest.mark.asyncio
async def test_invalid_page_size(make_deployment):
    deployment, _ = await make_deployment(FakeDeploymentApi(0))
    try:
        with pytest.raises(ValidationError, match="page_size"):
            WebtaskDownloader(deployment, page_size=101)
        with pytest.raises(ValidationError, match="filter"):
            WebtaskDownloader(deployment, filter="all")
    finally:
        await deployment.aclose()
