"""Enumerates and downloads the webtasks of a deployment.

Pages are listed at a shared, monotonically advancing offset. Every listed
webtask becomes its own download task on the same work queue, so listing and
downloading overlap while the queue bounds the total amount of work in flight.
"""

import asyncio
import logging
from typing import Callable, List, Optional

from wtmigrate.core.deployment import MAX_LIST_LIMIT, Deployment
from wtmigrate.core.exceptions import ValidationError
from wtmigrate.core.services.producer import SelfFeedingProducer
from wtmigrate.core.services.webtask_analyzer import WebtaskAnalyzer
from wtmigrate.domain.models.common import WebtaskInfo
from wtmigrate.domain.models.webtask import WebtaskRecord

logger = logging.getLogger(__name__)

WebtaskFilter = Callable[[WebtaskInfo], bool]


class WebtaskDownloader(SelfFeedingProducer):
    """Pagination-mode producer over ``Deployment.list_webtasks``."""

    def __init__(
        self,
        deployment: Deployment,
        tenant_name: Optional[str] = None,
        *,
        names_only: bool = False,
        run_analysis: bool = False,
        include_secrets: bool = False,
        include_storage: bool = False,
        include_cron: bool = False,
        filter: Optional[WebtaskFilter] = None,
        page_size: int = MAX_LIST_LIMIT,
        max_concurrent: Optional[int] = None,
        analyzer=None,
    ):
        """Initializes the downloader.

        Args:
            deployment: Source deployment.
            tenant_name: Restricts the listing to one tenant.
            names_only: Record listed names without downloading anything.
            run_analysis: Analyze each downloaded webtask.
            include_secrets: Download decrypted secrets.
            include_storage: Download storage data.
            include_cron: Download the cron job.
            filter: Predicate deciding which listed webtasks are processed.
            page_size: Listing page size (at most 100).
            max_concurrent: Number of lanes; defaults to the dispatcher's limit.
            analyzer: Object with ``async analyze(tenant, name, webtask)``.
        """
        if not isinstance(deployment, Deployment):
            raise ValidationError("deployment(Deployment) required")
        if tenant_name is not None and not isinstance(tenant_name, str):
            raise ValidationError("tenant_name(string) invalid type")
        if filter is not None and not callable(filter):
            raise ValidationError("filter(function) invalid type")
        if not isinstance(page_size, int) or not 1 <= page_size <= MAX_LIST_LIMIT:
            raise ValidationError(f"page_size(int) must be between 1 and {MAX_LIST_LIMIT}")

        super().__init__(
            max_concurrent or deployment.dispatcher.max_concurrent,
            name=f"downloader:{tenant_name or '*'}",
        )
        self.deployment = deployment
        self.tenant_name = tenant_name
        self.names_only = names_only
        self.run_analysis = run_analysis
        self.include_secrets = include_secrets
        self.include_storage = include_storage
        self.include_cron = include_cron
        self.filter = filter
        self.page_size = page_size

        if run_analysis and analyzer is None:
            analyzer = WebtaskAnalyzer(deployment)
        self.analyzer = analyzer

        self._offset = 0
        self._pagination_done = False
        self._page_lock = asyncio.Lock()
        self._fetches = 0  # page-fetch tasks queued or running
        self._downloaded: List[WebtaskRecord] = []
        self._failed: List[WebtaskRecord] = []

    # --- Accessors ---

    @property
    def pagination_done(self) -> bool:
        return self._pagination_done

    @property
    def downloaded(self) -> List[WebtaskRecord]:
        return list(self._downloaded)

    @property
    def failed(self) -> List[WebtaskRecord]:
        return list(self._failed)

    def download(self) -> bool:
        """Starts listing and downloading. See ``run`` to also wait for completion."""
        return self.start()

    # --- Pagination ---

    def _seed(self) -> None:
        for _ in range(self.max_concurrent):
            self._push_fetch()

    def _push_fetch(self) -> None:
        self._fetches += 1
        self._push(self._fetch_page)

    async def _fetch_page(self) -> None:
        try:
            page = await self._next_page()
        finally:
            self._fetches -= 1
        if page is None:
            return

        for info in page:
            if self._accepts(info):
                self._push(self._make_item_task(info))

        # Fetches still queued request the next offsets; the last of them continues the chain.
        if not self._pagination_done and self._fetches == 0:
            self._push_fetch()

    async def _next_page(self) -> Optional[List[WebtaskInfo]]:
        # Page fetches are serialized so exhaustion is seen before the next offset is requested.
        # Seeded fetches waiting here keep their lanes until they have run.
        async with self._page_lock:
            if self._pagination_done:
                return None
            offset = self._offset
            self._offset += self.page_size

            logger.debug(f"[{self.name}] listing offset={offset} limit={self.page_size}")
            try:
                page = await self.deployment.list_webtasks(self.tenant_name, offset=offset, limit=self.page_size)
            except Exception as e:
                self._set_pagination_done()
                self._emit_error(str(e))
                return None

            if len(page) < self.page_size:
                self._set_pagination_done()
            return page

    def _set_pagination_done(self) -> None:
        if not self._pagination_done:
            self._pagination_done = True
            logger.info(f"[{self.name}] listing exhausted at offset {self._offset}")

    def _accepts(self, info: WebtaskInfo) -> bool:
        if self.filter is None:
            return True
        try:
            return bool(self.filter(info))
        except Exception as e:
            self._emit_error(f"Filter failed for {info.get('tenant_name')}/{info.get('webtask_name')}: {e}")
            return False

    # --- Items ---

    def _make_item_task(self, info: WebtaskInfo):
        async def process_item() -> None:
            await self._process_item(info)
        return process_item

    async def _process_item(self, info: WebtaskInfo) -> None:
        record = WebtaskRecord(tenant_name=info["tenant_name"], webtask_name=info["webtask_name"])
        if self.names_only:
            self._succeed(record)
            return

        try:
            record.webtask = await self.deployment.download_webtask(
                record.tenant_name,
                record.webtask_name,
                include_secrets=self.include_secrets,
                include_storage=self.include_storage,
                include_cron=self.include_cron,
            )
        except Exception as e:
            self._fail(record, str(e))
            return

        if record.webtask is None:
            self._fail(record, f"The webtask '{record.tenant_name}/{record.webtask_name}' no longer exists.")
            return

        if self.run_analysis:
            try:
                record.analysis = await self.analyzer.analyze(record.tenant_name, record.webtask_name, record.webtask)
            except Exception as e:
                self._fail(record, str(e))
                return

        self._succeed(record)

    def _succeed(self, record: WebtaskRecord) -> None:
        self._downloaded.append(record)
        self._notify("item_succeeded", record)

    def _fail(self, record: WebtaskRecord, message: str) -> None:
        record.error = message
        self._failed.append(record)
        self._notify("item_failed", record)
        self._emit_error(message)
