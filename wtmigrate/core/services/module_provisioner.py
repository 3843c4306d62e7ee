"""Provisions node modules on a deployment in resubmitted batches.

Modules that are still being installed remotely are put back on the
``still_queued`` list and resubmitted with the next batch, after a delay that
grows with the number of modules the previous batch left pending.
"""

import asyncio
import logging
from typing import List, Optional

from wtmigrate.core.deployment import MAX_MODULES, Deployment
from wtmigrate.core.exceptions import ValidationError
from wtmigrate.core.services.producer import SelfFeedingProducer
from wtmigrate.domain.models.common import (
    MODULE_AVAILABLE, MODULE_FAILED, ModuleSpec, module_key, validate_modules
)
from wtmigrate.infrastructure.cache.memo_cache import MemoCache

logger = logging.getLogger(__name__)

DEFAULT_BATCH_LIMIT = 25
DEFAULT_PER_ITEM_DELAY = 0.1  # seconds per module a batch left pending


class ModuleProvisioner(SelfFeedingProducer):
    """Batch-resubmission producer over ``Deployment.provision_modules``."""

    def __init__(
        self,
        deployment: Deployment,
        modules: List[ModuleSpec],
        tenant_name: Optional[str] = None,
        *,
        batch_limit: int = DEFAULT_BATCH_LIMIT,
        per_item_delay: float = DEFAULT_PER_ITEM_DELAY,
        max_concurrent: int = 10,
        memo_cache: Optional[MemoCache] = None,
    ):
        if not isinstance(deployment, Deployment):
            raise ValidationError("deployment(Deployment) required")
        validate_modules(modules)
        if tenant_name is not None and not isinstance(tenant_name, str):
            raise ValidationError("tenant_name(string) invalid type")
        if not isinstance(batch_limit, int) or not 1 <= batch_limit <= MAX_MODULES:
            raise ValidationError(f"batch_limit(int) must be between 1 and {MAX_MODULES}")
        if per_item_delay < 0:
            raise ValidationError("per_item_delay must be non-negative")

        super().__init__(max_concurrent, name="provisioner")
        self.deployment = deployment
        self.modules = [{"name": m["name"], "version": m["version"]} for m in modules]
        self.tenant_name = tenant_name
        self.batch_limit = batch_limit
        self.per_item_delay = per_item_delay
        self.memo_cache = memo_cache if memo_cache is not None else MemoCache()

        self._still_queued: List[ModuleSpec] = []
        self._available: List[ModuleSpec] = []
        self._failed: List[ModuleSpec] = []

    # --- Accessors (snapshots) ---

    @property
    def available_modules(self) -> List[ModuleSpec]:
        return list(self._available)

    @property
    def failed_modules(self) -> List[ModuleSpec]:
        return list(self._failed)

    @property
    def queued_modules(self) -> List[ModuleSpec]:
        return list(self._still_queued)

    def provision(self) -> bool:
        """Starts provisioning. See ``run`` to also wait for completion."""
        return self.start()

    # --- Batches ---

    def _seed(self) -> None:
        for module in self.modules:
            if self.memo_cache.contains(module):
                logger.debug(f"[{self.name}] {module_key(module)} already known to be available")
                self._on_available(module)
            else:
                self._still_queued.append(module)

        logger.info(
            f"[{self.name}] {len(self._still_queued)} module(s) to provision, "
            f"{len(self._available)} already available"
        )
        for _ in range(self.max_concurrent):
            self._push(self._run_batch)

    async def _run_batch(self) -> None:
        if not self._still_queued:
            return

        batch = self._still_queued[:self.batch_limit]
        del self._still_queued[:self.batch_limit]

        try:
            results = await self.deployment.provision_modules(batch, self.tenant_name)
        except Exception as e:
            self._emit_error(str(e))
            for module in batch:
                self._on_failed(module)
            return

        reported = set()
        pending = 0
        for result in results:
            module = {"name": result.get("name"), "version": result.get("version")}
            reported.add((module["name"], module["version"]))
            state = result.get("state")
            if state == MODULE_AVAILABLE:
                self._on_available(module)
            elif state == MODULE_FAILED:
                self._on_failed(module)
            else:
                pending += 1
                self._still_queued.append(module)

        for module in batch:
            if (module["name"], module["version"]) not in reported:
                self._emit_error(f"The deployment did not report a state for module {module_key(module)}")
                self._on_failed(module)

        if pending:
            # Only modules this batch got back as pending count toward the delay.
            delay = pending * self.per_item_delay
            logger.debug(f"[{self.name}] {pending} module(s) pending, next batch in {delay:.2f}s")
            await asyncio.sleep(delay)
        if self._still_queued:
            self._push(self._run_batch)

    def _on_available(self, module: ModuleSpec) -> None:
        self._available.append(module)
        self.memo_cache.record(module)
        self._notify("item_succeeded", module)

    def _on_failed(self, module: ModuleSpec) -> None:
        self._failed.append(module)
        logger.warning(f"[{self.name}] provisioning failed for {module_key(module)}")
        self._notify("item_failed", module)
