"""Service for copying webtasks from one deployment to another."""

import asyncio
import logging
from typing import List, Optional, Tuple

from wtmigrate.core.deployment import Deployment
from wtmigrate.core.exceptions import ValidationError, WtMigrateError
from wtmigrate.core.services.webtask_analyzer import WebtaskAnalyzer
from wtmigrate.core.services.webtask_downloader import WebtaskDownloader, WebtaskFilter
from wtmigrate.domain.models.analysis import MigrationResult, MigrationStatus

logger = logging.getLogger(__name__)


class WebtaskMigrator:
    """Downloads webtasks from a source deployment and uploads them to a target."""

    def __init__(
        self,
        source: Deployment,
        target: Deployment,
        *,
        include_storage: bool = False,
        include_cron: bool = False,
        include_secrets: bool = False,
        ignore_claims: bool = False,
        dry_run: bool = False,
        analyze: bool = True,
        analyzer: Optional[WebtaskAnalyzer] = None,
    ):
        if not isinstance(source, Deployment):
            raise ValidationError("source(Deployment) required")
        if not isinstance(target, Deployment):
            raise ValidationError("target(Deployment) required")

        self.source = source
        self.target = target
        self.include_storage = include_storage
        self.include_cron = include_cron
        self.include_secrets = include_secrets
        self.ignore_claims = ignore_claims
        self.dry_run = dry_run
        self.analyzer = analyzer or (WebtaskAnalyzer(source) if analyze else None)

    async def migrate(self, tenant_name: str, webtask_name: str) -> MigrationResult:
        """Migrates one webtask.

        Returns:
            The migration result; ``NOT_FOUND`` when the source has no such webtask.

        Raises:
            DeploymentError: If downloading, analyzing or uploading fails.
        """
        webtask = await self.source.download_webtask(
            tenant_name,
            webtask_name,
            include_secrets=self.include_secrets,
            include_storage=self.include_storage,
            include_cron=self.include_cron,
        )
        if webtask is None:
            return MigrationResult(
                tenant=tenant_name,
                webtask=webtask_name,
                status=MigrationStatus.NOT_FOUND,
                message="The webtask was not found on the source deployment.",
            )

        result = MigrationResult(tenant=tenant_name, webtask=webtask_name, status=MigrationStatus.DRY_RUN)
        if self.analyzer:
            analysis = await self.analyzer.analyze(tenant_name, webtask_name, webtask)
            result.warnings = analysis.warnings
            result.dependencies = analysis.dependencies
            if analysis.dependencies:
                # Declare resolved modules so the target loads the same versions.
                webtask.add_dependencies(analysis.dependencies)

        if self.dry_run:
            result.message = f"The webtask would be migrated with {len(result.warnings)} warning(s)."
            return result

        await self.target.upload_webtask(
            tenant_name,
            webtask_name,
            webtask,
            ignore_claims=self.ignore_claims,
            overwrite_storage=True,
        )
        result.status = MigrationStatus.MIGRATED
        result.message = f"The webtask was migrated with {len(result.warnings)} warning(s)."
        logger.info(f"Migrated {tenant_name}/{webtask_name} to {self.target.deployment_url}")
        return result

    async def migrate_all(
        self, tenant_name: Optional[str] = None, filter: Optional[WebtaskFilter] = None
    ) -> Tuple[List[MigrationResult], List[str]]:
        """Migrates every listed webtask of a tenant (or of the whole deployment).

        Returns:
            The results of the successful migrations and the error messages of the failed ones.
        """
        lister = WebtaskDownloader(self.source, tenant_name, names_only=True, filter=filter)
        await lister.run()

        results: List[MigrationResult] = []
        errors: List[str] = list(lister.errors)

        async def migrate_one(tenant: str, name: str) -> None:
            try:
                results.append(await self.migrate(tenant, name))
            except WtMigrateError as e:
                logger.warning(f"Migration of {tenant}/{name} failed: {e}")
                errors.append(f"{tenant}/{name}: {e}")

        # Concurrency is bounded by the deployments' dispatchers.
        await asyncio.gather(*(migrate_one(r.tenant_name, r.webtask_name) for r in lister.downloaded))
        logger.info(f"Migration finished: {len(results)} processed, {len(errors)} error(s)")
        return results, errors
