"""Command Handler: Orchestrates CLI command execution.

Receives commands from the main entry point (main.py), wires up the
deployments they operate on and delegates the work to the application
services (downloader, analyzer, provisioner, migrator). Every handler returns
the process exit code.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from wtmigrate.core.deployment import Deployment
from wtmigrate.core.exceptions import ValidationError, WtMigrateError
from wtmigrate.core.services.module_provisioner import ModuleProvisioner
from wtmigrate.core.services.producer import CallbackObserver
from wtmigrate.core.services.webtask_analyzer import WebtaskAnalyzer
from wtmigrate.core.services.webtask_downloader import WebtaskDownloader
from wtmigrate.core.services.webtask_migrator import WebtaskMigrator
from wtmigrate.core.token_store import TokenStore
from wtmigrate.domain.interfaces.file_system import FileSystem
from wtmigrate.domain.interfaces.user_interface import UserInterface
from wtmigrate.domain.models.token import Token
from wtmigrate.domain.models.webtask import Webtask
from wtmigrate.infrastructure.cache.memo_cache import MemoCache
from wtmigrate.infrastructure.resilience.retry_policy import RetryPolicy

logger = logging.getLogger(__name__)

LOADED_CODE_NAME = "<loaded_code>"

# Exit codes
EXIT_OK = 0
EXIT_USAGE = 1
EXIT_DOWNLOAD_FAILED = 2
EXIT_NOT_FOUND = 3
EXIT_FILE_ERROR = 4
EXIT_REMOTE_ERROR = 5

DeploymentFactory = Callable[[str, str, int], Awaitable[Deployment]]


async def create_deployment(
    deployment_url: str,
    master_token: str,
    max_concurrent: int,
    policy: Optional[RetryPolicy] = None,
) -> Deployment:
    """Builds a deployment whose token store holds the given master (or tenant) token."""
    token_store = TokenStore()
    await token_store.add_token(Token(master_token))
    return Deployment.from_url(token_store, deployment_url, max_concurrent=max_concurrent, policy=policy)


class CommandHandler:
    """Handles incoming commands and delegates to appropriate services."""

    def __init__(
        self,
        ui: UserInterface,
        file_system: FileSystem,
        deployment_factory: DeploymentFactory = create_deployment,
        provision_settings: Optional[Dict[str, Any]] = None,
    ):
        """Initializes the CommandHandler.

        Args:
            ui: Presents results and errors.
            file_system: Reads code files and module lists.
            deployment_factory: ``async (url, token, max_concurrent) -> Deployment``.
            provision_settings: Extra keyword arguments for ``ModuleProvisioner``.
        """
        self.ui = ui
        self.file_system = file_system
        self.deployment_factory = deployment_factory
        self.provision_settings = dict(provision_settings or {})
        # Modules known to be available outlive a single provisioning run.
        self.provision_settings.setdefault("memo_cache", MemoCache())

    async def _open(self, deployment_url: str, master_token: str, max_concurrent: int) -> Deployment:
        return await self.deployment_factory(deployment_url, master_token, max_concurrent)

    async def handle_list(
        self, deployment_url: str, master_token: str, max_concurrent: int, tenant_name: Optional[str] = None
    ) -> int:
        """Handles the 'list' command."""
        logger.info(f"Handling 'list' command for {deployment_url} (tenant: {tenant_name or 'all'})")
        try:
            deployment = await self._open(deployment_url, master_token, max_concurrent)
        except ValidationError as e:
            self.ui.display_error(str(e))
            return EXIT_USAGE

        try:
            downloader = WebtaskDownloader(deployment, tenant_name, names_only=True)
            await downloader.run()
        finally:
            await deployment.aclose()

        for message in downloader.errors:
            self.ui.display_error(message)
        self.ui.display_webtasks(downloader.downloaded)
        return EXIT_REMOTE_ERROR if downloader.errors else EXIT_OK

    async def handle_analyze(
        self,
        deployment_url: str,
        master_token: str,
        max_concurrent: int,
        code_file: Optional[str] = None,
        container: Optional[str] = None,
        webtask_name: Optional[str] = None,
        modules_file: Optional[str] = None,
    ) -> int:
        """Handles the 'analyze' command for a local code file or a deployed webtask."""
        if not code_file and not (container and webtask_name):
            self.ui.display_error(
                "Missing required arguments: container, webtask\n"
                "If the --code-file value is not provided, both the --container and --webtask values must be."
            )
            return EXIT_USAGE

        try:
            deployment = await self._open(deployment_url, master_token, max_concurrent)
        except ValidationError as e:
            self.ui.display_error(str(e))
            return EXIT_USAGE

        try:
            if code_file:
                try:
                    webtask = Webtask(await self.file_system.read_file(code_file))
                except (OSError, ValidationError) as e:
                    self.ui.display_error(str(e))
                    return EXIT_FILE_ERROR
            else:
                try:
                    webtask = await deployment.download_webtask(container, webtask_name)
                except WtMigrateError as e:
                    logger.error(f"Download of {container}/{webtask_name} failed: {e}")
                    self.ui.display_error("Failed to download the given webtask.")
                    return EXIT_DOWNLOAD_FAILED
                if webtask is None:
                    self.ui.display_error("The given webtask was not found.")
                    return EXIT_NOT_FOUND

            container = container or LOADED_CODE_NAME
            webtask_name = webtask_name or LOADED_CODE_NAME
            analyzer = WebtaskAnalyzer(deployment)
            try:
                analysis = await analyzer.analyze(container, webtask_name, webtask)
            except WtMigrateError as e:
                self.ui.display_error(f"Analysis failed: {e}")
                return EXIT_REMOTE_ERROR
        finally:
            await deployment.aclose()

        self.ui.display_analysis(analysis, title=f"{container}/{webtask_name}")
        if modules_file:
            try:
                await self.file_system.write_module_list(modules_file, analysis.dependencies)
            except OSError as e:
                self.ui.display_error(str(e))
                return EXIT_FILE_ERROR
            self.ui.display_info(f"Wrote {len(analysis.dependencies)} module(s) to {modules_file}")
        return EXIT_OK

    async def handle_provision(
        self,
        deployment_url: str,
        master_token: str,
        max_concurrent: int,
        modules_file: str,
        tenant_name: Optional[str] = None,
    ) -> int:
        """Handles the 'provision' command."""
        try:
            modules = await self.file_system.read_module_list(modules_file)
        except OSError as e:
            self.ui.display_error(str(e))
            return EXIT_FILE_ERROR
        if not modules:
            self.ui.display_warning(f"No modules found in {modules_file}.")
            return EXIT_OK

        try:
            deployment = await self._open(deployment_url, master_token, max_concurrent)
        except ValidationError as e:
            self.ui.display_error(str(e))
            return EXIT_USAGE
        try:
            provisioner = ModuleProvisioner(
                deployment, modules, tenant_name, max_concurrent=max_concurrent, **self.provision_settings
            )
        except ValidationError as e:
            await deployment.aclose()
            self.ui.display_error(str(e))
            return EXIT_USAGE

        provisioner.subscribe(CallbackObserver(on_error=self.ui.display_error))
        try:
            await provisioner.run()
        finally:
            await deployment.aclose()

        self.ui.display_provision_summary(
            provisioner.available_modules, provisioner.failed_modules, provisioner.queued_modules
        )
        return EXIT_REMOTE_ERROR if provisioner.failed_modules or provisioner.errors else EXIT_OK

    async def handle_migrate(
        self,
        deployment_url: str,
        master_token: str,
        target_url: str,
        target_token: str,
        max_concurrent: int,
        tenant_name: Optional[str] = None,
        webtask_name: Optional[str] = None,
        *,
        dry_run: bool = False,
        include_storage: bool = False,
        include_cron: bool = False,
        include_secrets: bool = False,
        ignore_claims: bool = False,
    ) -> int:
        """Handles the 'migrate' command for one webtask or every listed webtask."""
        if webtask_name and not tenant_name:
            self.ui.display_error("The --container value is required when --webtask is given.")
            return EXIT_USAGE

        try:
            source = await self._open(deployment_url, master_token, max_concurrent)
        except ValidationError as e:
            self.ui.display_error(str(e))
            return EXIT_USAGE
        try:
            target = await self._open(target_url, target_token, max_concurrent)
        except ValidationError as e:
            await source.aclose()
            self.ui.display_error(str(e))
            return EXIT_USAGE

        migrator = WebtaskMigrator(
            source,
            target,
            include_storage=include_storage,
            include_cron=include_cron,
            include_secrets=include_secrets,
            ignore_claims=ignore_claims,
            dry_run=dry_run,
        )
        errors = []
        try:
            if webtask_name:
                try:
                    results = [await migrator.migrate(tenant_name, webtask_name)]
                except WtMigrateError as e:
                    results, errors = [], [str(e)]
            else:
                results, errors = await migrator.migrate_all(tenant_name)
        finally:
            await source.aclose()
            await target.aclose()

        for message in errors:
            self.ui.display_error(message)
        self.ui.display_migration_results(results)
        return EXIT_REMOTE_ERROR if errors else EXIT_OK
