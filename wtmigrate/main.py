"""Main entry point for the wtmigrate application.

Sets up the Typer CLI application, performs dependency injection (Composition Root),
defines CLI commands, and delegates execution to the CommandHandler.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Coroutine, Dict, Optional

import typer
from typing_extensions import Annotated

# --- Core Layer ---
from wtmigrate.core.command_handler import EXIT_USAGE, CommandHandler, create_deployment
from wtmigrate.core.deployment import Deployment
# --- Infrastructure Layer ---
from wtmigrate.infrastructure.cli.display import ConsoleDisplay
from wtmigrate.infrastructure.config.settings import (
    get_config, get_deployment_url, get_master_token, get_max_concurrent,
    get_provision_settings, get_retry_settings, load_configuration
)
from wtmigrate.infrastructure.filesystem.local_fs import LocalFileSystem
from wtmigrate.infrastructure.monitoring.logger_setup import DEFAULT_LOG_FORMAT, setup_logging
from wtmigrate.infrastructure.resilience.retry_policy import RetryPolicy

logger = logging.getLogger(__name__)


async def configured_deployment(deployment_url: str, master_token: str, max_concurrent: int) -> Deployment:
    """Deployment factory applying the configured retry policy."""
    policy = RetryPolicy(**get_retry_settings())
    return await create_deployment(deployment_url, master_token, max_concurrent, policy=policy)


# --- Dependency Injection Container (Manual) ---

def create_dependencies() -> Dict[str, Any]:
    """Creates and wires up all dependencies for the application.

    This acts as the Composition Root.
    """
    load_configuration()
    setup_logging(
        log_level=get_config("logging.level", "WARNING"),
        log_file=get_config("logging.file"),
        log_format=get_config("logging.format", DEFAULT_LOG_FORMAT),
    )

    dependencies: Dict[str, Any] = {}
    dependencies["ui"] = ConsoleDisplay()
    dependencies["file_system"] = LocalFileSystem()
    dependencies["command_handler"] = CommandHandler(
        ui=dependencies["ui"],
        file_system=dependencies["file_system"],
        deployment_factory=configured_deployment,
        provision_settings=get_provision_settings(),
    )
    logger.debug("All dependencies initialized successfully.")
    return dependencies


_dependencies: Dict[str, Any] = {}


def get_dependencies() -> Dict[str, Any]:
    """Returns the wired-up dependencies, creating them on first use."""
    if not _dependencies:
        _dependencies.update(create_dependencies())
    return _dependencies


# --- Typer App Definition ---
app = typer.Typer(
    name="wtmigrate",
    help="wtmigrate: list, analyze, provision and migrate webtasks between deployments.",
    add_completion=False,
)


# --- Helpers ---

def run_async(coro: Coroutine[Any, Any, int]) -> int:
    """Runs an async command handler and returns its exit code."""
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Error executing async command: {e}", exc_info=True)
        get_dependencies()["ui"].display_error(f"Command execution failed: {e}")
        return 1


def finish(exit_code: int) -> None:
    if exit_code:
        raise typer.Exit(code=exit_code)


def resolve_connection(
    deployment_url: Optional[str], master_token: Optional[str], max_concurrent: Optional[int]
) -> tuple:
    """Fills missing connection options from configuration; exits when still missing."""
    deployment_url = deployment_url or get_deployment_url()
    master_token = master_token or get_master_token()
    max_concurrent = max_concurrent or get_max_concurrent()
    ui = get_dependencies()["ui"]
    if not deployment_url:
        ui.display_error("A deployment URL must be provided (--deployment-url or WTMIGRATE_DEPLOYMENT_URL).")
        raise typer.Exit(code=EXIT_USAGE)
    if not master_token:
        ui.display_error("A master token must be provided (--master-token or WTMIGRATE_MASTER_TOKEN).")
        raise typer.Exit(code=EXIT_USAGE)
    return deployment_url, master_token, max_concurrent


# --- CLI Options ---

DeploymentUrlOption = Annotated[
    Optional[str],
    typer.Option("--deployment-url", "-d", help="The base URL of the webtask deployment."),
]
MasterTokenOption = Annotated[
    Optional[str],
    typer.Option("--master-token", "-m", help="The master token of the webtask deployment."),
]
MaxConcurrentOption = Annotated[
    Optional[int],
    typer.Option("--max-concurrent", min=1, help="Maximum number of concurrent requests per deployment."),
]
ContainerOption = Annotated[
    Optional[str],
    typer.Option("--container", "-c", help="The container (tenant) to operate on."),
]


# --- CLI Commands ---

@app.command(name="list")
def list_command(
    deployment_url: DeploymentUrlOption = None,
    master_token: MasterTokenOption = None,
    max_concurrent: MaxConcurrentOption = None,
    container: ContainerOption = None,
):
    """List all the webtasks in the webtask deployment."""
    url, token, limit = resolve_connection(deployment_url, master_token, max_concurrent)
    handler: CommandHandler = get_dependencies()["command_handler"]
    finish(run_async(handler.handle_list(url, token, limit, container)))


@app.command()
def analyze(
    deployment_url: DeploymentUrlOption = None,
    master_token: MasterTokenOption = None,
    max_concurrent: MaxConcurrentOption = None,
    code_file: Annotated[
        Optional[Path],
        typer.Option("--code-file", "-f", dir_okay=False, help="The path to a code file to analyze."),
    ] = None,
    container: ContainerOption = None,
    webtask: Annotated[
        Optional[str], typer.Option("--webtask", "-w", help="The name of the webtask to analyze.")
    ] = None,
    modules_file: Annotated[
        Optional[Path],
        typer.Option("--modules-file", dir_okay=False, help="Write the detected modules as name,version lines."),
    ] = None,
):
    """Analyze a webtask to detect possible issues with migration."""
    url, token, limit = resolve_connection(deployment_url, master_token, max_concurrent)
    handler: CommandHandler = get_dependencies()["command_handler"]
    finish(run_async(handler.handle_analyze(
        url, token, limit,
        code_file=str(code_file) if code_file else None,
        container=container,
        webtask_name=webtask,
        modules_file=str(modules_file) if modules_file else None,
    )))


@app.command()
def provision(
    modules_file: Annotated[Path, typer.Argument(dir_okay=False, help="File of name,version lines.")],
    deployment_url: DeploymentUrlOption = None,
    master_token: MasterTokenOption = None,
    max_concurrent: MaxConcurrentOption = None,
    container: ContainerOption = None,
):
    """Provision node modules on the webtask deployment."""
    url, token, limit = resolve_connection(deployment_url, master_token, max_concurrent)
    handler: CommandHandler = get_dependencies()["command_handler"]
    finish(run_async(handler.handle_provision(url, token, limit, str(modules_file), container)))


@app.command()
def migrate(
    target_url: Annotated[str, typer.Option("--target-url", "-t", help="The base URL of the new deployment.")],
    target_token: Annotated[
        Optional[str], typer.Option("--target-token", help="Token for the new deployment (defaults to the master token).")
    ] = None,
    deployment_url: DeploymentUrlOption = None,
    master_token: MasterTokenOption = None,
    max_concurrent: MaxConcurrentOption = None,
    container: ContainerOption = None,
    webtask: Annotated[
        Optional[str], typer.Option("--webtask", "-w", help="Migrate only this webtask.")
    ] = None,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Analyze but do not upload.")] = False,
    include_storage: Annotated[bool, typer.Option("--include-storage", help="Copy storage data.")] = False,
    include_cron: Annotated[bool, typer.Option("--include-cron", help="Copy CRON jobs.")] = False,
    include_secrets: Annotated[bool, typer.Option("--include-secrets", help="Copy decrypted secrets.")] = False,
    ignore_claims: Annotated[bool, typer.Option("--ignore-claims", help="Do not carry over token claims.")] = False,
):
    """Migrate webtasks from one deployment to another."""
    url, token, limit = resolve_connection(deployment_url, master_token, max_concurrent)
    handler: CommandHandler = get_dependencies()["command_handler"]
    finish(run_async(handler.handle_migrate(
        url, token, target_url, target_token or token, limit,
        tenant_name=container,
        webtask_name=webtask,
        dry_run=dry_run,
        include_storage=include_storage,
        include_cron=include_cron,
        include_secrets=include_secrets,
        ignore_claims=ignore_claims,
    )))


# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()


if __name__ == "__main__":
    cli_entry_point()
