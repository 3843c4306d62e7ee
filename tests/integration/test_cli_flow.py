import json
from unittest.mock import MagicMock

import pytest
from typer.testing import CliRunner

from helpers import Router
from wtmigrate.core.command_handler import CommandHandler
from wtmigrate.core.services.webtask_analyzer import PROBE_CONTAINER
from wtmigrate.domain.interfaces.user_interface import UserInterface
from wtmigrate.domain.models.calls import CallOutcome
from wtmigrate.infrastructure.cache.memo_cache import MemoCache
from wtmigrate.infrastructure.filesystem.local_fs import LocalFileSystem
from wtmigrate.main import app

SOURCE_ROUTES = {
    ("GET", "api/webtask"): CallOutcome(200, [
        {"container": "acme", "name": "hello"},
        {"container": "acme", "name": "world"},
    ]),
    ("GET", "api/webtask/acme/hello"): CallOutcome(200, {"code": "const _ = require('lodash');"}),
    ("POST", f"api/run/{PROBE_CONTAINER}"): CallOutcome(200, json.dumps({
        "nativeModuleNames": [], "verquireModules": {"lodash": ["4.17.4"]},
    })),
    ("POST", "api/env/node/modules"): lambda d: CallOutcome(
        200, [dict(m, state="available") for m in d.body["modules"]]
    ),
}


@pytest.fixture
def mock_console_display():
    return MagicMock(spec=UserInterface)


@pytest.fixture
def cli_dependencies(mocker, make_deployment, mock_console_display):
    """Wires the real LocalFileSystem and CommandHandler to fake deployments and a mocked display."""
    opened = []

    async def deployment_factory(url, token, max_concurrent):
        deployment, transport = await make_deployment(Router(SOURCE_ROUTES), max_concurrent=max_concurrent)
        opened.append((url, token, max_concurrent, transport))
        return deployment

    dependencies = {
        "ui": mock_console_display,
        "file_system": LocalFileSystem(),
    }
    dependencies["command_handler"] = CommandHandler(
        ui=dependencies["ui"],
        file_system=dependencies["file_system"],
        deployment_factory=deployment_factory,
        provision_settings={"per_item_delay": 0, "memo_cache": MemoCache()},
    )
    mocker.patch("wtmigrate.main.get_dependencies", return_value=dependencies)
    dependencies["opened"] = opened
    return dependencies


def test_list_command_flow(runner: CliRunner, cli_dependencies, mock_console_display):
    """Test the full flow for the 'list' command."""
    result = runner.invoke(app, ["list", "-d", "https://wt.example.com", "-m", "master", "--max-concurrent", "3"])

    assert result.exit_code == 0, f"CLI command failed: {result.stdout}"
    records = mock_console_display.display_webtasks.call_args.args[0]
    assert sorted(r.webtask_name for r in records) == ["hello", "world"]
    assert cli_dependencies["opened"][0][:3] == ("https://wt.example.com", "master", 3)
    mock_console_display.display_error.assert_not_called()


def test_analyze_command_writes_modules_file(runner: CliRunner, cli_dependencies, mock_console_display, tmp_path):
    """Test 'analyze' of a deployed webtask with a modules file as output."""
    modules_file = tmp_path / "modules.txt"
    result = runner.invoke(app, [
        "analyze", "-d", "https://wt.example.com", "-m", "master",
        "-c", "acme", "-w", "hello", "--modules-file", str(modules_file),
    ])

    assert result.exit_code == 0, f"CLI command failed: {result.stdout}"
    assert modules_file.read_text() == "lodash,4.17.4\n"


def test_analyze_command_code_file(runner: CliRunner, cli_dependencies, mock_console_display, tmp_path):
    code_file = tmp_path / "hook.js"
    code_file.write_text("module.exports = cb => cb(null, require('lodash'));")

    result = runner.invoke(app, ["analyze", "-d", "https://wt.example.com", "-m", "master", "-f", str(code_file)])

    assert result.exit_code == 0, f"CLI command failed: {result.stdout}"
    analysis = mock_console_display.display_analysis.call_args.args[0]
    assert analysis.dependencies == [{"name": "lodash", "version": "4.17.4"}]


def test_analyze_command_missing_arguments(runner: CliRunner, cli_dependencies, mock_console_display):
    result = runner.invoke(app, ["analyze", "-d", "https://wt.example.com", "-m", "master", "-c", "acme"])

    assert result.exit_code == 1
    mock_console_display.display_error.assert_called_once()


def test_analyze_command_missing_webtask(runner: CliRunner, cli_dependencies, mock_console_display):
    result = runner.invoke(app, ["analyze", "-d", "https://wt.example.com", "-m", "master", "-c", "acme", "-w", "nope"])

    assert result.exit_code == 3
    mock_console_display.display_error.assert_called_once_with("The given webtask was not found.")


def test_provision_command_flow(runner: CliRunner, cli_dependencies, mock_console_display, tmp_path):
    """Test 'provision' reading a module list from disk."""
    modules_file = tmp_path / "modules.txt"
    modules_file.write_text("lodash,4.17.4\nrequest,2.81.0\n")

    result = runner.invoke(app, ["provision", str(modules_file), "-d", "https://wt.example.com", "-m", "master"])

    assert result.exit_code == 0, f"CLI command failed: {result.stdout}"
    available, failed, queued = mock_console_display.display_provision_summary.call_args.args
    assert [m["name"] for m in available] == ["lodash", "request"]
    assert failed == [] and queued == []


def test_provision_command_missing_file(runner: CliRunner, cli_dependencies, mock_console_display, tmp_path):
    result = runner.invoke(app, ["provision", str(tmp_path / "nope.txt"), "-d", "https://wt.example.com", "-m", "master"])
    assert result.exit_code == 4


def test_migrate_dry_run_flow(runner: CliRunner, cli_dependencies, mock_console_display):
    """Test a dry-run 'migrate' of a single webtask; the target receives nothing."""
    result = runner.invoke(app, [
        "migrate", "-t", "https://new.example.com", "-d", "https://wt.example.com", "-m", "master",
        "-c", "acme", "-w", "hello", "--dry-run",
    ])

    assert result.exit_code == 0, f"CLI command failed: {result.stdout}"
    (migration,) = mock_console_display.display_migration_results.call_args.args[0]
    assert migration.status.value == "dryRun"
    target = [entry for entry in cli_dependencies["opened"] if entry[0] == "https://new.example.com"]
    assert target[0][1] == "master"
    assert target[0][3].calls == []


def test_missing_deployment_url(runner: CliRunner, cli_dependencies, mock_console_display, mocker):
    mocker.patch("wtmigrate.main.get_deployment_url", return_value=None)

    result = runner.invoke(app, ["list", "-m", "master"])

    assert result.exit_code == 1
    assert "deployment URL" in mock_console_display.display_error.call_args.args[0]
