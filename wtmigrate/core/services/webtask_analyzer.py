"""Service for analyzing webtasks ahead of a migration.

Resolves the module dependencies of a webtask (and of its compiler) and
reports anything that will need attention on the new deployment.
"""

import asyncio
import json
import logging
from typing import Dict, List, Optional, Tuple

from wtmigrate.core.deployment import Deployment
from wtmigrate.core.exceptions import DeploymentError, ValidationError, WtMigrateError
from wtmigrate.domain.interfaces.code_analyzer import CodeAnalysis, CodeAnalyzer, CodeEntry
from wtmigrate.domain.models.analysis import AnalysisResult, AnalysisWarning, ModulesList, WarningType
from wtmigrate.domain.models.common import ModuleSpec
from wtmigrate.domain.models.webtask import Webtask
from wtmigrate.infrastructure.analysis.require_scanner import RequireScanner

logger = logging.getLogger(__name__)

# Webtask that stores the github integration settings of a tenant.
GITHUB_WEBTASK_NAME = "f913423c57f4356921eb2efb55aa0237"

# Container used to probe the module list when only a master token is available.
PROBE_CONTAINER = "auth0-test-container"

KNOWN_VERSIONS: Dict[str, str] = {
    "acorn": "3.3.0",
    "async": "2.2.0",
    "babel": "5.4.7",
    "dotenv": "0.4.0",
    "ejs": "2.4.1",
    "joi": "6.10.0",
    "jws": "3.1.0",
    "lodash": "3.10.1",
    "lru-cache": "2.5.0",
    "magic-string": "0.16.0",
    "mkdirp": "0.5.1",
    "npm": "2.15.6",
    "raw-body": "2.2.0",
    "request": "2.74.0",
    "sandboxjs": "3.1.0",
    "tripwire": "4.1.0",
    "uuid": "2.0.1",
    "webtask-tools": "3.2.1",
    "auth0-api-jwt-rsa-validation": "0.0.1",
    "auth0-authz-rules-api": "1.0.8",
    "auth0-ext-compilers": "5.4.0",
    "auth0-oauth2-express": "0.0.1",
    "edge": "5.0.0",
    "@webtask/middleware-compiler": "1.3.0",
}

MODULES_LIST_PROBE = "\n".join([
    "const Path = require('path');",
    "const nativeModuleNames = Object.keys(process.binding('natives'));",
    "var verquireModules = [];",
    "try {",
    "verquireModules = require(Path.join(process.env.VERQUIRE_DIR, 'packages.json'));",
    "} catch (error) {}",
    "module.exports = cb => { cb(null, { nativeModuleNames, verquireModules }); }",
])

_STATIC_MESSAGES = {
    WarningType.ANALYSIS_FAILED: (
        "Failed to analyze the code. This may be because the code has a syntax error "
        "or because a compiler is being used to transpile from non-javascript text into javascript code."
    ),
    WarningType.ACTIVE_CRON: (
        "The CRON job state is 'active' on both the new and old deployments and will run in both "
        "environments. Consider disabling the CRON job in one of the deployments."
    ),
    WarningType.HOST_DETECTED: (
        "The webtask uses a host value to support a custom domain name. "
        "Update the CNAME record with your hosting service to support the new deployment."
    ),
    WarningType.GITHUB_DETECTED: (
        "The webtask uses github integration. Re-enable github integration on the new deployment."
    ),
}


def parse_module_spec(spec: str) -> Tuple[str, Optional[str]]:
    """Splits ``name@version/sub/path`` into the package name and optional version.

    Scoped names (``@scope/name``) keep their scope.
    """
    at_index = spec.find("@", 1)
    if at_index == -1:
        name, version = spec, None
    else:
        name, version = spec[:at_index], spec[at_index + 1:]

    slash_index = name.find("/", 1)
    if slash_index >= 0:
        if name.startswith("@"):
            slash_index = name.find("/", slash_index + 1)
        if slash_index >= 0:
            name = name[:slash_index]
    return name, version


def create_warning(
    warning_type: WarningType, code_type: str = "", entry: Optional[CodeEntry] = None, value: str = ""
) -> AnalysisWarning:
    """Builds a warning with the user facing message for its type."""
    if entry is not None:
        value = entry.value or ""
    line = entry.line if entry else 0
    column = entry.column if entry else 0

    if warning_type is WarningType.UNKNOWN_VERSION:
        message = (
            f"A require for module '{value}' was detected in the code at line '{line}', position '{column}'. "
            "Analysis was unable to determine the module version. "
            "Ensure that the given module is declared as a dependency via metadata."
        )
    elif warning_type is WarningType.DYNAMIC_REQUIRE:
        message = (
            f"A dynamic require was detected in the code at line '{line}', position '{column}'. "
            "Analysis was unable to determine the module name and version. "
            "Ensure that the given module is declared as a dependency via metadata."
        )
    elif warning_type is WarningType.UNSUPPORTED_CLAIM:
        message = (
            f"The token claim, '{value}', is not supported on the new deployment. "
            "Ensure that the webtask still executes as expected on the new deployment."
        )
    elif warning_type is WarningType.UNKNOWN_COMPILER:
        message = (
            f"The compiler, '{value}', was detected. "
            "Ensure that the given npm module for the compiler is declared as a dependency via metadata."
        )
    elif warning_type is WarningType.UNKNOWN_GLOBAL:
        message = (
            f"An unknown global, '{value}', was detected in the code at line '{line}', position '{column}'. "
            "Analysis was unable to determine if this global is an assumed dependency in the code. "
            "If so, ensure that the given module is declared as a dependency via metadata."
        )
    else:
        message = _STATIC_MESSAGES.get(warning_type, "")

    return AnalysisWarning(
        warning_type=warning_type, message=message, code_type=code_type, value=value, line=line, column=column
    )


class WebtaskAnalyzer:
    """Finds dependencies and migration risks of webtasks on one deployment."""

    def __init__(
        self,
        deployment: Deployment,
        code_analyzer: Optional[CodeAnalyzer] = None,
        *,
        warn_on_claims: bool = False,
    ):
        """Initializes the analyzer.

        Args:
            deployment: Deployment the webtasks come from.
            code_analyzer: Static analyzer for code; defaults to ``RequireScanner``.
            warn_on_claims: Report token claims the new deployment does not support.
        """
        if not isinstance(deployment, Deployment):
            raise ValidationError("deployment(Deployment) required")
        self.deployment = deployment
        self.code_analyzer = code_analyzer or RequireScanner()
        self.warn_on_claims = warn_on_claims
        self._modules_list: Optional[asyncio.Future] = None

    async def analyze(self, tenant_name: str, webtask_name: str, webtask: Webtask) -> AnalysisResult:
        """Analyzes one webtask.

        Raises:
            DeploymentError: If the deployment's module list cannot be loaded.
        """
        if not isinstance(tenant_name, str):
            raise ValidationError("tenant_name(string) required")
        if not isinstance(webtask_name, str):
            raise ValidationError("webtask_name(string) required")
        if not isinstance(webtask, Webtask):
            raise ValidationError("webtask(Webtask) required")

        modules_list = await self.get_modules_list(tenant_name)
        result = AnalysisResult()
        declared = webtask.dependencies

        analysis = self._analyze_code(modules_list, webtask.code, declared, result, "webtask")

        if self.warn_on_claims:
            self._analyze_claims(webtask, analysis, result)

        compiler = webtask.compiler
        if compiler:
            compiler_code = await self._fetch_compiler_code(compiler)
            if compiler_code:
                self._analyze_code(modules_list, compiler_code, declared, result, "compiler")
            else:
                self._analyze_compiler_spec(modules_list, compiler, declared, result)

        if webtask.cron.get("state") == "active":
            result.warnings.append(create_warning(WarningType.ACTIVE_CRON))

        if webtask.host:
            result.warnings.append(create_warning(WarningType.HOST_DETECTED))

        await self._analyze_github(tenant_name, webtask_name, result)

        logger.debug(
            f"Analyzed {tenant_name}/{webtask_name}: {len(result.dependencies)} dependencies, "
            f"{len(result.warnings)} warnings"
        )
        return result

    # --- Module list ---

    async def get_modules_list(self, tenant_name: str) -> ModulesList:
        """Loads the module list once; later calls share the same result."""
        if self._modules_list is None:
            self._modules_list = asyncio.ensure_future(self._load_modules_list(tenant_name))
        return await self._modules_list

    async def _load_modules_list(self, tenant_name: str) -> ModulesList:
        token = await self.deployment.token_store.get_token(tenant_name)
        container = PROBE_CONTAINER if token.is_master_token else tenant_name
        logger.info(f"Loading module list from container '{container}'")

        try:
            raw = await self.deployment.run_code(container, MODULES_LIST_PROBE, token=token)
            payload = json.loads(raw) if isinstance(raw, str) else raw
        except (DeploymentError, ValueError) as e:
            cause = e.__cause__ or e
            raise DeploymentError(
                f"Failed to download provision modules list due to the following error: {cause}"
            ) from e
        return ModulesList.from_payload(payload)

    @staticmethod
    def _determine_version(modules_list: ModulesList, declared: List[ModuleSpec], name: str) -> Optional[str]:
        versions = modules_list.verquire_modules.get(name)
        if isinstance(versions, list) and versions:
            return versions[0]
        for module in declared:
            if module["name"] == name:
                return module["version"]
        return KNOWN_VERSIONS.get(name)

    # --- Code ---

    def _analyze_code(
        self,
        modules_list: ModulesList,
        code: str,
        declared: List[ModuleSpec],
        result: AnalysisResult,
        code_type: str,
    ) -> Optional[CodeAnalysis]:
        analysis = self.code_analyzer.analyze(code)
        if analysis.failed:
            result.warnings.append(create_warning(WarningType.ANALYSIS_FAILED, code_type))
            return None

        for entry in analysis.globals:
            result.warnings.append(create_warning(WarningType.UNKNOWN_GLOBAL, code_type, entry))

        for entry in analysis.dynamic_requires:
            result.warnings.append(create_warning(WarningType.DYNAMIC_REQUIRE, code_type, entry))

        for entry in analysis.requires:
            name, version = parse_module_spec(entry.value)
            if not version:
                if name in modules_list.native_module_names:
                    continue
                version = self._determine_version(modules_list, declared, name)

            if version:
                result.dependencies.append({"name": name, "version": version})
            else:
                result.warnings.append(create_warning(WarningType.UNKNOWN_VERSION, code_type, entry))

        return analysis

    @staticmethod
    def _analyze_claims(webtask: Webtask, analysis: Optional[CodeAnalysis], result: AnalysisResult) -> None:
        args_length = len(analysis.export_function_arguments) if analysis else 0
        for claim, value in webtask.claims.items():
            if value != 1:
                continue
            if (claim == "pb" and args_length in (0, 3)) or claim == "mb":
                result.warnings.append(create_warning(WarningType.UNSUPPORTED_CLAIM, value=claim))

    # --- Compiler ---

    def _analyze_compiler_spec(
        self, modules_list: ModulesList, compiler: str, declared: List[ModuleSpec], result: AnalysisResult
    ) -> None:
        name, version = parse_module_spec(compiler)
        if not version:
            version = self._determine_version(modules_list, declared, name)
        if version:
            result.dependencies.append({"name": name, "version": version})
        else:
            result.warnings.append(create_warning(WarningType.UNKNOWN_COMPILER, "compiler", value=compiler))

    async def _fetch_compiler_code(self, compiler: str) -> Optional[str]:
        if not compiler.startswith(("https://", "http://")):
            return None

        dispatcher = self.deployment.dispatcher.clone(base_url=compiler)
        try:
            code = await dispatcher.request("GET")
        except WtMigrateError as e:
            logger.warning(f"Could not fetch compiler code from {compiler}: {e}")
            return None
        finally:
            await dispatcher.aclose()
        return code if isinstance(code, str) and code else None

    # --- Github ---

    async def _analyze_github(self, tenant_name: str, webtask_name: str, result: AnalysisResult) -> None:
        try:
            github_webtask = await self.deployment.download_webtask(
                tenant_name, GITHUB_WEBTASK_NAME, include_storage=True
            )
        except WtMigrateError as e:
            logger.debug(f"Github integration lookup failed for tenant '{tenant_name}': {e}")
            return

        data = github_webtask.storage_data if github_webtask else None
        if not data:
            return
        try:
            settings = json.loads(data)
        except ValueError:
            logger.debug(f"Ignoring malformed github integration data for tenant '{tenant_name}'")
            return

        if isinstance(settings, dict) and isinstance(settings.get(webtask_name), dict):
            result.warnings.append(create_warning(WarningType.GITHUB_DETECTED))
