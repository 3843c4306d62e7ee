"""Domain models specific to webtask analysis and migration."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .common import ModuleSpec


class WarningType(str, Enum):
    ANALYSIS_FAILED = "analysisFailed"
    ACTIVE_CRON = "activeCron"
    UNKNOWN_COMPILER = "unknownCompiler"
    UNKNOWN_VERSION = "unknownVersion"
    DYNAMIC_REQUIRE = "dynamicRequire"
    UNKNOWN_GLOBAL = "unknownGlobal"
    UNSUPPORTED_CLAIM = "unsupportedClaim"
    HOST_DETECTED = "hostDetected"
    GITHUB_DETECTED = "githubDetected"


@dataclass
class AnalysisWarning:
    """A migration risk detected in a webtask.

    ``code_type`` is ``'webtask'`` or ``'compiler'`` for findings in code and
    empty for findings about the webtask's configuration.
    """
    warning_type: WarningType
    message: str
    code_type: str = ""
    value: str = ""
    line: int = 0
    column: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "warningType": self.warning_type.value,
            "codeType": self.code_type,
            "value": self.value,
            "line": self.line,
            "column": self.column,
            "message": self.message,
        }


@dataclass
class AnalysisResult:
    """Dependencies resolved for a webtask plus any warnings."""
    dependencies: List[ModuleSpec] = field(default_factory=list)
    warnings: List[AnalysisWarning] = field(default_factory=list)


@dataclass
class ModulesList:
    """What a deployment can load: native module names and provisioned versions."""
    native_module_names: List[str] = field(default_factory=list)
    verquire_modules: Dict[str, List[str]] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> "ModulesList":
        payload = payload if isinstance(payload, dict) else {}
        verquire = payload.get("verquireModules")
        return cls(
            native_module_names=list(payload.get("nativeModuleNames") or []),
            verquire_modules=verquire if isinstance(verquire, dict) else {},
        )


class MigrationStatus(str, Enum):
    MIGRATED = "migrated"
    DRY_RUN = "dryRun"
    NOT_FOUND = "notFound"


@dataclass
class MigrationResult:
    """Outcome of migrating one webtask."""
    tenant: str
    webtask: str
    status: MigrationStatus
    message: str = ""
    warnings: List[AnalysisWarning] = field(default_factory=list)
    dependencies: List[ModuleSpec] = field(default_factory=list)
    error: Optional[str] = None
