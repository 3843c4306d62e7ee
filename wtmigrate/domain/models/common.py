"""Defines common Value Objects used across the migration contexts.

These objects represent simple values like tenant and webtask names and the
structured records exchanged with a deployment.
"""

from typing import Any, Dict, List, NewType, TypedDict

from wtmigrate.core.exceptions import ValidationError

# === Core Value Objects ===

# NewType for semantic clarity; plain strings at runtime.
TenantName = NewType("TenantName", str)        # Container / tenant name
WebtaskName = NewType("WebtaskName", str)      # Webtask name within a tenant
DeploymentUrl = NewType("DeploymentUrl", str)  # Base URL of a deployment
EncodedToken = NewType("EncodedToken", str)    # Raw JWT string
WebtaskCode = NewType("WebtaskCode", str)      # Source code of a webtask

Claims = Dict[str, Any]

# --- Structured Data ---

class ModuleSpec(TypedDict):
    """A node module reference: ``{"name": ..., "version": ...}``."""
    name: str
    version: str


class ModuleState(TypedDict, total=False):
    """Provisioning result for one module as reported by the deployment."""
    name: str
    version: str
    state: str  # 'available', 'failed', 'queued'


class WebtaskInfo(TypedDict):
    """One entry of a webtask listing."""
    tenant_name: str
    webtask_name: str


# Module provisioning states reported by the deployment.
MODULE_AVAILABLE = "available"
MODULE_FAILED = "failed"
MODULE_QUEUED = "queued"


def module_key(module: ModuleSpec) -> str:
    """Returns the ``name@version`` key of a module."""
    return f"{module['name']}@{module['version']}"


def validate_modules(modules: Any) -> List[ModuleSpec]:
    """Checks that ``modules`` is a list of ``{name: str, version: str}`` records.

    Raises:
        ValidationError: If the shape does not match.
    """
    if not isinstance(modules, list):
        raise ValidationError("modules(array) required")
    for module in modules:
        if not isinstance(module, dict):
            raise ValidationError("module(object) required")
        if not isinstance(module.get("name"), str):
            raise ValidationError("module.name(string) required")
        if not isinstance(module.get("version"), str):
            raise ValidationError("module.version(string) required")
    return modules
