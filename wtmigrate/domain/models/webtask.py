"""Webtask aggregate: code plus metadata, secrets, storage, cron and token."""

import copy
import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from wtmigrate.core.exceptions import ValidationError
from wtmigrate.domain.models.analysis import AnalysisResult
from wtmigrate.domain.models.common import Claims, ModuleSpec, validate_modules
from wtmigrate.domain.models.token import Token

logger = logging.getLogger(__name__)

DEPENDENCIES_META_KEY = "wt-node-dependencies"
COMPILER_META_KEY = "wt-compiler"


class Webtask:
    """A downloaded (or to-be-uploaded) webtask."""

    def __init__(
        self,
        code: str,
        meta: Optional[Dict[str, Any]] = None,
        secrets: Optional[Dict[str, Any]] = None,
        storage: Optional[Dict[str, Any]] = None,
        cron: Optional[Dict[str, Any]] = None,
        token: Optional[Token] = None,
    ):
        """Initializes the webtask.

        Args:
            code: Webtask source code.
            meta: Metadata key/values (``wt-node-dependencies``, ``wt-compiler``...).
            secrets: Secret key/values.
            storage: ``{"data": ..., "etag": ...}``; non-string data is serialized to JSON.
            cron: Cron job definition.
            token: The webtask token, if any.
        """
        if not isinstance(code, str):
            raise ValidationError("code(string) required")
        if token is not None and not isinstance(token, Token):
            raise ValidationError("token(Token) invalid type")

        storage = copy.deepcopy(storage or {})
        if storage.get("data") and not isinstance(storage["data"], str):
            storage["data"] = json.dumps(storage["data"])

        self._code = code
        self._meta = dict(meta or {})
        self._secrets = dict(secrets or {})
        self._storage = storage
        self._cron = dict(cron or {})
        self._token = token

    @property
    def code(self) -> str:
        return self._code

    @property
    def meta(self) -> Dict[str, Any]:
        return copy.deepcopy(self._meta)

    @property
    def secrets(self) -> Dict[str, Any]:
        return copy.deepcopy(self._secrets)

    @property
    def cron(self) -> Dict[str, Any]:
        return copy.deepcopy(self._cron)

    @property
    def token(self) -> Optional[Token]:
        return self._token

    # --- Dependencies ---

    def _declared_dependencies(self) -> Dict[str, str]:
        raw = self._meta.get(DEPENDENCIES_META_KEY)
        if not raw:
            return {}
        try:
            dependencies = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug(f"Ignoring malformed {DEPENDENCIES_META_KEY} metadata: {raw!r}")
            return {}
        return dependencies if isinstance(dependencies, dict) else {}

    @property
    def dependencies(self) -> List[ModuleSpec]:
        return [{"name": name, "version": version} for name, version in self._declared_dependencies().items()]

    def add_dependencies(self, modules: List[ModuleSpec]) -> None:
        validate_modules(modules)
        dependencies = self._declared_dependencies()
        for module in modules:
            dependencies[module["name"]] = module["version"]
        self._meta[DEPENDENCIES_META_KEY] = json.dumps(dependencies)

    def remove_dependencies(self, modules: List[ModuleSpec]) -> None:
        validate_modules(modules)
        dependencies = self._declared_dependencies()
        for module in modules:
            dependencies.pop(module["name"], None)
        self._meta[DEPENDENCIES_META_KEY] = json.dumps(dependencies)

    @property
    def compiler(self) -> Optional[str]:
        return self._meta.get(COMPILER_META_KEY)

    # --- Storage ---

    @property
    def storage_data(self) -> Optional[str]:
        return self._storage.get("data") or None

    @property
    def storage_etag(self) -> Optional[str]:
        return self._storage.get("etag") or None

    def set_storage_data(self, data: Any) -> None:
        self._storage["data"] = data if isinstance(data, str) else json.dumps(data)

    # --- Token derived ---

    @property
    def claims(self) -> Claims:
        return self._token.webtask_claims if self._token else {}

    @property
    def host(self) -> Optional[str]:
        if self._token:
            return self._token.all_claims.get("host") or None
        return None

    @property
    def code_url(self) -> Optional[str]:
        """URL the code is loaded from, when the webtask is not inline."""
        if self._token:
            url = self._token.all_claims.get("url")
            if url and not url.startswith("webtask://"):
                return url
        return None

    @property
    def is_url_based(self) -> bool:
        return self.code_url is not None

    def state(self) -> Dict[str, Any]:
        return {
            "code": self._code,
            "meta": copy.deepcopy(self._meta),
            "secrets": copy.deepcopy(self._secrets),
            "storage": copy.deepcopy(self._storage),
            "cron": copy.deepcopy(self._cron),
            "token": self._token.state() if self._token else None,
        }

    @property
    def hash(self) -> str:
        """SHA1 of the canonical JSON form of ``state()``."""
        canonical = json.dumps(self.state(), sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha1(canonical.encode("utf-8")).hexdigest()


@dataclass
class WebtaskRecord:
    """A listed webtask plus whatever was downloaded or derived for it."""
    tenant_name: str
    webtask_name: str
    webtask: Optional[Webtask] = None
    analysis: Optional[AnalysisResult] = None
    error: Optional[str] = None
