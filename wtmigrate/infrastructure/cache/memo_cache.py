"""Append-only memo of modules known to be available on a deployment.

Entries are only ever added: a module that became available stays available,
so concurrent writers recording the same fact need no coordination.
"""

import logging
from typing import Dict, FrozenSet, Set

from wtmigrate.domain.models.common import ModuleSpec

logger = logging.getLogger(__name__)


class MemoCache:
    """Maps module name to the set of versions known to be available."""

    def __init__(self):
        self._entries: Dict[str, Set[str]] = {}

    def record(self, module: ModuleSpec) -> None:
        versions = self._entries.setdefault(module["name"], set())
        if module["version"] not in versions:
            versions.add(module["version"])
            logger.debug(f"Memoized available module {module['name']}@{module['version']}")

    def contains(self, module: ModuleSpec) -> bool:
        return module["version"] in self._entries.get(module["name"], ())

    def __contains__(self, module: ModuleSpec) -> bool:
        return self.contains(module)

    def __len__(self) -> int:
        return sum(len(versions) for versions in self._entries.values())

    def snapshot(self) -> Dict[str, FrozenSet[str]]:
        return {name: frozenset(versions) for name, versions in self._entries.items()}

