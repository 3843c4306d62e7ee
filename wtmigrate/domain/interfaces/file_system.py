"""Interface for file system operations used by the commands."""

import abc
from typing import List

from wtmigrate.domain.models.common import ModuleSpec


class FileSystem(abc.ABC):
    """Abstract Base Class for file system access."""

    @abc.abstractmethod
    async def read_file(self, file_path: str) -> str:
        """Reads the full text content of a file.

        Raises:
            FileNotFoundError: If the file does not exist.
            IOError: For other read failures.
        """
        pass

    @abc.abstractmethod
    async def write_file(self, file_path: str, content: str) -> None:
        """Writes text content to a file, creating parent directories."""
        pass

    @abc.abstractmethod
    async def read_module_list(self, file_path: str) -> List[ModuleSpec]:
        """Reads ``name,version`` lines into module specs."""
        pass

    @abc.abstractmethod
    async def write_module_list(self, file_path: str, modules: List[ModuleSpec]) -> None:
        """Writes module specs as ``name,version`` lines."""
        pass
