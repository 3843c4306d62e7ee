"""Concrete implementation of the FileSystem interface for the local disk.

Uses `pathlib` for paths and `aiofiles` for async I/O.
"""

import logging
from pathlib import Path
from typing import List

import aiofiles

from wtmigrate.domain.interfaces.file_system import FileSystem
from wtmigrate.domain.models.common import ModuleSpec

logger = logging.getLogger(__name__)


def parse_module_list(content: str) -> List[ModuleSpec]:
    """Parses ``name,version`` lines. Blank lines, ``#`` comments and malformed lines are skipped."""
    modules: List[ModuleSpec] = []
    seen = set()
    for number, raw_line in enumerate(content.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        segments = [segment.strip() for segment in line.split(",")]
        if len(segments) != 2 or not all(segments):
            logger.warning(f"Skipping malformed module line {number}: {raw_line!r}")
            continue
        key = (segments[0], segments[1])
        if key in seen:
            continue
        seen.add(key)
        modules.append({"name": segments[0], "version": segments[1]})
    return modules


class LocalFileSystem(FileSystem):
    """Implementation of FileSystem for the local disk."""

    async def read_file(self, file_path: str) -> str:
        path = Path(file_path)
        logger.debug(f"Attempting to read file: {path}")
        if not path.is_file():
            raise FileNotFoundError(f"File not found: {file_path}")

        try:
            async with aiofiles.open(path, mode="r", encoding="utf-8") as f:
                content = await f.read()
        except PermissionError as e:
            logger.error(f"Permission denied reading file: {path}")
            raise PermissionError(f"Permission denied: {file_path}") from e
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Error reading file {path}: {e}", exc_info=True)
            raise IOError(f"Failed to read file {file_path}: {e}") from e

        logger.debug(f"Successfully read {len(content)} characters from {path}")
        return content

    async def write_file(self, file_path: str, content: str) -> None:
        path = Path(file_path)
        logger.debug(f"Attempting to write {len(content)} characters to file: {path}")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, mode="w", encoding="utf-8") as f:
                await f.write(content)
        except PermissionError as e:
            logger.error(f"Permission denied writing file: {path}")
            raise PermissionError(f"Permission denied: {file_path}") from e
        except OSError as e:
            logger.error(f"Error writing file {path}: {e}", exc_info=True)
            raise IOError(f"Failed to write file {file_path}: {e}") from e

    async def read_module_list(self, file_path: str) -> List[ModuleSpec]:
        modules = parse_module_list(await self.read_file(file_path))
        logger.info(f"Read {len(modules)} module(s) from {file_path}")
        return modules

    async def write_module_list(self, file_path: str, modules: List[ModuleSpec]) -> None:
        content = "".join(f"{module['name']},{module['version']}\n" for module in modules)
        await self.write_file(file_path, content)
