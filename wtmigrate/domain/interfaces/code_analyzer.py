"""Interface for static analysis of webtask source code."""

import abc
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class CodeEntry:
    """A finding at a position in the code (1-based line, 0-based column)."""
    value: str
    line: int
    column: int


@dataclass
class CodeAnalysis:
    """Result of analyzing one piece of code.

    ``status`` is ``'ok'`` or ``'failed'``; on failure ``message`` says why
    and the lists are empty.
    """
    status: str = "ok"
    message: Optional[str] = None
    export_function_arguments: List[str] = field(default_factory=list)
    requires: List[CodeEntry] = field(default_factory=list)
    dynamic_requires: List[CodeEntry] = field(default_factory=list)
    globals: List[CodeEntry] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.status == "failed"


class CodeAnalyzer(abc.ABC):
    """Abstract Base Class for code analyzers."""

    @abc.abstractmethod
    def analyze(self, code: str) -> CodeAnalysis:
        """Finds the modules required by ``code``.

        Args:
            code: JavaScript source.

        Returns:
            The analysis; never raises for unparsable code.
        """
        pass
