"""Interface for presenting results to the user.

Defines the contract for displaying information, errors, warnings and the
results of each command, allowing different UI implementations.
"""

import abc
from typing import Any, List, Sequence

from wtmigrate.domain.models.analysis import AnalysisResult, MigrationResult
from wtmigrate.domain.models.common import ModuleSpec
from wtmigrate.domain.models.webtask import WebtaskRecord


class UserInterface(abc.ABC):
    """Abstract Base Class for user interaction."""

    @abc.abstractmethod
    def display_output(self, output: str, **kwargs: Any) -> None:
        """Displays standard output to the user.

        Args:
            output: The string to display.
            **kwargs: Additional arguments for formatting (e.g., title).
        """
        pass

    @abc.abstractmethod
    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message to the user."""
        pass

    @abc.abstractmethod
    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        """Displays a warning message to the user."""
        pass

    @abc.abstractmethod
    def display_info(self, info_message: str, **kwargs: Any) -> None:
        """Displays an informational message to the user."""
        pass

    def display_webtasks(self, records: Sequence[WebtaskRecord]) -> None:
        """Displays a listing of webtasks."""
        pass

    def display_analysis(self, analysis: AnalysisResult, **kwargs: Any) -> None:
        """Displays the dependencies and warnings found for a webtask."""
        pass

    def display_provision_summary(
        self, available: List[ModuleSpec], failed: List[ModuleSpec], queued: List[ModuleSpec]
    ) -> None:
        """Displays the final tallies of a provisioning run."""
        pass

    def display_migration_results(self, results: Sequence[MigrationResult]) -> None:
        """Displays one line per migrated webtask."""
        pass
