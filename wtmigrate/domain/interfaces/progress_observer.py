"""Interface for observing the progress of a producer.

Methods default to no-ops so observers override only what they need.
"""

import abc
from typing import Any


class ProducerObserver(abc.ABC):
    """Receives item, error and completion notifications from a producer."""

    def item_succeeded(self, item: Any) -> None:
        """Called when an item has been processed successfully."""
        pass

    def item_failed(self, item: Any) -> None:
        """Called when an item could not be processed."""
        pass

    def error(self, message: str) -> None:
        """Called with a human readable description of every error."""
        pass

    def done(self, producer: Any) -> None:
        """Called exactly once, when the producer has finished all work."""
        pass
