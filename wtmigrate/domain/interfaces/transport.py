"""Interface for issuing single remote calls against a deployment.

Implementations perform exactly one attempt per ``issue`` call and report
transport failures inside the returned outcome instead of raising. Retries
and concurrency limits belong to the caller (the call dispatcher).
"""

import abc
from typing import Optional

from wtmigrate.domain.models.calls import CallDescriptor, CallOutcome


class CallTransport(abc.ABC):
    """Abstract Base Class for deployment transports."""

    @property
    @abc.abstractmethod
    def base_url(self) -> str:
        """The deployment base URL, without a trailing slash."""
        pass

    @abc.abstractmethod
    async def issue(self, descriptor: CallDescriptor) -> CallOutcome:
        """Performs one attempt of the described call.

        Args:
            descriptor: The fully resolved call.

        Returns:
            The observed outcome. Status 0 marks a transport failure.
        """
        pass

    @abc.abstractmethod
    def clone(self, base_url: Optional[str] = None) -> "CallTransport":
        """Returns an independent transport, optionally for another base URL."""
        pass

    async def aclose(self) -> None:
        """Releases network resources held by the transport."""
        pass
