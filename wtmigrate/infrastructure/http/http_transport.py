"""httpx implementation of the CallTransport interface.

Performs a single attempt per call. Network-level failures are reported as a
status-0 outcome so that the dispatcher can classify and retry them.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from wtmigrate.domain.interfaces.transport import CallTransport
from wtmigrate.domain.models.calls import CallDescriptor, CallOutcome

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class HttpTransport(CallTransport):
    """Issues deployment API calls with a shared ``httpx.AsyncClient``."""

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initializes the transport.

        Args:
            base_url: Deployment URL; a trailing slash is ignored.
            timeout: Per-request timeout in seconds.
            client: Optional pre-built client (tests inject a MockTransport here).
        """
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def base_url(self) -> str:
        return self._base_url

    def build_url(self, path: str) -> str:
        if not path:
            return self._base_url
        return f"{self._base_url}/{path.lstrip('/')}"

    def clone(self, base_url: Optional[str] = None) -> "HttpTransport":
        return HttpTransport(base_url or self._base_url, timeout=self._timeout)

    async def issue(self, descriptor: CallDescriptor) -> CallOutcome:
        url = self.build_url(descriptor.path)
        # String bodies (e.g. code sent to api/run) go out raw and come back as text.
        json_mode = descriptor.body is None or not isinstance(descriptor.body, str)

        headers: Dict[str, str] = {}
        if descriptor.token:
            headers["Authorization"] = f"Bearer {descriptor.token}"

        kwargs: Dict[str, Any] = {"headers": headers}
        if descriptor.body is not None:
            if json_mode:
                kwargs["json"] = descriptor.body
            else:
                kwargs["content"] = descriptor.body.encode("utf-8")
                headers["Content-Type"] = "text/plain; charset=utf-8"

        logger.debug(f"{descriptor.method} {url}")
        try:
            response = await self._get_client().request(descriptor.method, url, **kwargs)
        except httpx.TransportError as e:
            logger.warning(f"Transport error for {descriptor.method} {url}: {type(e).__name__}: {e}")
            return CallOutcome(status=0, transport_error=e)

        return CallOutcome(status=response.status_code, body=self._decode(response, json_mode))

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    @staticmethod
    def _decode(response: httpx.Response, json_mode: bool) -> Any:
        if not response.content:
            return None
        if not json_mode:
            return response.text
        try:
            return response.json()
        except ValueError:
            return response.text
