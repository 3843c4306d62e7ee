"""Facade over a deployment's HTTP API.

Every remote call goes through the deployment's ``CallDispatcher`` and is
therefore bounded and retried. Remote failures are re-raised as
``DeploymentError`` naming the operation that failed.
"""

import asyncio
import copy
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional
from urllib.parse import quote

from wtmigrate.core.exceptions import DeploymentError, RemoteError, ValidationError
from wtmigrate.core.token_store import TokenStore
from wtmigrate.domain.models.calls import ABSENT, is_absent
from wtmigrate.domain.models.common import Claims, ModuleSpec, ModuleState, WebtaskInfo, validate_modules
from wtmigrate.domain.models.token import Token
from wtmigrate.domain.models.webtask import Webtask
from wtmigrate.infrastructure.http.http_transport import HttpTransport
from wtmigrate.infrastructure.resilience.call_dispatcher import CallDispatcher
from wtmigrate.infrastructure.resilience.retry_policy import RetryPolicy
from wtmigrate.infrastructure.resilience.work_queue import DEFAULT_MAX_CONCURRENT

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 100
MAX_MODULES = 50


def _segment(value: str) -> str:
    return quote(value, safe="")


def _require_str(value: Any, label: str) -> None:
    if not isinstance(value, str):
        raise ValidationError(f"{label}(string) required")


@asynccontextmanager
async def _failure_context(action: str) -> AsyncIterator[None]:
    try:
        yield
    except RemoteError as e:
        raise DeploymentError(f"Failed to {action} due to the following error: {e}") from e


class Deployment:
    """A remote webtask deployment addressed through a token store and a dispatcher."""

    def __init__(self, token_store: TokenStore, dispatcher: CallDispatcher):
        if not isinstance(token_store, TokenStore):
            raise ValidationError("token_store(TokenStore) required")
        if not isinstance(dispatcher, CallDispatcher):
            raise ValidationError("dispatcher(CallDispatcher) required")
        self.token_store = token_store
        self.dispatcher = dispatcher

    @classmethod
    def from_url(
        cls,
        token_store: TokenStore,
        url: str,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        policy: Optional[RetryPolicy] = None,
    ) -> "Deployment":
        _require_str(url, "deployment_url")
        dispatcher = CallDispatcher(HttpTransport(url), max_concurrent=max_concurrent, policy=policy)
        return cls(token_store, dispatcher)

    @property
    def deployment_url(self) -> str:
        return self.dispatcher.base_url

    async def aclose(self) -> None:
        await self.dispatcher.aclose()

    async def _request(self, method: str, path: str, token: Optional[Token], body: Any = None) -> Any:
        return await self.dispatcher.request(method, path, token=token.encoded if token else None, body=body)

    # --- Tenants ---

    async def create_tenant(self, tenant_name: str, claims: Optional[Claims] = None) -> Token:
        """Issues a tenant token with the master token and adds it to the store."""
        _require_str(tenant_name, "tenant_name")
        if claims is not None and not isinstance(claims, dict):
            raise ValidationError("claims(object) invalid type")

        body = copy.deepcopy(claims or {})
        body["ten"] = tenant_name
        master_token = await self.token_store.get_master_token()

        async with _failure_context("create the tenant"):
            token_string = await self._request("POST", "api/tokens/issue", master_token, body)

        tenant_token = Token(token_string)
        await self.token_store.add_token(tenant_token)
        logger.info(f"Created tenant '{tenant_name}' on {self.deployment_url}")
        return tenant_token

    # --- Webtasks ---

    async def upload_webtask(
        self,
        tenant_name: str,
        webtask_name: str,
        webtask: Webtask,
        *,
        ignore_claims: bool = False,
        overwrite_storage: bool = False,
        cron_only: bool = False,
    ) -> None:
        """Creates or replaces a webtask, then its storage data and cron job."""
        _require_str(tenant_name, "tenant_name")
        _require_str(webtask_name, "webtask_name")
        if not isinstance(webtask, Webtask):
            raise ValidationError("webtask(Webtask) required")

        token = await self.token_store.get_token(tenant_name)

        if not cron_only:
            await self._upload_code(tenant_name, webtask_name, token, webtask, ignore_claims)
            await self._upload_storage(tenant_name, webtask_name, token, webtask, overwrite_storage)
        await self._upload_cron(tenant_name, webtask_name, token, webtask)
        logger.debug(f"Uploaded webtask {tenant_name}/{webtask_name}")

    async def _upload_code(
        self, tenant_name: str, webtask_name: str, token: Token, webtask: Webtask, ignore_claims: bool
    ) -> None:
        claims = webtask.claims
        secrets = webtask.secrets
        if ignore_claims or not claims:
            method = "PUT"
            path = f"api/webtask/{_segment(tenant_name)}/{_segment(webtask_name)}"
            body: Dict[str, Any] = {"secrets": secrets}
        else:
            # Claims can only be carried over by issuing a new webtask token.
            method = "POST"
            path = "api/tokens/issue"
            body = dict(claims)
            body["jtn"] = webtask_name
            body["ten"] = tenant_name
            body["ectx"] = secrets

        if webtask.code_url:
            body["url"] = webtask.code_url
        else:
            body["code"] = webtask.code
        body["meta"] = webtask.meta
        if webtask.host:
            body["host"] = webtask.host

        async with _failure_context("upload the webtask"):
            await self._request(method, path, token, body)

    async def _upload_storage(
        self, tenant_name: str, webtask_name: str, token: Token, webtask: Webtask, overwrite: bool
    ) -> None:
        data = webtask.storage_data
        if not data:
            return
        body: Dict[str, Any] = {"data": data}
        if not overwrite:
            body["etag"] = webtask.storage_etag
        path = f"api/webtask/{_segment(tenant_name)}/{_segment(webtask_name)}/data"
        async with _failure_context("upload the storage data to the webtask"):
            await self._request("PUT", path, token, body)

    async def _upload_cron(self, tenant_name: str, webtask_name: str, token: Token, webtask: Webtask) -> None:
        cron = webtask.cron
        if not cron:
            return
        body = {key: cron.get(key) for key in ("tz", "meta", "schedule", "state")}
        path = f"api/cron/{_segment(tenant_name)}/{_segment(webtask_name)}"
        async with _failure_context("create the CRON job"):
            await self._request("PUT", path, token, body)

    async def download_webtask(
        self,
        tenant_name: str,
        webtask_name: str,
        *,
        include_secrets: bool = False,
        include_storage: bool = False,
        include_cron: bool = False,
    ) -> Optional[Webtask]:
        """Downloads a webtask with its optional storage and cron job.

        Returns:
            The webtask, or ``None`` when it does not exist.
        """
        _require_str(tenant_name, "tenant_name")
        _require_str(webtask_name, "webtask_name")

        token = await self.token_store.get_token(tenant_name)
        path = f"{_segment(tenant_name)}/{_segment(webtask_name)}"
        webtask_path = f"api/webtask/{path}"
        query = f"?decrypt={'true' if include_secrets else 'false'}&fetch_code=true"

        requests = [self._request("GET", f"{webtask_path}{query}", token)]
        if include_storage:
            requests.append(self._request("GET", f"{webtask_path}/data", token))
        if include_cron:
            requests.append(self._request("GET", f"api/cron/{path}", token))

        async with _failure_context("download the webtask"):
            results = list(await asyncio.gather(*requests))

        payload = results.pop(0)
        if is_absent(payload) or not payload:
            return None

        storage = results.pop(0) if include_storage else ABSENT
        cron = results.pop(0) if include_cron else ABSENT
        token_string = payload.get("token")

        return Webtask(
            payload.get("code") or "",
            meta=payload.get("meta") or {},
            secrets=payload.get("secrets") or {},
            storage=storage if isinstance(storage, dict) else {},
            cron=cron if isinstance(cron, dict) else {},
            token=Token(token_string) if token_string else None,
        )

    async def list_webtasks(
        self, tenant_name: Optional[str] = None, *, offset: int = 0, limit: int = MAX_LIST_LIMIT
    ) -> List[WebtaskInfo]:
        """Lists one page of webtasks, for a tenant or for the whole deployment."""
        if tenant_name is not None:
            _require_str(tenant_name, "tenant_name")
        limit = limit or MAX_LIST_LIMIT
        if limit > MAX_LIST_LIMIT:
            raise ValidationError(f"limit(number) max value is {MAX_LIST_LIMIT}")

        token = await self.token_store.get_token(tenant_name)
        path = f"api/webtask/{_segment(tenant_name)}" if tenant_name else "api/webtask"

        async with _failure_context("download the list of webtasks"):
            webtasks = await self._request("GET", f"{path}?offset={offset}&limit={limit}", token)

        if is_absent(webtasks) or not webtasks:
            return []
        return [{"tenant_name": item.get("container"), "webtask_name": item.get("name")} for item in webtasks]

    async def delete_webtask(self, tenant_name: str, webtask_name: str) -> None:
        _require_str(tenant_name, "tenant_name")
        _require_str(webtask_name, "webtask_name")

        token = await self.token_store.get_token(tenant_name)
        path = f"api/webtask/{_segment(tenant_name)}/{_segment(webtask_name)}"
        async with _failure_context("delete the webtask"):
            await self._request("DELETE", path, token)

    # --- Modules and code ---

    async def provision_modules(
        self, modules: List[ModuleSpec], tenant_name: Optional[str] = None
    ) -> List[ModuleState]:
        """Submits up to ``MAX_MODULES`` modules for provisioning.

        Returns:
            The state reported for each submitted module.
        """
        validate_modules(modules)
        if len(modules) > MAX_MODULES:
            raise ValidationError(f"modules.length max value is {MAX_MODULES}")
        if tenant_name is not None and not isinstance(tenant_name, str):
            raise ValidationError("tenant_name(string) invalid type")

        token = await self.token_store.get_token(tenant_name)
        async with _failure_context("provision the modules"):
            result = await self._request("POST", "api/env/node/modules", token, {"modules": modules})
        return result if isinstance(result, list) else []

    async def run_code(self, container: str, code: str, token: Optional[Token] = None) -> Any:
        """Runs ``code`` in ``container`` and returns the raw response text."""
        _require_str(container, "container")
        _require_str(code, "code")

        token = token or await self.token_store.get_token(container)
        async with _failure_context("run the code"):
            return await self._request("POST", f"api/run/{_segment(container)}", token, code)
