"""In-memory store of master and tenant tokens.

Accessors are coroutines so that a store backed by a secret manager can be
swapped in without touching the callers.
"""

import logging
from typing import Callable, Dict, List, Optional

from wtmigrate.core.exceptions import TokenNotFoundError, ValidationError
from wtmigrate.domain.models.token import Token

logger = logging.getLogger(__name__)

TokenListener = Callable[[Token], None]


class TokenStore:
    """Holds one optional master token and tenant tokens keyed by tenant name."""

    def __init__(self):
        self._tokens: Dict[str, Token] = {}
        self._master_token: Optional[Token] = None
        self._listeners: List[TokenListener] = []

    def on_token(self, callback: TokenListener) -> None:
        """Registers a callback invoked with every token added to the store."""
        self._listeners.append(callback)

    async def add_token(self, token: Token, tenant_name: Optional[str] = None) -> None:
        """Adds a token.

        Args:
            token: Master or tenant token. Webtask tokens are rejected.
            tenant_name: Stores the token under this name instead of its ``ten`` claim.

        Raises:
            ValidationError: For webtask tokens or a non-string tenant name.
        """
        if not isinstance(token, Token):
            raise ValidationError("token(Token) required")
        if token.is_webtask_token:
            raise ValidationError("webtask tokens can not be stored")
        if tenant_name is not None and not isinstance(tenant_name, str):
            raise ValidationError("tenant_name(string) invalid type")

        if not tenant_name and token.is_master_token:
            self._master_token = token
            logger.debug("Master token stored")
        else:
            tenant_name = tenant_name or token.tenant_name
            self._tokens[tenant_name] = token
            logger.debug(f"Tenant token stored for '{tenant_name}'")

        for listener in list(self._listeners):
            try:
                listener(token)
            except Exception as e:
                logger.error(f"Token listener failed: {e}", exc_info=True)

    async def get_master_token(self) -> Optional[Token]:
        return self._master_token

    async def get_tenant_names(self) -> List[str]:
        return list(self._tokens)

    async def get_tenant_token(self, tenant_name: str) -> Optional[Token]:
        if not isinstance(tenant_name, str):
            raise ValidationError("tenant_name(string) required")
        return self._tokens.get(tenant_name)

    async def get_token(self, tenant_name: Optional[str] = None) -> Token:
        """Returns the tenant token, falling back to the master token.

        Raises:
            TokenNotFoundError: When neither is available.
        """
        token = None
        if tenant_name:
            token = await self.get_tenant_token(tenant_name)
        if token is None:
            token = await self.get_master_token()
        if token is None:
            message = f"No tenant token with name, '{tenant_name}'." if tenant_name else "No master token."
            raise TokenNotFoundError(message)
        return token
