"""Token value object.

Wraps an encoded JWT issued by a deployment. Claims are decoded without
signature verification; the deployment is the party that verifies them.
"""

import copy
from typing import Any, Dict, Optional

from jose import jwt
from jose.exceptions import JOSEError

from wtmigrate.core.exceptions import ValidationError
from wtmigrate.domain.models.common import Claims

# Claims that the deployment sets itself and that are never re-issued.
_SYSTEM_CLAIMS = ("jti", "iat", "ca", "dd", "dr", "ten", "jtn", "url", "ectx", "host")


class Token:
    """Master, tenant or webtask token."""

    def __init__(self, token_string: str, tenant_name: Optional[str] = None):
        if not isinstance(token_string, str):
            raise ValidationError("token_string(string) required")
        try:
            claims = jwt.get_unverified_claims(token_string)
        except JOSEError as e:
            raise ValidationError(f"Invalid token: {e}") from e

        self._claims: Claims = dict(claims)
        self._encoded = token_string
        self._tenant_name = tenant_name or self._claims.get("ten") or ""

    def __repr__(self) -> str:
        kind = "master" if self.is_master_token else "webtask" if self.is_webtask_token else "tenant"
        return f"Token(kind={kind}, tenant={self._tenant_name!r})"

    @property
    def is_master_token(self) -> bool:
        return not self._claims.get("ten")

    @property
    def is_tenant_token(self) -> bool:
        return bool(self._claims.get("ten"))

    @property
    def is_webtask_token(self) -> bool:
        return self.is_tenant_token and self._claims.get("dd") == 0

    @property
    def all_claims(self) -> Claims:
        return copy.deepcopy(self._claims)

    @property
    def webtask_claims(self) -> Claims:
        """Claims that must be carried over when re-issuing the webtask token."""
        omit = set(_SYSTEM_CLAIMS)
        if self._claims.get("pb") == 2:
            omit.add("pb")
        if self._claims.get("mb") == 0:
            omit.add("mb")
        return {key: copy.deepcopy(value) for key, value in self._claims.items() if key not in omit}

    @property
    def tenant_name(self) -> str:
        return self._tenant_name

    @property
    def webtask_name(self) -> str:
        return self._claims.get("jtn") or ""

    @property
    def encoded(self) -> str:
        return self._encoded

    def state(self) -> Dict[str, Any]:
        state = {"token_string": self._encoded}
        if self._tenant_name:
            state["tenant_name"] = self._tenant_name
        return state
