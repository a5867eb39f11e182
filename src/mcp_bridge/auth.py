"""Authentication for MCP Bridge.

Handles:
- Credential extraction from request headers
- Application password and opaque token validation
- The capability check that admits a caller to the bridge
"""

import base64
import binascii
from typing import Mapping, Optional, Sequence

from cms.base import ContentStore
from cms.users import UserDirectory
from shared.logging import get_logger
from shared.models import Principal
from mcp_bridge.errors import Unauthenticated

logger = get_logger(__name__)

# Handshake methods answered without credentials
UNAUTHENTICATED_METHODS = frozenset({
    "initialize",
    "ping",
    "notifications/initialized",
    "initialized",
})

DEFAULT_FALLBACK_HEADERS = ("X-Forwarded-Authorization", "Redirect-Authorization")


def requires_authentication(method: Optional[str]) -> bool:
    return method not in UNAUTHENTICATED_METHODS


def decode_credentials(value: str) -> Optional[tuple[str, str]]:
    """
    Split a base64 ``user:password`` value.

    Returns None when the value is not strict base64, not UTF-8, or has no
    colon, in which case callers treat it as an opaque token.
    """
    try:
        decoded = base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, ValueError):
        return None
    if ":" not in decoded:
        return None
    login, password = decoded.split(":", 1)
    return login, password


class AuthenticationResolver:
    """
    Resolves the caller of a request to a Principal.

    The chain runs X-API-Key, then Bearer, then Basic. The first branch
    producing a principal with the required capability wins. Every failure
    surfaces as the same Unauthenticated error.
    """

    def __init__(
        self,
        directory: UserDirectory,
        store: Optional[ContentStore] = None,
        required_capability: str = "edit_posts",
        fallback_headers: Sequence[str] = DEFAULT_FALLBACK_HEADERS
    ) -> None:
        self.directory = directory
        self.store = store
        self.required_capability = required_capability
        self.fallback_headers = [h.lower() for h in fallback_headers]

    def _authorization(self, headers: Mapping[str, str]) -> Optional[str]:
        value = headers.get("authorization")
        if value:
            return value
        for name in self.fallback_headers:
            value = headers.get(name)
            if value:
                logger.debug("Using fallback authorization header", header=name)
                return value
        return None

    def verify_password(self, login: str, password: str) -> Optional[Principal]:
        principal = self.directory.verify_password(login, password)
        if principal is None and self.store is not None:
            principal = self.store.verify_application_password(login, password)
        return principal

    def resolve_token(self, value: str) -> Optional[Principal]:
        """Resolve an API key or bearer token."""
        credentials = decode_credentials(value)
        if credentials is not None:
            return self.verify_password(*credentials)
        return self.directory.find_by_token(value)

    def _admitted(self, principal: Optional[Principal], scheme: str) -> Optional[Principal]:
        if principal is None:
            return None
        if not principal.can(self.required_capability):
            logger.warning(
                "Authenticated user lacks required capability",
                scheme=scheme,
                user=principal.login,
                capability=self.required_capability
            )
            return None
        logger.debug("Request authenticated", scheme=scheme, user=principal.login)
        return principal

    def resolve(self, headers: Mapping[str, str]) -> Principal:
        """
        Authenticate a request from its headers.

        Args:
            headers: Request headers; plain dicts are matched case-insensitively

        Returns:
            The authenticated principal

        Raises:
            Unauthenticated: No branch produced an admissible principal
        """
        headers = {k.lower(): v for k, v in headers.items()}

        api_key = headers.get("x-api-key")
        if api_key:
            principal = self._admitted(self.resolve_token(api_key.strip()), "api_key")
            if principal:
                return principal

        authorization = self._authorization(headers)
        if authorization:
            scheme, _, value = authorization.strip().partition(" ")
            value = value.strip()

            if scheme.lower() == "bearer" and value:
                principal = self._admitted(self.resolve_token(value), "bearer")
                if principal:
                    return principal

            elif scheme.lower() == "basic" and value:
                credentials = decode_credentials(value)
                if credentials is not None:
                    principal = self._admitted(self.verify_password(*credentials), "basic")
                    if principal:
                        return principal

        logger.info("Authentication failed")
        raise Unauthenticated()
