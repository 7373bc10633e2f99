import hmac
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """The resolved caller. Only the user id is ever inspected."""

    id: str


class IdentityProvider(Protocol):
    async def resolve(self, credential: Optional[str]) -> Optional[Identity]:
        ...


def parse_bearer(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header value."""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        logger.info("Ignoring Authorization header with unexpected format")
        return None
    return parts[1]


class StaticTokenIdentityProvider:
    """Resolves opaque bearer tokens from a fixed token -> user id table."""

    def __init__(self, tokens: Dict[str, str]):
        self._tokens = dict(tokens)

    async def resolve(self, credential: Optional[str]) -> Optional[Identity]:
        if not credential:
            return None
        for token, user_id in self._tokens.items():
            if hmac.compare_digest(token, credential):
                return Identity(id=user_id)
        logger.info("Rejected unknown bearer token")
        return None
