"""
Authentication collaborator contract. Sessions are validated upstream; this
package only reads the caller identity to tag audit entries.
"""

from typing import Dict, Mapping, Optional, Protocol

from ..util.logging import logger

ACTOR_HEADER = "X-Admin-User"


class AuthCollaborator(Protocol):
    def validate_session(self) -> bool:
        ...

    def get_auth_headers(self) -> Dict[str, str]:
        ...


class HeaderAuth:
    """Collaborator over headers already vetted by a trusted proxy."""

    def __init__(self, headers: Optional[Mapping[str, str]] = None):
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}

    def validate_session(self) -> bool:
        return bool(self.headers.get(ACTOR_HEADER.lower()))

    def get_auth_headers(self) -> Dict[str, str]:
        actor = self.headers.get(ACTOR_HEADER.lower())
        return {ACTOR_HEADER: actor} if actor else {}


def actor_tag_from(auth: Optional[AuthCollaborator]) -> Optional[str]:
    """Actor identity for audit entries; None without a valid session."""
    if auth is None:
        return None
    try:
        if not auth.validate_session():
            return None
        headers = auth.get_auth_headers() or {}
    except Exception as e:
        logger.warning(f"Auth collaborator failed, audit entry left untagged: {e}")
        return None
    for name, value in headers.items():
        if name.lower() == ACTOR_HEADER.lower() and value:
            return str(value)[:200]
    return None
