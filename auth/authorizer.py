"""
auth/authorizer.py -- Capability check over a verified identity.

Pure functions: no I/O, no side effects. Fails closed -- a missing identity or
an empty capability set denies every capability, it never means "no
restriction".
"""

from __future__ import annotations

import logging
from enum import Enum

from auth.errors import PermissionDenied
from auth.models import Identity

logger = logging.getLogger("capgate.auth.authorizer")


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"

    @property
    def allowed(self) -> bool:
        return self is Decision.ALLOW


def authorize(identity: Identity | None, capability: str) -> Decision:
    """Allow iff capability is a member of the identity's capability set."""
    if identity is None or not identity.capabilities:
        return Decision.DENY
    return Decision.ALLOW if capability in identity.capabilities else Decision.DENY


def require(identity: Identity | None, capability: str) -> Identity:
    """Return identity if it holds capability, else raise PermissionDenied."""
    if not authorize(identity, capability).allowed:
        logger.info(
            "Denied capability %r to user_id=%s",
            capability,
            identity.user_id if identity is not None else None,
        )
        raise PermissionDenied(f"Capability {capability!r} required.")
    return identity
