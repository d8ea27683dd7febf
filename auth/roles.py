"""
auth/roles.py -- Role/Capability registry.

Role resolution is an explicit two-step contract: take the user's role name,
then ask the registry for that role's capabilities. There is no implicit
join: a role name with no registry entry is an UnknownRole, which every
caller treats as deny.

Roles are seeded once at bootstrap (api lifespan, POST /auth/roles, or
`python main.py seed-roles`). Seeding is idempotent: an existing role is left
untouched and logged, never reported as a failure.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from auth.errors import UnknownRole
from auth.models import CREATE, DELETE, READ, UPDATE, Role, SeedResult
from auth.store import CredentialStore

logger = logging.getLogger("capgate.auth.roles")

DEFAULT_ROLES: dict[str, list[str]] = {
    "admin": [CREATE, READ, UPDATE, DELETE],
    "editor": [CREATE, READ, UPDATE],
    "user": [READ],
}


class RoleRegistry:
    """Maps role names to ordered capability tuples through a CredentialStore.

    Read-mostly after startup; holds no state of its own beyond the store.
    """

    def __init__(self, store: CredentialStore) -> None:
        self._store = store

    def seed(self, definitions: Mapping[str, Iterable[str]] = DEFAULT_ROLES) -> SeedResult:
        result = SeedResult()
        for name, capabilities in definitions.items():
            if self._store.create_role_if_absent(name, capabilities):
                result.created.append(name)
            else:
                logger.info("Role %r already exists; left unchanged", name)
                result.skipped.append(name)
        logger.info("Role seeding done (created=%d, skipped=%d)", len(result.created), len(result.skipped))
        return result

    def get(self, role_name: str) -> Role:
        """Return the registry entry for role_name. Raises UnknownRole if there is none."""
        capabilities = self._store.get_role_capabilities(role_name)
        if capabilities is None:
            logger.warning("No registry entry for role %r", role_name)
            raise UnknownRole(f"Role {role_name!r} is not registered.")
        return Role(name=role_name, capabilities=tuple(capabilities))

    def capabilities_for(self, role_name: str) -> tuple[str, ...]:
        return self.get(role_name).capabilities
