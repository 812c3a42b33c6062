"""Authorization gate: pure allow/deny decisions for privileged actions.

Denial is a normal outcome returned as a :class:`Decision`, never raised.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable
from dataclasses import dataclass


@dataclass(frozen=True)
class Principal:
    user_id: str
    email: str


@dataclass(frozen=True)
class Resource:
    kind: str
    id: str
    # None for system-owned or anonymous resources; only superadmins may touch those.
    owner_id: str | None


class Action(str, enum.Enum):
    ADMIN_ACCESS = "admin:access"
    ADMIN_DELETE_USER = "admin:delete_user"
    LINK_UPDATE = "link:update"
    LINK_DELETE = "link:delete"
    PASSKEY_DELETE = "passkey:delete"


SUPERADMIN_ACTIONS = frozenset({Action.ADMIN_ACCESS, Action.ADMIN_DELETE_USER})
OWNERSHIP_ACTIONS = frozenset({Action.LINK_UPDATE, Action.LINK_DELETE, Action.PASSKEY_DELETE})


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str

    def __bool__(self) -> bool:
        return self.allowed


ALLOW_SUPERADMIN = Decision(True, "superadmin")
ALLOW_OWNER = Decision(True, "owner")


class AuthorizationGate:
    def __init__(self, superadmins: Iterable[str] = ()) -> None:
        self._superadmins = frozenset(e.strip().lower() for e in superadmins if e and e.strip())

    def is_superadmin(self, principal: Principal | None) -> bool:
        if principal is None or not principal.email:
            return False
        return principal.email.lower() in self._superadmins

    def is_authorized(
        self,
        principal: Principal | None,
        action: Action,
        resource: Resource | None = None,
    ) -> Decision:
        if principal is None:
            return Decision(False, "no_principal")
        superadmin = self.is_superadmin(principal)

        if action in SUPERADMIN_ACTIONS:
            return ALLOW_SUPERADMIN if superadmin else Decision(False, "not_superadmin")

        if action in OWNERSHIP_ACTIONS:
            if superadmin:
                return ALLOW_SUPERADMIN
            if resource is None:
                return Decision(False, "no_resource")
            if resource.owner_id is not None and resource.owner_id == principal.user_id:
                return ALLOW_OWNER
            return Decision(False, "not_owner")

        return Decision(False, "unknown_action")
