"""Request guard: the composition point in front of every privileged operation."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from zhort.audit.log import SecurityEventLog
from zhort.audit.models import SecurityEventKind
from zhort.auth.errors import Forbidden, Unauthenticated
from zhort.auth.gate import Action, AuthorizationGate, Principal, Resource
from zhort.auth.models import AuthSession
from zhort.auth.store import UserStore

T = TypeVar("T")


class RequestGuard:
    """Require a live session, consult the gate, then let the wrapped operation run.

    A missing session is a routine boundary check and is not logged. A gate
    denial is logged as ``privilege_denied``. Errors raised by the wrapped
    operation propagate untouched.
    """

    def __init__(
        self, gate: AuthorizationGate, users: UserStore, events: SecurityEventLog
    ) -> None:
        self.gate = gate
        self._users = users
        self._events = events

    async def authenticate(self, session: AuthSession | None) -> Principal:
        if session is None or session.is_expired():
            raise Unauthenticated("No active session")
        if (user := await self._users.get_by_id(session.user_id)) is None:
            raise Unauthenticated("No active session")
        return Principal(user_id=user.id, email=user.email)

    async def authorize(
        self,
        principal: Principal,
        action: Action,
        resource: Resource | None = None,
        **context: Any,
    ) -> None:
        decision = self.gate.is_authorized(principal, action, resource)
        if decision:
            return
        await self._events.append(
            SecurityEventKind.PRIVILEGE_DENIED,
            principal.user_id,
            action=action.value,
            reason=decision.reason,
            resource_kind=resource.kind if resource else None,
            resource_id=resource.id if resource else None,
            **context,
        )
        raise Forbidden(decision.reason)

    async def run(
        self,
        session: AuthSession | None,
        action: Action,
        operation: Callable[[Principal], Awaitable[T]],
        resource: Resource | None = None,
        **context: Any,
    ) -> T:
        principal = await self.authenticate(session)
        await self.authorize(principal, action, resource, **context)
        return await operation(principal)
