"""
Authorization capability.

The engines only ask "does *caller* hold *role*?". `RoleRegistry` is the
in-process implementation used for wiring and tests.
"""

from typing import Any, Dict, Protocol, Set, runtime_checkable

from .constants import DEFAULT_ADMIN_ROLE
from .exceptions import InvalidInputError, UnauthorizedError
from .logger import get_logger

logger = get_logger(__name__)


@runtime_checkable
class AccessControl(Protocol):
    def has_role(self, role: str, caller: str) -> bool:
        ...


class RoleRegistry:
    """
    Role membership table.

    Granting and revoking requires DEFAULT_ADMIN_ROLE once an admin exists.
    """

    def __init__(self, admin: str = ""):
        self._members: Dict[str, Set[str]] = {}
        if admin:
            self._members[DEFAULT_ADMIN_ROLE] = {admin}

    def has_role(self, role: str, caller: str) -> bool:
        return caller in self._members.get(role, set())

    def members(self, role: str) -> Set[str]:
        return set(self._members.get(role, set()))

    def _require_admin(self, caller: str):
        admins = self._members.get(DEFAULT_ADMIN_ROLE)
        if admins and caller not in admins:
            raise UnauthorizedError(f"{caller} is not an admin")

    def grant_role(self, caller: str, role: str, account: str):
        """Grant *role* to *account*."""
        self._require_admin(caller)
        if not role or not account:
            raise InvalidInputError("Role and account are required")
        self._members.setdefault(role, set()).add(account)
        logger.info(f"Role {role} granted to {account} by {caller}")

    def revoke_role(self, caller: str, role: str, account: str):
        self._require_admin(caller)
        self._members.get(role, set()).discard(account)
        logger.info(f"Role {role} revoked from {account} by {caller}")

    def to_dict(self) -> Dict[str, Any]:
        return {role: sorted(members) for role, members in self._members.items()}

    def __repr__(self) -> str:
        return f"<RoleRegistry roles={len(self._members)}>"
