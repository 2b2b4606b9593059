# Overview: Service-layer operations for permission; encapsulates role checks for core operations.

"""
Role Membership Checks

WHY: The session collaborator authenticates users and hands the core a
trusted (user_id, role) pair. The core only checks that role against the
fixed allow-list of the operation being performed.

DESIGN PRINCIPLES:
- Fail closed: unknown roles are denied everywhere
- Checks run inside services too, so in-process callers cannot skip them
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from ..permissions import ALL_ROLES
from ..validation import DomainError, ValidationError


class PermissionDeniedError(DomainError):
    """Raised when the actor's role is not in the operation's allow-list."""
    status_code = 403


@dataclass(frozen=True)
class Actor:
    """Identity supplied by the session collaborator."""
    user_id: int
    role: str

    @classmethod
    def from_values(cls, user_id, role) -> "Actor":
        try:
            parsed_id = int(str(user_id).strip())
        except (TypeError, ValueError):
            raise ValidationError("user id must be an integer")
        normalized_role = str(role or "").strip().upper()
        if normalized_role not in ALL_ROLES:
            raise ValidationError(f"Unknown role: {role!r}")
        return cls(user_id=parsed_id, role=normalized_role)


def has_role(actor: Actor | None, allowed: Iterable[str]) -> bool:
    return actor is not None and actor.role in set(allowed)


def require_role(actor: Actor | None, allowed: Iterable[str], action: str | None = None) -> Actor:
    """
    Raise PermissionDeniedError unless actor.role is in `allowed`.

    Returns the actor so callers can chain the check into an assignment.
    """
    allowed = set(allowed)
    if not has_role(actor, allowed):
        role = actor.role if actor else None
        raise PermissionDeniedError(
            f"Role {role or 'ANONYMOUS'} is not allowed to {action or 'perform this action'}",
            details={"required_roles": sorted(allowed)},
        )
    return actor
