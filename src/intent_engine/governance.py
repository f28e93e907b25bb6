"""
Governance Gate

Role/team permission matrix controlling whether auto-apply, learning writes
or execution are allowed at all. Roles are strictly ordered and permissions
are monotonic in role; a team override disabling auto-apply or learning is
an unconditional veto regardless of role or any trust score.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class Role(str, Enum):
    """Workspace role, lowest first."""

    VIEWER = "viewer"
    EDITOR = "editor"
    ADMIN = "admin"
    OWNER = "owner"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    def at_least(self, other: "Role") -> bool:
        return self.rank >= other.rank


_ROLE_RANK = {Role.VIEWER: 0, Role.EDITOR: 1, Role.ADMIN: 2, Role.OWNER: 3}


@dataclass(frozen=True)
class Permissions:
    allow_auto_apply: bool = False
    allow_learning: bool = False
    allow_execution: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {
            "allow_auto_apply": self.allow_auto_apply,
            "allow_learning": self.allow_learning,
            "allow_execution": self.allow_execution,
        }


ALL_ALLOWED = Permissions(allow_auto_apply=True, allow_learning=True, allow_execution=True)

ROLE_PERMISSIONS: Dict[Role, Permissions] = {
    Role.VIEWER: Permissions(),
    Role.EDITOR: ALL_ALLOWED,
    Role.ADMIN: ALL_ALLOWED,
    Role.OWNER: ALL_ALLOWED,
}

# Minimum role allowed to change team overrides
TEAM_MANAGER_ROLE = Role.ADMIN


@dataclass(frozen=True)
class TeamOverrides:
    auto_apply_disabled: bool = False
    learning_disabled: bool = False
    disabled_at: Optional[float] = None
    disabled_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "auto_apply_disabled": self.auto_apply_disabled,
            "learning_disabled": self.learning_disabled,
            "disabled_at": self.disabled_at,
            "disabled_by": self.disabled_by,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TeamOverrides":
        data = data or {}
        return cls(
            auto_apply_disabled=bool(data.get("auto_apply_disabled", False)),
            learning_disabled=bool(data.get("learning_disabled", False)),
            disabled_at=data.get("disabled_at"),
            disabled_by=data.get("disabled_by"),
        )


@dataclass
class GovernanceContext:
    """Supplied by the authentication/role resolver."""

    role: Role
    user_id: Optional[str] = None
    team_id: Optional[str] = None
    team_overrides: TeamOverrides = field(default_factory=TeamOverrides)
    active: bool = True


@dataclass
class GovernanceDecision:
    confirmation_required: bool
    auto_apply_allowed: bool
    learning_allowed: bool
    execution_allowed: bool
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "confirmation_required": self.confirmation_required,
            "auto_apply_allowed": self.auto_apply_allowed,
            "learning_allowed": self.learning_allowed,
            "execution_allowed": self.execution_allowed,
            "reason": self.reason,
        }


def get_permissions(role: Role, team_overrides: Optional[TeamOverrides] = None) -> Permissions:
    """
    Effective permissions for a role after team overrides.

    Args:
        role: Caller's role
        team_overrides: Team-level vetoes (None means no overrides)

    Returns:
        Permissions with vetoed capabilities switched off
    """
    base = ROLE_PERMISSIONS.get(role, Permissions())
    overrides = team_overrides or TeamOverrides()
    return Permissions(
        allow_auto_apply=base.allow_auto_apply and not overrides.auto_apply_disabled,
        allow_learning=base.allow_learning and not overrides.learning_disabled,
        allow_execution=base.allow_execution,
    )


def evaluate_governance(ctx: Optional[GovernanceContext]) -> GovernanceDecision:
    """
    Decide whether governance requires confirmation for this turn.

    Without an active governance context nothing is required and every
    capability is allowed. Otherwise confirmation is required whenever
    execution is denied or auto-apply is not allowed.
    """
    if ctx is None or not ctx.active:
        return GovernanceDecision(
            confirmation_required=False,
            auto_apply_allowed=True,
            learning_allowed=True,
            execution_allowed=True,
            reason="Governance inactive",
        )

    perms = get_permissions(ctx.role, ctx.team_overrides)

    if not perms.allow_execution:
        reason = f"Execution not permitted for role {ctx.role.value}"
    elif ctx.team_overrides.auto_apply_disabled:
        reason = "Auto-apply disabled by team"
    elif not perms.allow_auto_apply:
        reason = f"Auto-apply not permitted for role {ctx.role.value}"
    else:
        reason = "Permitted"

    decision = GovernanceDecision(
        confirmation_required=not perms.allow_execution or not perms.allow_auto_apply,
        auto_apply_allowed=perms.allow_auto_apply,
        learning_allowed=perms.allow_learning,
        execution_allowed=perms.allow_execution,
        reason=reason,
    )
    logger.debug(f"Governance: {get_governance_debug_summary(ctx)} -> {decision.reason}")
    return decision


def can_manage_team(role: Role) -> bool:
    return role.at_least(TEAM_MANAGER_ROLE)


def user_scoped_key(base_key: str, user_id: Optional[str]) -> str:
    """Storage key scoped to one user; the base key when no user is known."""
    if not user_id:
        return base_key
    return f"{base_key}:user:{user_id}"


def validate_user_access(ctx: Optional[GovernanceContext], owner_user_id: Optional[str]) -> bool:
    """Whether the caller may read data owned by ``owner_user_id``."""
    if ctx is None or not ctx.active:
        return True
    if owner_user_id is None or owner_user_id == ctx.user_id:
        return True
    return can_manage_team(ctx.role)


def get_governance_debug_summary(ctx: Optional[GovernanceContext]) -> str:
    if ctx is None or not ctx.active:
        return "Governance: off"

    perms = get_permissions(ctx.role, ctx.team_overrides)

    def mark(allowed: bool) -> str:
        return "✓" if allowed else "✗"

    summary = (
        f"Role: {ctx.role.value} | Auto: {mark(perms.allow_auto_apply)} | "
        f"Learn: {mark(perms.allow_learning)} | Exec: {mark(perms.allow_execution)}"
    )
    flags = []
    if ctx.team_overrides.auto_apply_disabled:
        flags.append("NoAuto")
    if ctx.team_overrides.learning_disabled:
        flags.append("NoLearn")
    if flags:
        summary += f" | Team:{','.join(flags)}"
    return summary
