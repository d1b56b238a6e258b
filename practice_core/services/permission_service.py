"""Permission resolution and the authorization guard.

Resolution is pure and deterministic over the static tables in
core/permissions.py. Anything unknown (role, action, feature) resolves to
False; nothing in this module raises for a normal denial.

The guard (AccessGuard) is the only stateful piece: it audits every
evaluation exactly once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from practice_core.core.permissions import (
    BASE_ROUTES,
    FEATURE_ROUTES,
    PORTAL_ROUTES,
    ROLE_HIERARCHY,
    ROUTE_PERMISSIONS,
    SENSITIVE_FEATURES,
    WILDCARD_RESOURCE,
    Permission,
    get_role_permissions,
)
from practice_core.db.enums import AccessResult, Action, AuditAction, RiskLevel, Role
from practice_core.schemas.audit import AuditRecordInput
from practice_core.schemas.auth import UserContext

if TYPE_CHECKING:
    from practice_core.services.audit_service import AuditLogger


logger = logging.getLogger(__name__)

GUARD_AUDIT_RESOURCE = "access_guard"


def _coerce_role(role: Role | str | None) -> Role | None:
    if isinstance(role, Role):
        return role
    if isinstance(role, str) and Role.has_value(role):
        return Role(role)
    return None


def _coerce_action(action: Action | str | None) -> Action | None:
    if isinstance(action, Action):
        return action
    if isinstance(action, str) and Action.has_value(action):
        return Action(action)
    return None


# =============================================================================
# Resolution
# =============================================================================

def get_permissions(role: Role | str) -> tuple[Permission, ...]:
    """Resolved grant set for a role (empty for unknown roles)."""
    resolved = _coerce_role(role)
    if resolved is None:
        return ()
    return get_role_permissions(resolved)


def has_permission(role: Role | str, resource: str, action: Action | str) -> bool:
    """
    Check a (resource, action) pair against a role's grants.

    True iff the role holds (*, manage), (resource, action) or
    (resource, manage). Resources match literally; there is no prefix or
    glob matching beyond the wildcard.
    """
    resolved_action = _coerce_action(action)
    if resolved_action is None or not isinstance(resource, str) or not resource:
        return False

    for perm in get_permissions(role):
        if perm.is_wildcard:
            return True
        if perm.resource == WILDCARD_RESOURCE:
            # A wildcard paired with anything but manage grants nothing
            continue
        if perm.resource == resource and perm.action in (resolved_action, Action.MANAGE):
            return True
    return False


def has_sensitive_access(role: Role | str, feature: str) -> bool:
    """Check role membership for a sensitive feature. Unknown feature = False."""
    resolved = _coerce_role(role)
    if resolved is None:
        return False
    return resolved in SENSITIVE_FEATURES.get(feature, frozenset())


def can_manage(manager_role: Role | str, target_role: Role | str) -> bool:
    """
    True iff manager_role ranks strictly above target_role.

    For "can this role administer that role" UI checks only; never a
    substitute for has_permission.
    """
    manager = _coerce_role(manager_role)
    target = _coerce_role(target_role)
    if manager is None or target is None:
        return False
    return ROLE_HIERARCHY[manager] > ROLE_HIERARCHY[target]


def accessible_routes(role: Role | str) -> set[str]:
    """Derive the route set a role may open."""
    resolved = _coerce_role(role)
    if resolved is None:
        return set()

    if resolved in PORTAL_ROUTES:
        return set(PORTAL_ROUTES[resolved])

    routes = set(BASE_ROUTES)
    for route, (resource, action) in ROUTE_PERMISSIONS.items():
        if has_permission(resolved, resource, action):
            routes.add(route)
    for route, feature in FEATURE_ROUTES.items():
        if has_sensitive_access(resolved, feature):
            routes.add(route)
    return routes


def create_user_context(
    *,
    user_id: str,
    email: str,
    role: Role | str,
    tenant_id: str,
    display_name: str,
) -> UserContext:
    """
    Build the immutable per-session context.

    Raises:
        ValueError: role is not a known Role
    """
    resolved = _coerce_role(role)
    if resolved is None:
        raise ValueError(f"Unknown role '{role}'")
    return UserContext(
        id=user_id,
        email=email,
        role=resolved,
        tenant_id=tenant_id,
        display_name=display_name,
        permissions=get_role_permissions(resolved),
        accessible_routes=tuple(sorted(accessible_routes(resolved))),
    )


# =============================================================================
# Authorization guard
# =============================================================================

@dataclass(frozen=True)
class AccessDecision:
    """Outcome of one guard evaluation."""
    result: AccessResult
    risk_level: RiskLevel
    missing: str | None = None  # What was required but absent, for the denial surface

    @property
    def granted(self) -> bool:
        return self.result is AccessResult.GRANTED

    @property
    def detail(self) -> str:
        if self.granted:
            return "Access granted"
        return f"Access Denied: {self.missing}"


class AccessGuard:
    """
    Route/page guard: role check, then permission, then sensitive feature.

    Every evaluate() call writes exactly one audit record. Risk is high for
    any denial, low for a granted sensitive feature, medium otherwise.
    """

    def __init__(self, audit: AuditLogger | None = None):
        self._audit = audit

    def evaluate(
        self,
        user: UserContext,
        *,
        required_role: Role | str | None = None,
        required_permission: tuple[str, Action | str] | None = None,
        sensitive_feature: str | None = None,
        pathname: str | None = None,
    ) -> AccessDecision:
        decision = self._decide(user, required_role, required_permission, sensitive_feature)

        details = {
            "result": decision.result.value,
            "user_role": user.role.value,
        }
        if pathname:
            details["pathname"] = pathname
        if required_role is not None:
            details["required_role"] = str(getattr(required_role, "value", required_role))
        if required_permission is not None:
            resource, action = required_permission
            details["required_permission"] = {
                "resource": resource,
                "action": str(getattr(action, "value", action)),
            }
        if sensitive_feature is not None:
            details["sensitive_feature"] = sensitive_feature

        if decision.granted:
            logger.debug("Access granted for %s", user.role.value)
        else:
            logger.info("Access denied (%s) for role %s", decision.result.value, user.role.value)

        if self._audit is not None:
            self._audit.log(
                AuditRecordInput(
                    actor_id=user.id,
                    tenant_id=user.tenant_id,
                    action=AuditAction.VIEW,
                    resource=GUARD_AUDIT_RESOURCE,
                    details=details,
                    risk_level=decision.risk_level,
                )
            )
        return decision

    def authorize(self, user: UserContext, resource: str, action: Action | str) -> bool:
        return self.evaluate(user, required_permission=(resource, action)).granted

    def authorize_feature(self, user: UserContext, feature: str) -> bool:
        return self.evaluate(user, sensitive_feature=feature).granted

    @staticmethod
    def _decide(
        user: UserContext,
        required_role: Role | str | None,
        required_permission: tuple[str, Action | str] | None,
        sensitive_feature: str | None,
    ) -> AccessDecision:
        if required_role is not None and _coerce_role(required_role) is not user.role:
            label = getattr(required_role, "value", required_role)
            return AccessDecision(
                AccessResult.ROLE_DENIED, RiskLevel.HIGH, f"requires role '{label}'"
            )

        if required_permission is not None:
            resource, action = required_permission
            if not has_permission(user.role, resource, action):
                label = getattr(action, "value", action)
                return AccessDecision(
                    AccessResult.PERMISSION_DENIED,
                    RiskLevel.HIGH,
                    f"requires '{label}' permission on '{resource}'",
                )

        if sensitive_feature is not None:
            if not has_sensitive_access(user.role, sensitive_feature):
                return AccessDecision(
                    AccessResult.SENSITIVE_FEATURE_DENIED,
                    RiskLevel.HIGH,
                    f"requires access to sensitive feature '{sensitive_feature}'",
                )
            return AccessDecision(AccessResult.GRANTED, RiskLevel.LOW)

        return AccessDecision(AccessResult.GRANTED, RiskLevel.MEDIUM)
