from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum

from apim.domain.errors import AuthorizationError, InvalidScopeError
from apim.domain.permissions import PermissionAction, PermissionCode, RoleScope, has_permission


class ReferenceType(StrEnum):
    ORGANIZATION = "ORGANIZATION"
    ENVIRONMENT = "ENVIRONMENT"


@dataclass(frozen=True, slots=True)
class ActivationTarget:
    reference_id: str
    reference_type: ReferenceType


def resolve_target(scope_kind: ReferenceType | str | None, scope_id: str | None) -> ActivationTarget:
    if isinstance(scope_kind, ReferenceType):
        reference_type = scope_kind
    elif isinstance(scope_kind, str) and scope_kind.strip().upper() in ReferenceType.__members__:
        reference_type = ReferenceType[scope_kind.strip().upper()]
    else:
        raise InvalidScopeError(f"unsupported scope kind: {scope_kind!r}")
    if not isinstance(scope_id, str) or not scope_id.strip():
        raise InvalidScopeError(f"missing {reference_type.value.lower()} id")
    return ActivationTarget(reference_id=scope_id.strip(), reference_type=reference_type)


@dataclass(frozen=True, slots=True)
class CallerContext:
    """Who is calling and where, passed explicitly to every core operation."""

    organization_id: str
    user_id: str | None = None
    environment_id: str | None = None
    # ENVIRONMENT grants belong to environment_id only.
    grants: Mapping[RoleScope, tuple[int, ...]] = field(default_factory=dict)

    def can(self, code: PermissionCode, actions: PermissionAction) -> bool:
        if code.scope is RoleScope.ENVIRONMENT and self.environment_id is None:
            return False
        return has_permission(self.grants.get(code.scope, ()), code, actions)

    def authorize(self, code: PermissionCode, actions: PermissionAction) -> None:
        if not self.can(code, actions):
            raise AuthorizationError(f"missing permission: {code.key}{_action_label(actions)}")

    def target(self, reference_type: ReferenceType) -> ActivationTarget:
        if reference_type is ReferenceType.ENVIRONMENT:
            return resolve_target(reference_type, self.environment_id)
        return resolve_target(reference_type, self.organization_id)


def _action_label(actions: PermissionAction) -> str:
    names = [item.name for item in PermissionAction if item in actions and item.name]
    return f"[{','.join(names)}]"
