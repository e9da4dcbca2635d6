from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import IntFlag, StrEnum

CODE_STEP = 100


class RoleScope(StrEnum):
    ORGANIZATION = "ORGANIZATION"
    ENVIRONMENT = "ENVIRONMENT"


class PermissionAction(IntFlag):
    DELETE = 1
    UPDATE = 2
    READ = 4
    CREATE = 8


ALL_ACTIONS = PermissionAction.CREATE | PermissionAction.READ | PermissionAction.UPDATE | PermissionAction.DELETE


@dataclass(frozen=True, slots=True)
class PermissionCode:
    scope: RoleScope
    name: str
    mask: int

    @property
    def key(self) -> str:
        return f"{self.scope.value}_{self.name}"


@dataclass(frozen=True, slots=True)
class RequiredPermission:
    code: PermissionCode
    actions: PermissionAction


ORGANIZATION_USER = PermissionCode(RoleScope.ORGANIZATION, "USER", 1000)
ORGANIZATION_ENVIRONMENT = PermissionCode(RoleScope.ORGANIZATION, "ENVIRONMENT", 1100)
ORGANIZATION_ROLE = PermissionCode(RoleScope.ORGANIZATION, "ROLE", 1200)
ORGANIZATION_IDENTITY_PROVIDER = PermissionCode(RoleScope.ORGANIZATION, "IDENTITY_PROVIDER", 1300)
ORGANIZATION_IDENTITY_PROVIDER_ACTIVATION = PermissionCode(
    RoleScope.ORGANIZATION, "IDENTITY_PROVIDER_ACTIVATION", 1400
)

ENVIRONMENT_INSTANCE = PermissionCode(RoleScope.ENVIRONMENT, "INSTANCE", 1000)
ENVIRONMENT_API = PermissionCode(RoleScope.ENVIRONMENT, "API", 1100)
ENVIRONMENT_APPLICATION = PermissionCode(RoleScope.ENVIRONMENT, "APPLICATION", 1200)
ENVIRONMENT_IDENTITY_PROVIDER_ACTIVATION = PermissionCode(
    RoleScope.ENVIRONMENT, "IDENTITY_PROVIDER_ACTIVATION", 1300
)


def validate_family(scope: RoleScope, codes: Iterable[PermissionCode]) -> tuple[PermissionCode, ...]:
    """Check one scope family and return it as an ordered tuple.

    Masks must be multiples of ``CODE_STEP``, unique, and increase by exactly
    one step in declaration order. Names must be unique as well.
    """
    family = tuple(codes)
    if not family:
        raise ValueError(f"empty permission family: {scope}")
    names: set[str] = set()
    previous: PermissionCode | None = None
    for code in family:
        if code.scope is not scope:
            raise ValueError(f"{code.key} declared in {scope} family")
        if code.name in names:
            raise ValueError(f"duplicate permission name: {code.key}")
        names.add(code.name)
        if code.mask <= 0 or code.mask % CODE_STEP != 0:
            raise ValueError(f"mask of {code.key} is not a multiple of {CODE_STEP}: {code.mask}")
        if previous is not None and code.mask != previous.mask + CODE_STEP:
            raise ValueError(f"mask of {code.key} does not follow {previous.key}: {code.mask}")
        previous = code
    return family


PERMISSION_CATALOG: Mapping[RoleScope, tuple[PermissionCode, ...]] = {
    RoleScope.ORGANIZATION: validate_family(
        RoleScope.ORGANIZATION,
        [
            ORGANIZATION_USER,
            ORGANIZATION_ENVIRONMENT,
            ORGANIZATION_ROLE,
            ORGANIZATION_IDENTITY_PROVIDER,
            ORGANIZATION_IDENTITY_PROVIDER_ACTIVATION,
        ],
    ),
    RoleScope.ENVIRONMENT: validate_family(
        RoleScope.ENVIRONMENT,
        [
            ENVIRONMENT_INSTANCE,
            ENVIRONMENT_API,
            ENVIRONMENT_APPLICATION,
            ENVIRONMENT_IDENTITY_PROVIDER_ACTIVATION,
        ],
    ),
}


def is_registered(code: PermissionCode) -> bool:
    return code in PERMISSION_CATALOG.get(code.scope, ())


def find_code(scope: RoleScope, name: str) -> PermissionCode:
    for code in PERMISSION_CATALOG[scope]:
        if code.name == name:
            return code
    raise LookupError(f"unknown permission: {scope}_{name}")


def encode_grant(code: PermissionCode, actions: PermissionAction) -> int:
    return code.mask + int(actions & ALL_ACTIONS)


def aggregate_grants(grants: Iterable[object]) -> dict[int, int]:
    """Fold encoded grants into ``{code mask: action bits}``.

    Grants held through several roles OR their action bits together. Values
    that are not non-negative integers are ignored.
    """
    aggregated: dict[int, int] = {}
    for grant in grants:
        if isinstance(grant, bool) or not isinstance(grant, int) or grant < 0:
            continue
        code_mask = grant - grant % CODE_STEP
        action_bits = grant % CODE_STEP & int(ALL_ACTIONS)
        aggregated[code_mask] = aggregated.get(code_mask, 0) | action_bits
    return aggregated


def has_permission(grants: Iterable[object], code: PermissionCode, actions: PermissionAction) -> bool:
    required = int(actions & ALL_ACTIONS)
    held = aggregate_grants(grants).get(code.mask)
    if held is None:
        return False
    return held & required == required
