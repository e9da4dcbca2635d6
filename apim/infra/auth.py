from __future__ import annotations

import os
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

from apim.domain.permissions import RoleScope

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", "60"))


def create_access_token(
    *,
    user_id: str,
    organization_id: str,
    organization_grants: Sequence[int] = (),
    environment_grants: Mapping[str, Sequence[int]] | None = None,
    expires_minutes: int | None = None,
) -> str:
    """Mint a bearer token.

    Organization grants apply to the token's organization. Environment grants
    are listed per environment id and apply to that environment only.
    """
    now = datetime.now(UTC)
    expire_delta = timedelta(minutes=expires_minutes or JWT_EXPIRES_MIN)
    payload: dict[str, Any] = {
        "sub": user_id,
        "organization_id": organization_id,
        "permissions": {
            RoleScope.ORGANIZATION.value: list(organization_grants),
            RoleScope.ENVIRONMENT.value: {
                environment_id: list(values) for environment_id, values in (environment_grants or {}).items()
            },
        },
        "iat": int(now.timestamp()),
        "exp": int((now + expire_delta).timestamp()),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    decoded = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    if not isinstance(decoded, dict):
        raise ValueError("Invalid token payload")
    if not isinstance(decoded.get("organization_id"), str):
        raise ValueError("Token carries no organization")
    return decoded


def _int_grants(values: Iterable[object]) -> tuple[int, ...]:
    return tuple(item for item in values if isinstance(item, int) and not isinstance(item, bool))


def grants_from_claims(
    claims: Mapping[str, Any],
    environment_id: str | None = None,
) -> dict[RoleScope, tuple[int, ...]]:
    """Grants in force for one request.

    ENVIRONMENT grants are taken only from the entry of ``environment_id``;
    without an environment in the request there are none.
    """
    raw = claims.get("permissions")
    if not isinstance(raw, dict):
        return {}
    grants: dict[RoleScope, tuple[int, ...]] = {}
    organization_values = raw.get(RoleScope.ORGANIZATION.value)
    if isinstance(organization_values, list):
        grants[RoleScope.ORGANIZATION] = _int_grants(organization_values)
    by_environment = raw.get(RoleScope.ENVIRONMENT.value)
    if environment_id is not None and isinstance(by_environment, dict):
        environment_values = by_environment.get(environment_id)
        if isinstance(environment_values, list):
            grants[RoleScope.ENVIRONMENT] = _int_grants(environment_values)
    return grants
