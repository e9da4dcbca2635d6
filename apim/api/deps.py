from __future__ import annotations

from collections.abc import Callable
from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from apim.domain.errors import AuthorizationError
from apim.domain.permissions import PermissionAction, PermissionCode, RequiredPermission, is_registered
from apim.domain.scope import CallerContext
from apim.infra.auth import decode_access_token, grants_from_claims

bearer_scheme = HTTPBearer()


def get_current_claims(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> dict[str, Any]:
    try:
        claims = decode_access_token(credentials.credentials)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc
    request.state.claims = claims
    return claims


def get_caller_context(
    request: Request,
    claims: Annotated[dict[str, Any], Depends(get_current_claims)],
) -> CallerContext:
    organization_id = claims["organization_id"]
    path_organization_id = request.path_params.get("organization_id")
    if path_organization_id is not None and path_organization_id != organization_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="organization not found")
    environment_id = request.path_params.get("environment_id")
    return CallerContext(
        organization_id=organization_id,
        user_id=claims.get("sub"),
        environment_id=environment_id,
        grants=grants_from_claims(claims, environment_id),
    )


def require_perm(code: PermissionCode, actions: PermissionAction) -> Callable[[CallerContext], CallerContext]:
    if not is_registered(code):
        raise LookupError(f"unregistered permission: {code.key}")
    required = RequiredPermission(code=code, actions=actions)

    def _checker(
        context: Annotated[CallerContext, Depends(get_caller_context)],
    ) -> CallerContext:
        try:
            context.authorize(required.code, required.actions)
        except AuthorizationError as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
        return context

    return _checker
