from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from apim.domain.models import AuditLog, now_utc
from apim.infra.db import engine

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
UNAUDITED_PATHS = {"/healthz", "/readyz"}
AUDIT_CONTEXT_STATE_KEY = "_audit_context"
# Writes without a bearer token (organization bootstrap).
ANONYMOUS_ORGANIZATION = "system"

logger = structlog.get_logger(__name__)


def write_audit_log(entry: AuditLog) -> None:
    with Session(engine) as session:
        session.add(entry)
        session.commit()


def _merge_sections(base: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for section, value in extra.items():
        current = merged.get(section)
        if isinstance(value, dict) and isinstance(current, dict):
            merged[section] = {**current, **value}
        else:
            merged[section] = value
    return merged


def _outcome(status_code: int) -> str:
    if status_code >= 500:
        return "error"
    if status_code in {401, 403, 404}:
        return "denied"
    return "rejected" if status_code >= 400 else "success"


def set_audit_context(
    request: Request,
    *,
    action: str,
    resource: str,
    detail: dict[str, Any] | None = None,
) -> None:
    """Name the audited operation of a route and add sections to its detail."""
    setattr(
        request.state,
        AUDIT_CONTEXT_STATE_KEY,
        {"action": action, "resource": resource, "detail": detail or {}},
    )


class AuditMiddleware(BaseHTTPMiddleware):
    """Persist one audit row per write request once the response is known."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        path = request.url.path
        method = request.method
        if path in UNAUDITED_PATHS or method not in WRITE_METHODS:
            return response

        claims = getattr(request.state, "claims", {})
        organization_id = claims.get("organization_id", ANONYMOUS_ORGANIZATION)
        actor_id = claims.get("sub")
        context = getattr(request.state, AUDIT_CONTEXT_STATE_KEY, {})
        action = context.get("action", f"{method}:{path}")
        resource = context.get("resource", path)
        route = request.scope.get("route")

        detail = _merge_sections(
            {
                "who": {"organization_id": organization_id, "actor_id": actor_id},
                "when": {"request_ts": now_utc().isoformat()},
                "where": {
                    "route": getattr(route, "path", path),
                    "client_ip": request.client.host if request.client is not None else None,
                },
                "what": {"action": action, "resource": resource, "method": method},
                "result": {"status_code": response.status_code, "outcome": _outcome(response.status_code)},
            },
            context.get("detail", {}),
        )
        try:
            write_audit_log(
                AuditLog(
                    organization_id=organization_id,
                    actor_id=actor_id,
                    action=action,
                    resource=resource,
                    method=method,
                    status_code=response.status_code,
                    detail=detail,
                )
            )
        except SQLAlchemyError as exc:
            logger.error("audit.write_failed", action=action, path=path, error=str(exc))
        return response
