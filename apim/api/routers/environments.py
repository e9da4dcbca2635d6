from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response, status

from apim.api.deps import require_perm
from apim.api.errors import handle_console_error
from apim.domain.errors import ConsoleError
from apim.domain.models import (
    EnvironmentRead,
    EnvironmentUpdate,
    IdentityProviderActivationRead,
    IdentityProviderActivationRef,
)
from apim.domain.permissions import (
    ENVIRONMENT_IDENTITY_PROVIDER_ACTIVATION,
    ORGANIZATION_ENVIRONMENT,
    PermissionAction,
)
from apim.domain.scope import CallerContext, ReferenceType
from apim.infra.audit import set_audit_context
from apim.services.environment_service import EnvironmentService
from apim.services.identity_provider_activation_service import IdentityProviderActivationService

router = APIRouter()


def get_environment_service() -> EnvironmentService:
    return EnvironmentService()


def get_activation_service() -> IdentityProviderActivationService:
    return IdentityProviderActivationService()


Service = Annotated[EnvironmentService, Depends(get_environment_service)]
ActivationService = Annotated[IdentityProviderActivationService, Depends(get_activation_service)]

EnvironmentReader = Annotated[
    CallerContext, Depends(require_perm(ORGANIZATION_ENVIRONMENT, PermissionAction.READ))
]
EnvironmentCreator = Annotated[
    CallerContext, Depends(require_perm(ORGANIZATION_ENVIRONMENT, PermissionAction.CREATE))
]
EnvironmentDeleter = Annotated[
    CallerContext, Depends(require_perm(ORGANIZATION_ENVIRONMENT, PermissionAction.DELETE))
]
ActivationReader = Annotated[
    CallerContext,
    Depends(require_perm(ENVIRONMENT_IDENTITY_PROVIDER_ACTIVATION, PermissionAction.READ)),
]
ActivationWriter = Annotated[
    CallerContext,
    Depends(
        require_perm(
            ENVIRONMENT_IDENTITY_PROVIDER_ACTIVATION,
            PermissionAction.CREATE | PermissionAction.UPDATE | PermissionAction.DELETE,
        )
    ),
]


@router.get("", response_model=list[EnvironmentRead])
def list_environments(context: EnvironmentReader, service: Service) -> list[EnvironmentRead]:
    try:
        environments = service.list_environments(context.organization_id)
    except ConsoleError as exc:
        handle_console_error(exc)
    return [EnvironmentRead.model_validate(item) for item in environments]


@router.post("/{environment_id}", response_model=EnvironmentRead, status_code=status.HTTP_201_CREATED)
def create_environment(
    environment_id: str,
    payload: EnvironmentUpdate,
    context: EnvironmentCreator,
    service: Service,
) -> EnvironmentRead:
    try:
        environment = service.create_or_update(
            context.organization_id,
            environment_id,
            payload,
            actor_id=context.user_id,
            caller=context,
        )
    except ConsoleError as exc:
        handle_console_error(exc)
    return EnvironmentRead.model_validate(environment)


@router.get("/{environment_id}", response_model=EnvironmentRead)
def get_environment(environment_id: str, context: EnvironmentReader, service: Service) -> EnvironmentRead:
    try:
        environment = service.get_environment(context.organization_id, environment_id)
    except ConsoleError as exc:
        handle_console_error(exc)
    return EnvironmentRead.model_validate(environment)


@router.delete("/{environment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_environment(environment_id: str, context: EnvironmentDeleter, service: Service) -> Response:
    try:
        service.delete(context.organization_id, environment_id, actor_id=context.user_id)
    except ConsoleError as exc:
        handle_console_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{environment_id}/identities", response_model=list[IdentityProviderActivationRead])
def list_environment_identities(
    environment_id: str,
    context: ActivationReader,
    environments: Service,
    service: ActivationService,
) -> list[IdentityProviderActivationRead]:
    try:
        environments.get_environment(context.organization_id, environment_id)
        activations = service.list_activations(context.target(ReferenceType.ENVIRONMENT))
    except ConsoleError as exc:
        handle_console_error(exc)
    return sorted(activations, key=lambda item: item.identity_provider_id)


@router.put("/{environment_id}/identities", status_code=status.HTTP_204_NO_CONTENT)
def update_environment_identities(
    environment_id: str,
    payload: list[IdentityProviderActivationRef],
    request: Request,
    context: ActivationWriter,
    environments: Service,
    service: ActivationService,
) -> Response:
    try:
        environments.get_environment(context.organization_id, environment_id)
        target = context.target(ReferenceType.ENVIRONMENT)
        activated, dropped = service.replace_activations(
            target,
            [item.identity_provider_id for item in payload],
            context.organization_id,
            actor_id=context.user_id,
        )
    except ConsoleError as exc:
        handle_console_error(exc)
    set_audit_context(
        request,
        action="identity_provider_activation.replace",
        resource=f"environment:{target.reference_id}",
        detail={"what": {"activated": sorted(activated), "dropped": sorted(dropped)}},
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
