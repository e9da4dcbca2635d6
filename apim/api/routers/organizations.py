from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response, status

from apim.api.deps import require_perm
from apim.api.errors import handle_console_error
from apim.domain.errors import ConsoleError
from apim.domain.models import (
    IdentityProviderActivationRead,
    IdentityProviderActivationRef,
    IdentityProviderCreate,
    IdentityProviderRead,
    OrganizationCreate,
    OrganizationRead,
)
from apim.domain.permissions import (
    ORGANIZATION_IDENTITY_PROVIDER,
    ORGANIZATION_IDENTITY_PROVIDER_ACTIVATION,
    PermissionAction,
)
from apim.domain.scope import CallerContext, ReferenceType
from apim.infra.audit import set_audit_context
from apim.services.identity_provider_activation_service import IdentityProviderActivationService
from apim.services.identity_provider_service import IdentityProviderService
from apim.services.organization_service import OrganizationService

router = APIRouter()


def get_organization_service() -> OrganizationService:
    return OrganizationService()


def get_identity_provider_service() -> IdentityProviderService:
    return IdentityProviderService()


def get_activation_service() -> IdentityProviderActivationService:
    return IdentityProviderActivationService()


Service = Annotated[OrganizationService, Depends(get_organization_service)]
ProviderService = Annotated[IdentityProviderService, Depends(get_identity_provider_service)]
ActivationService = Annotated[IdentityProviderActivationService, Depends(get_activation_service)]

ProviderReader = Annotated[
    CallerContext, Depends(require_perm(ORGANIZATION_IDENTITY_PROVIDER, PermissionAction.READ))
]
ProviderCreator = Annotated[
    CallerContext, Depends(require_perm(ORGANIZATION_IDENTITY_PROVIDER, PermissionAction.CREATE))
]
ProviderDeleter = Annotated[
    CallerContext, Depends(require_perm(ORGANIZATION_IDENTITY_PROVIDER, PermissionAction.DELETE))
]
ActivationReader = Annotated[
    CallerContext,
    Depends(require_perm(ORGANIZATION_IDENTITY_PROVIDER_ACTIVATION, PermissionAction.READ)),
]
ActivationWriter = Annotated[
    CallerContext,
    Depends(
        require_perm(
            ORGANIZATION_IDENTITY_PROVIDER_ACTIVATION,
            PermissionAction.CREATE | PermissionAction.UPDATE | PermissionAction.DELETE,
        )
    ),
]


@router.post("", response_model=OrganizationRead, status_code=status.HTTP_201_CREATED)
def create_organization(payload: OrganizationCreate, service: Service) -> OrganizationRead:
    try:
        organization = service.create_organization(payload)
    except ConsoleError as exc:
        handle_console_error(exc)
    return OrganizationRead.model_validate(organization)


@router.get("/{organization_id}/identities", response_model=list[IdentityProviderActivationRead])
def list_organization_identities(
    context: ActivationReader,
    service: ActivationService,
) -> list[IdentityProviderActivationRead]:
    try:
        activations = service.list_activations(context.target(ReferenceType.ORGANIZATION))
    except ConsoleError as exc:
        handle_console_error(exc)
    return sorted(activations, key=lambda item: item.identity_provider_id)


@router.put("/{organization_id}/identities", status_code=status.HTTP_204_NO_CONTENT)
def update_organization_identities(
    payload: list[IdentityProviderActivationRef],
    request: Request,
    context: ActivationWriter,
    service: ActivationService,
) -> Response:
    try:
        target = context.target(ReferenceType.ORGANIZATION)
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
        resource=f"organization:{target.reference_id}",
        detail={"what": {"activated": sorted(activated), "dropped": sorted(dropped)}},
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{organization_id}/identity-providers",
    response_model=IdentityProviderRead,
    status_code=status.HTTP_201_CREATED,
)
def create_identity_provider(
    payload: IdentityProviderCreate,
    context: ProviderCreator,
    service: ProviderService,
) -> IdentityProviderRead:
    try:
        provider = service.create_identity_provider(context.organization_id, payload, actor_id=context.user_id)
    except ConsoleError as exc:
        handle_console_error(exc)
    return IdentityProviderRead.model_validate(provider)


@router.get("/{organization_id}/identity-providers", response_model=list[IdentityProviderRead])
def list_identity_providers(context: ProviderReader, service: ProviderService) -> list[IdentityProviderRead]:
    providers = service.list_identity_providers(context.organization_id)
    return [IdentityProviderRead.model_validate(item) for item in providers]


@router.get("/{organization_id}/identity-providers/{provider_id}", response_model=IdentityProviderRead)
def get_identity_provider(provider_id: str, context: ProviderReader, service: ProviderService) -> IdentityProviderRead:
    try:
        provider = service.get_identity_provider(context.organization_id, provider_id)
    except ConsoleError as exc:
        handle_console_error(exc)
    return IdentityProviderRead.model_validate(provider)


@router.delete("/{organization_id}/identity-providers/{provider_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_identity_provider(provider_id: str, context: ProviderDeleter, service: ProviderService) -> Response:
    try:
        service.delete_identity_provider(context.organization_id, provider_id, actor_id=context.user_id)
    except ConsoleError as exc:
        handle_console_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
