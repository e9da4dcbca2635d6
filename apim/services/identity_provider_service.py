from __future__ import annotations

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, select

from apim.domain.errors import ConflictError, NotFoundError, PersistenceError
from apim.domain.models import IdentityProvider, IdentityProviderCreate, Organization
from apim.infra.db import get_engine
from apim.infra.events import EventBus, event_bus
from apim.services.identity_provider_activation_service import IdentityProviderActivationService

logger = structlog.get_logger(__name__)


class IdentityProviderService:
    def __init__(
        self,
        activations: IdentityProviderActivationService | None = None,
        events: EventBus | None = None,
    ) -> None:
        self._events = events or event_bus
        self._activations = activations or IdentityProviderActivationService(events=self._events)

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_scoped_provider(self, session: Session, organization_id: str, provider_id: str) -> IdentityProvider:
        provider = session.exec(
            select(IdentityProvider)
            .where(IdentityProvider.organization_id == organization_id)
            .where(IdentityProvider.id == provider_id)
        ).first()
        if provider is None:
            raise NotFoundError("identity provider not found")
        return provider

    def create_identity_provider(
        self,
        organization_id: str,
        payload: IdentityProviderCreate,
        actor_id: str | None = None,
    ) -> IdentityProvider:
        with self._session() as session:
            if session.get(Organization, organization_id) is None:
                raise NotFoundError("organization not found")
            provider = IdentityProvider(
                organization_id=organization_id,
                name=payload.name,
                type=payload.type,
                description=payload.description,
                enabled=payload.enabled,
            )
            if payload.id:
                provider.id = payload.id
            session.add(provider)
            try:
                self._events.publish_dict(
                    "identity_provider.created",
                    organization_id,
                    {"identity_provider_id": provider.id, "type": provider.type.value},
                    actor_id=actor_id,
                    session=session,
                )
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("identity provider already exists") from exc
            except SQLAlchemyError as exc:
                session.rollback()
                raise PersistenceError("failed to store identity provider") from exc
            session.refresh(provider)

        logger.info("identity_provider.created", organization_id=organization_id, identity_provider_id=provider.id)
        return provider

    def list_identity_providers(self, organization_id: str) -> list[IdentityProvider]:
        with self._session() as session:
            statement = (
                select(IdentityProvider)
                .where(IdentityProvider.organization_id == organization_id)
                .order_by(col(IdentityProvider.name))
            )
            return list(session.exec(statement).all())

    def get_identity_provider(self, organization_id: str, provider_id: str) -> IdentityProvider:
        with self._session() as session:
            return self._get_scoped_provider(session, organization_id, provider_id)

    def delete_identity_provider(self, organization_id: str, provider_id: str, actor_id: str | None = None) -> None:
        """Delete a provider together with every activation of it, or nothing at all."""
        with self._session() as session:
            try:
                provider = self._get_scoped_provider(session, organization_id, provider_id)
                self._activations.deactivate_everywhere(provider_id, session=session)
                session.delete(provider)
                self._events.publish_dict(
                    "identity_provider.deleted",
                    organization_id,
                    {"identity_provider_id": provider_id},
                    actor_id=actor_id,
                    session=session,
                )
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                raise PersistenceError("failed to delete identity provider") from exc

        logger.info("identity_provider.deleted", organization_id=organization_id, identity_provider_id=provider_id)
