from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, select
from sqlmodel.sql.expression import SelectOfScalar

from apim.domain.errors import ConflictError, NotFoundError, PersistenceError
from apim.domain.models import (
    Environment,
    EventEnvelope,
    IdentityProvider,
    IdentityProviderActivation,
    IdentityProviderActivationRead,
    Organization,
    now_utc,
)
from apim.domain.scope import ActivationTarget
from apim.infra.db import get_engine
from apim.infra.events import EventBus, event_bus


class EnvironmentStore(Protocol):
    def upsert(self, environment: Environment, event: EventEnvelope | None = None) -> Environment: ...

    def get(self, environment_id: str) -> Environment: ...

    def list_by_organization(self, organization_id: str) -> list[Environment]: ...

    def delete(self, environment_id: str, event: EventEnvelope | None = None) -> None: ...


class IdentityProviderCatalog(Protocol):
    def find_by_id(self, identity_provider_id: str) -> IdentityProvider: ...


class ActivationStore(Protocol):
    def find_all_by_target(self, target: ActivationTarget) -> set[IdentityProviderActivationRead]: ...

    def replace_all_for_target(
        self,
        target: ActivationTarget,
        identity_provider_ids: Iterable[str],
        event: EventEnvelope | None = None,
    ) -> None: ...

    def delete_by_identity_provider(self, identity_provider_id: str, session: Session | None = None) -> int: ...


class _SqlStore:
    def __init__(self, events: EventBus | None = None) -> None:
        self._events = events or event_bus

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _commit(self, session: Session, event: EventEnvelope | None) -> None:
        # The event row is written in the same transaction as the change.
        if event is not None:
            self._events.publish(event, session=session)
        session.commit()


class SqlEnvironmentStore(_SqlStore):
    def upsert(self, environment: Environment, event: EventEnvelope | None = None) -> Environment:
        with self._session() as session:
            try:
                if session.get(Organization, environment.organization_id) is None:
                    raise NotFoundError("organization not found")
                stored = session.get(Environment, environment.id)
                if stored is None:
                    stored = environment
                else:
                    stored.name = environment.name
                    stored.description = environment.description
                    stored.hrids = list(environment.hrids)
                    stored.domain_restrictions = list(environment.domain_restrictions)
                    stored.updated_at = now_utc()
                session.add(stored)
                self._commit(session, event)
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("environment name already exists in organization") from exc
            except SQLAlchemyError as exc:
                session.rollback()
                raise PersistenceError("failed to store environment") from exc
            session.refresh(stored)
            return stored

    def get(self, environment_id: str) -> Environment:
        with self._session() as session:
            try:
                environment = session.get(Environment, environment_id)
            except SQLAlchemyError as exc:
                raise PersistenceError("failed to read environment") from exc
            if environment is None:
                raise NotFoundError("environment not found")
            return environment

    def list_by_organization(self, organization_id: str) -> list[Environment]:
        with self._session() as session:
            statement = (
                select(Environment)
                .where(Environment.organization_id == organization_id)
                .order_by(col(Environment.name))
            )
            try:
                return list(session.exec(statement).all())
            except SQLAlchemyError as exc:
                raise PersistenceError("failed to list environments") from exc

    def delete(self, environment_id: str, event: EventEnvelope | None = None) -> None:
        with self._session() as session:
            try:
                environment = session.get(Environment, environment_id)
                if environment is None:
                    raise NotFoundError("environment not found")
                session.delete(environment)
                self._commit(session, event)
            except SQLAlchemyError as exc:
                session.rollback()
                raise PersistenceError("failed to delete environment") from exc


class SqlIdentityProviderCatalog(_SqlStore):
    def find_by_id(self, identity_provider_id: str) -> IdentityProvider:
        with self._session() as session:
            try:
                provider = session.get(IdentityProvider, identity_provider_id)
            except SQLAlchemyError as exc:
                raise PersistenceError("failed to read identity provider") from exc
            if provider is None:
                raise NotFoundError("identity provider not found")
            return provider


def _target_rows(target: ActivationTarget) -> SelectOfScalar[IdentityProviderActivation]:
    return (
        select(IdentityProviderActivation)
        .where(IdentityProviderActivation.reference_id == target.reference_id)
        .where(IdentityProviderActivation.reference_type == target.reference_type)
    )


class SqlActivationStore(_SqlStore):
    def find_all_by_target(self, target: ActivationTarget) -> set[IdentityProviderActivationRead]:
        with self._session() as session:
            try:
                rows = session.exec(_target_rows(target)).all()
            except SQLAlchemyError as exc:
                raise PersistenceError("failed to read identity provider activations") from exc
            return {IdentityProviderActivationRead.model_validate(row) for row in rows}

    def replace_all_for_target(
        self,
        target: ActivationTarget,
        identity_provider_ids: Iterable[str],
        event: EventEnvelope | None = None,
    ) -> None:
        with self._session() as session:
            try:
                for row in session.exec(_target_rows(target)).all():
                    session.delete(row)
                session.flush()
                created_at = now_utc()
                for identity_provider_id in identity_provider_ids:
                    session.add(
                        IdentityProviderActivation(
                            identity_provider_id=identity_provider_id,
                            reference_id=target.reference_id,
                            reference_type=target.reference_type,
                            created_at=created_at,
                        )
                    )
                self._commit(session, event)
            except SQLAlchemyError as exc:
                session.rollback()
                raise PersistenceError("failed to replace identity provider activations") from exc

    def delete_by_identity_provider(self, identity_provider_id: str, session: Session | None = None) -> int:
        """Remove every activation of a provider.

        Given a ``session``, the rows are removed inside the caller's
        transaction and the caller commits.
        """
        if session is not None:
            return self._delete_by_identity_provider(session, identity_provider_id)
        with self._session() as own_session:
            try:
                removed = self._delete_by_identity_provider(own_session, identity_provider_id)
                own_session.commit()
            except SQLAlchemyError as exc:
                own_session.rollback()
                raise PersistenceError("failed to remove identity provider activations") from exc
            return removed

    def _delete_by_identity_provider(self, session: Session, identity_provider_id: str) -> int:
        rows = session.exec(
            select(IdentityProviderActivation).where(
                IdentityProviderActivation.identity_provider_id == identity_provider_id
            )
        ).all()
        for row in rows:
            session.delete(row)
        session.flush()
        return len(rows)
