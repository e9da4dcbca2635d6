from __future__ import annotations

import structlog

from apim.domain.errors import ConflictError, NotFoundError
from apim.domain.models import Environment, EnvironmentUpdate
from apim.domain.permissions import ORGANIZATION_ENVIRONMENT, PermissionAction
from apim.domain.scope import CallerContext
from apim.infra.events import EventBus, build_event, event_bus
from apim.infra.stores import EnvironmentStore, SqlEnvironmentStore

logger = structlog.get_logger(__name__)


class EnvironmentService:
    def __init__(self, store: EnvironmentStore | None = None, events: EventBus | None = None) -> None:
        self._events = events or event_bus
        self._store = store or SqlEnvironmentStore(events=self._events)

    def _find_scoped(self, organization_id: str, environment_id: str) -> Environment | None:
        try:
            environment = self._store.get(environment_id)
        except NotFoundError:
            return None
        if environment.organization_id != organization_id:
            raise NotFoundError("environment not found")
        return environment

    def create_or_update(
        self,
        organization_id: str,
        environment_id: str,
        payload: EnvironmentUpdate,
        actor_id: str | None = None,
        caller: CallerContext | None = None,
    ) -> Environment:
        """Store the environment under ``environment_id``, whatever id the payload carries.

        When ``caller`` is given, overwriting an existing environment also
        requires ORGANIZATION_ENVIRONMENT[UPDATE].
        """
        try:
            existing = self._find_scoped(organization_id, environment_id)
        except NotFoundError as exc:
            raise ConflictError("environment id is used by another organization") from exc
        if existing is not None and caller is not None:
            caller.authorize(ORGANIZATION_ENVIRONMENT, PermissionAction.UPDATE)

        event_type = "environment.updated" if existing is not None else "environment.created"
        environment = self._store.upsert(
            Environment(
                id=environment_id,
                organization_id=organization_id,
                name=payload.name,
                description=payload.description,
                hrids=list(payload.hrids),
                domain_restrictions=list(payload.domain_restrictions),
            ),
            event=build_event(
                event_type,
                organization_id,
                {"environment_id": environment_id, "name": payload.name},
                actor_id=actor_id,
            ),
        )
        logger.info(event_type, organization_id=organization_id, environment_id=environment.id)
        return environment

    def get_environment(self, organization_id: str, environment_id: str) -> Environment:
        environment = self._find_scoped(organization_id, environment_id)
        if environment is None:
            raise NotFoundError("environment not found")
        return environment

    def list_environments(self, organization_id: str) -> list[Environment]:
        return self._store.list_by_organization(organization_id)

    def delete(self, organization_id: str, environment_id: str, actor_id: str | None = None) -> None:
        self.get_environment(organization_id, environment_id)
        # TODO: remove identity provider activations, APIs and applications bound to the environment.
        self._store.delete(
            environment_id,
            event=build_event(
                "environment.deleted",
                organization_id,
                {"environment_id": environment_id},
                actor_id=actor_id,
            ),
        )
        logger.info("environment.deleted", organization_id=organization_id, environment_id=environment_id)
