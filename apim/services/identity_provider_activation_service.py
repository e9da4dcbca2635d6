"""Binding of identity providers to an organization or environment."""

from __future__ import annotations

from collections.abc import Iterable

import structlog
from sqlmodel import Session

from apim.domain.errors import NotFoundError, PersistenceError
from apim.domain.models import IdentityProviderActivationRead
from apim.domain.scope import ActivationTarget
from apim.infra.events import EventBus, build_event, event_bus
from apim.infra.stores import (
    ActivationStore,
    IdentityProviderCatalog,
    SqlActivationStore,
    SqlIdentityProviderCatalog,
)

logger = structlog.get_logger(__name__)


class IdentityProviderActivationService:
    def __init__(
        self,
        store: ActivationStore | None = None,
        catalog: IdentityProviderCatalog | None = None,
        events: EventBus | None = None,
    ) -> None:
        self._events = events or event_bus
        self._store = store or SqlActivationStore(events=self._events)
        self._catalog = catalog or SqlIdentityProviderCatalog()

    def list_activations(self, target: ActivationTarget) -> set[IdentityProviderActivationRead]:
        return self._store.find_all_by_target(target)

    def filter_owned(self, requested_ids: Iterable[str], organization_id: str) -> tuple[list[str], list[str]]:
        """Split requested provider ids into those owned by ``organization_id`` and the rest.

        Blank ids and duplicates collapse. A provider that cannot be found,
        belongs to another organization, or fails to load lands in the dropped
        list; it never aborts the whole request.
        """
        kept: list[str] = []
        dropped: list[str] = []
        for identity_provider_id in dict.fromkeys(item.strip() for item in requested_ids if item and item.strip()):
            try:
                provider = self._catalog.find_by_id(identity_provider_id)
            except (NotFoundError, PersistenceError) as exc:
                logger.warning(
                    "identity_provider_activation.dropped",
                    identity_provider_id=identity_provider_id,
                    reason=str(exc),
                )
                dropped.append(identity_provider_id)
                continue
            if provider.organization_id != organization_id:
                logger.warning(
                    "identity_provider_activation.dropped",
                    identity_provider_id=identity_provider_id,
                    reason="foreign organization",
                )
                dropped.append(identity_provider_id)
                continue
            kept.append(identity_provider_id)
        return kept, dropped

    def replace_activations(
        self,
        target: ActivationTarget,
        requested_ids: Iterable[str],
        organization_id: str,
        actor_id: str | None = None,
    ) -> tuple[frozenset[str], frozenset[str]]:
        kept, dropped = self.filter_owned(requested_ids, organization_id)
        event = build_event(
            "identity_provider_activation.replaced",
            organization_id,
            {
                "reference_type": target.reference_type.value,
                "reference_id": target.reference_id,
                "identity_provider_ids": sorted(kept),
            },
            actor_id=actor_id,
        )
        self._store.replace_all_for_target(target, kept, event=event)
        logger.info(
            "identity_provider_activation.replaced",
            reference_type=target.reference_type.value,
            reference_id=target.reference_id,
            activated=len(kept),
            dropped=len(dropped),
        )
        return frozenset(kept), frozenset(dropped)

    def deactivate_everywhere(self, identity_provider_id: str, session: Session | None = None) -> int:
        removed = self._store.delete_by_identity_provider(identity_provider_id, session=session)
        logger.info(
            "identity_provider_activation.deactivated",
            identity_provider_id=identity_provider_id,
            removed=removed,
        )
        return removed
