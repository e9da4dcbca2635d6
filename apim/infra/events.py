from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from typing import Any

import structlog
from sqlmodel import Session

from apim.domain.models import EventEnvelope, EventRecord
from apim.infra.db import engine

EventHandler = Callable[[EventEnvelope], None]

logger = structlog.get_logger(__name__)


def build_event(
    event_type: str,
    organization_id: str,
    payload: dict[str, Any],
    *,
    actor_id: str | None = None,
) -> EventEnvelope:
    return EventEnvelope(
        event_type=event_type,
        organization_id=organization_id,
        actor_id=actor_id,
        payload=payload,
    )


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        if handler in self._subscribers.get(event_type, []):
            self._subscribers[event_type].remove(handler)

    def publish(self, event: EventEnvelope, session: Session | None = None) -> None:
        """Store ``event`` and notify subscribers.

        With ``session`` the record joins the caller's transaction and is
        committed (or rolled back) together with the change it describes.
        """
        should_commit = session is None
        if session is None:
            session = Session(engine)
        try:
            session.add(EventRecord(**event.model_dump()))
            if should_commit:
                session.commit()
        finally:
            if should_commit:
                session.close()
        logger.info(
            "event.published",
            event_type=event.event_type,
            organization_id=event.organization_id,
            event_id=event.event_id,
        )

        handlers = [*self._subscribers.get(event.event_type, []), *self._subscribers.get("*", [])]
        for handler in handlers:
            handler(event)

    def publish_dict(
        self,
        event_type: str,
        organization_id: str,
        payload: dict[str, Any],
        *,
        actor_id: str | None = None,
        session: Session | None = None,
    ) -> EventEnvelope:
        event = build_event(event_type, organization_id, payload, actor_id=actor_id)
        self.publish(event, session=session)
        return event


event_bus = EventBus()
