from __future__ import annotations

from collections.abc import Generator, Iterable
from datetime import UTC, datetime
from pathlib import Path

import pytest
from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, SQLModel, create_engine

from apim.domain.errors import InvalidScopeError, NotFoundError, PersistenceError
from apim.domain.models import (
    EnvironmentUpdate,
    EventEnvelope,
    IdentityProvider,
    IdentityProviderActivationRead,
    IdentityProviderType,
    Organization,
)
from apim.domain.scope import ActivationTarget, ReferenceType, resolve_target
from apim.infra import db
from apim.infra.events import EventBus
from apim.infra.stores import SqlActivationStore, SqlEnvironmentStore
from apim.services.environment_service import EnvironmentService
from apim.services.identity_provider_activation_service import IdentityProviderActivationService
from apim.services.identity_provider_service import IdentityProviderService

STAMP = datetime(2026, 1, 1, tzinfo=UTC)


class RecordingEventBus(EventBus):
    def __init__(self) -> None:
        super().__init__()
        self.published: list[EventEnvelope] = []

    def publish(self, event: EventEnvelope, session: Session | None = None) -> None:
        self.published.append(event)


class BrokenEventBus(EventBus):
    def __init__(self, error: Exception) -> None:
        super().__init__()
        self._error = error

    def publish(self, event: EventEnvelope, session: Session | None = None) -> None:
        raise self._error


class InMemoryActivationStore:
    def __init__(self, events: EventBus) -> None:
        self.rows: dict[ActivationTarget, set[str]] = {}
        self.events = events
        self.fail_writes = False
        self.reads = 0

    def find_all_by_target(self, target: ActivationTarget) -> set[IdentityProviderActivationRead]:
        self.reads += 1
        return {
            IdentityProviderActivationRead(
                identity_provider_id=identity_provider_id,
                reference_id=target.reference_id,
                reference_type=target.reference_type,
                created_at=STAMP,
            )
            for identity_provider_id in self.rows.get(target, set())
        }

    def replace_all_for_target(
        self,
        target: ActivationTarget,
        identity_provider_ids: Iterable[str],
        event: EventEnvelope | None = None,
    ) -> None:
        if self.fail_writes:
            raise PersistenceError("store unavailable")
        staged = set(identity_provider_ids)
        if event is not None:
            self.events.publish(event)
        self.rows[target] = staged

    def delete_by_identity_provider(self, identity_provider_id: str, session: Session | None = None) -> int:
        removed = 0
        for ids in self.rows.values():
            if identity_provider_id in ids:
                ids.discard(identity_provider_id)
                removed += 1
        return removed


class InMemoryCatalog:
    def __init__(self, providers: Iterable[IdentityProvider], failing: Iterable[str] = ()) -> None:
        self._providers = {item.id: item for item in providers}
        self._failing = set(failing)

    def find_by_id(self, identity_provider_id: str) -> IdentityProvider:
        if identity_provider_id in self._failing:
            raise PersistenceError("catalog timeout")
        provider = self._providers.get(identity_provider_id)
        if provider is None:
            raise NotFoundError("identity provider not found")
        return provider


def _provider(provider_id: str, organization_id: str) -> IdentityProvider:
    return IdentityProvider(
        id=provider_id,
        organization_id=organization_id,
        name=provider_id.lower(),
        type=IdentityProviderType.OIDC,
    )


def _catalog() -> InMemoryCatalog:
    return InMemoryCatalog(
        [_provider("P1", "acme"), _provider("P2", "acme"), _provider("P3", "other"), _provider("C", "acme")],
        failing=["P-FLAKY"],
    )


@pytest.fixture()
def bus() -> RecordingEventBus:
    return RecordingEventBus()


@pytest.fixture()
def store(bus: RecordingEventBus) -> InMemoryActivationStore:
    return InMemoryActivationStore(bus)


@pytest.fixture()
def service(store: InMemoryActivationStore, bus: RecordingEventBus) -> IdentityProviderActivationService:
    return IdentityProviderActivationService(store=store, catalog=_catalog(), events=bus)


def _ids(activations: set[IdentityProviderActivationRead]) -> set[str]:
    return {item.identity_provider_id for item in activations}


ENV_X = ActivationTarget("env-x", ReferenceType.ENVIRONMENT)


def test_resolve_target_value_equality() -> None:
    first = resolve_target("environment", "env-x")
    second = resolve_target(ReferenceType.ENVIRONMENT, "env-x")
    assert first == second == ENV_X
    assert len({first, second}) == 1
    assert resolve_target("ORGANIZATION", "acme").reference_type is ReferenceType.ORGANIZATION


@pytest.mark.parametrize(
    ("scope_kind", "scope_id"),
    [("API", "env-x"), ("", "env-x"), (None, "env-x"), ("ENVIRONMENT", ""), ("ENVIRONMENT", "  "), ("ORGANIZATION", None)],
)
def test_resolve_target_rejects_bad_scope(scope_kind: str | None, scope_id: str | None) -> None:
    with pytest.raises(InvalidScopeError):
        resolve_target(scope_kind, scope_id)


def test_list_activations_is_empty_for_unknown_target(service: IdentityProviderActivationService) -> None:
    assert service.list_activations(ENV_X) == set()


def test_replace_drops_providers_of_other_organizations(
    service: IdentityProviderActivationService,
    bus: RecordingEventBus,
) -> None:
    activated, dropped = service.replace_activations(ENV_X, ["P1", "P2", "P3"], "acme")

    assert activated == {"P1", "P2"}
    assert dropped == {"P3"}
    assert _ids(service.list_activations(ENV_X)) == {"P1", "P2"}
    assert bus.published[-1].event_type == "identity_provider_activation.replaced"
    assert bus.published[-1].payload["identity_provider_ids"] == ["P1", "P2"]


def test_foreign_provider_never_stored_however_often_requested(service: IdentityProviderActivationService) -> None:
    service.replace_activations(ENV_X, ["P3", "P3", "P1", "P3"], "acme")
    assert "P3" not in _ids(service.list_activations(ENV_X))


def test_replace_is_idempotent(service: IdentityProviderActivationService) -> None:
    service.replace_activations(ENV_X, ["P1", "P2", "P1"], "acme")
    once = _ids(service.list_activations(ENV_X))
    service.replace_activations(ENV_X, ["P1", "P2", "P1"], "acme")
    assert _ids(service.list_activations(ENV_X)) == once == {"P1", "P2"}


def test_replace_with_empty_list_clears_target(service: IdentityProviderActivationService) -> None:
    service.replace_activations(ENV_X, ["P1"], "acme")
    service.replace_activations(ENV_X, [], "acme")
    assert service.list_activations(ENV_X) == set()


def test_replace_does_not_merge_with_previous_set(service: IdentityProviderActivationService) -> None:
    service.replace_activations(ENV_X, ["P1", "P2"], "acme")
    service.replace_activations(ENV_X, ["C"], "acme")
    assert _ids(service.list_activations(ENV_X)) == {"C"}


def test_replace_only_touches_its_target(service: IdentityProviderActivationService) -> None:
    organization_target = resolve_target(ReferenceType.ORGANIZATION, "acme")
    service.replace_activations(organization_target, ["P1"], "acme")
    service.replace_activations(ENV_X, ["P2"], "acme")
    assert _ids(service.list_activations(organization_target)) == {"P1"}
    assert _ids(service.list_activations(ENV_X)) == {"P2"}


def test_lookup_failures_drop_single_ids(service: IdentityProviderActivationService) -> None:
    activated, dropped = service.replace_activations(ENV_X, ["P1", "P-FLAKY", "MISSING", " ", ""], "acme")
    assert activated == {"P1"}
    assert dropped == {"P-FLAKY", "MISSING"}


def test_persistence_failure_keeps_previous_set(
    service: IdentityProviderActivationService,
    store: InMemoryActivationStore,
) -> None:
    service.replace_activations(ENV_X, ["P1"], "acme")
    store.fail_writes = True
    with pytest.raises(PersistenceError):
        service.replace_activations(ENV_X, ["P2"], "acme")
    assert _ids(service.list_activations(ENV_X)) == {"P1"}


def test_failed_event_write_keeps_previous_set(
    service: IdentityProviderActivationService,
    store: InMemoryActivationStore,
) -> None:
    service.replace_activations(ENV_X, ["P1"], "acme")
    store.events = BrokenEventBus(RuntimeError("event sink down"))
    with pytest.raises(RuntimeError):
        service.replace_activations(ENV_X, ["P2"], "acme")
    assert _ids(service.list_activations(ENV_X)) == {"P1"}


def test_deactivate_everywhere_removes_every_edge(service: IdentityProviderActivationService) -> None:
    organization_target = resolve_target(ReferenceType.ORGANIZATION, "acme")
    service.replace_activations(organization_target, ["P1", "P2"], "acme")
    service.replace_activations(ENV_X, ["P1"], "acme")

    assert service.deactivate_everywhere("P1") == 2
    assert _ids(service.list_activations(organization_target)) == {"P2"}
    assert service.list_activations(ENV_X) == set()


@pytest.fixture()
def sqlite_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[object, None, None]:
    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'activation_test.db'}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    with Session(test_engine) as session:
        session.add(Organization(id="acme", name="acme"))
        session.flush()
        session.add(_provider("P1", "acme"))
        session.add(_provider("P2", "acme"))
        session.commit()
    yield test_engine
    test_engine.dispose()


def test_sql_store_replace_is_all_or_nothing(sqlite_engine: object) -> None:
    store = SqlActivationStore()
    store.replace_all_for_target(ENV_X, ["P1"])

    # "GHOST" violates the provider foreign key, so the whole write is rolled back.
    with pytest.raises(PersistenceError):
        store.replace_all_for_target(ENV_X, ["P2", "GHOST"])

    assert _ids(store.find_all_by_target(ENV_X)) == {"P1"}


def test_sql_store_replace_swaps_full_set(sqlite_engine: object) -> None:
    store = SqlActivationStore()
    store.replace_all_for_target(ENV_X, ["P1", "P2"])
    store.replace_all_for_target(ENV_X, ["P2"])
    stored = store.find_all_by_target(ENV_X)
    assert _ids(stored) == {"P2"}
    assert {item.reference_type for item in stored} == {ReferenceType.ENVIRONMENT}
    assert store.delete_by_identity_provider("P2") == 1
    assert store.find_all_by_target(ENV_X) == set()


def _unwritable_events() -> BrokenEventBus:
    return BrokenEventBus(OperationalError("INSERT INTO events", {}, Exception("database is locked")))


def test_sql_replace_rolls_back_when_event_cannot_be_written(sqlite_engine: object) -> None:
    SqlActivationStore().replace_all_for_target(ENV_X, ["P1"])
    service = IdentityProviderActivationService(events=_unwritable_events())

    with pytest.raises(PersistenceError):
        service.replace_activations(ENV_X, ["P2"], "acme")

    assert _ids(SqlActivationStore().find_all_by_target(ENV_X)) == {"P1"}


def test_environment_write_rolls_back_when_event_cannot_be_written(sqlite_engine: object) -> None:
    environments = EnvironmentService(events=_unwritable_events())

    with pytest.raises(PersistenceError):
        environments.create_or_update("acme", "env-x", EnvironmentUpdate(name="prod"))

    with pytest.raises(NotFoundError):
        SqlEnvironmentStore().get("env-x")


def test_provider_delete_keeps_provider_and_activations_on_failure(sqlite_engine: object) -> None:
    SqlActivationStore().replace_all_for_target(ENV_X, ["P1"])
    providers = IdentityProviderService(events=_unwritable_events())

    with pytest.raises(PersistenceError):
        providers.delete_identity_provider("acme", "P1")

    assert providers.get_identity_provider("acme", "P1").id == "P1"
    assert _ids(SqlActivationStore().find_all_by_target(ENV_X)) == {"P1"}


def test_provider_delete_removes_activations_in_same_transaction(sqlite_engine: object) -> None:
    SqlActivationStore().replace_all_for_target(ENV_X, ["P1", "P2"])
    bus = RecordingEventBus()
    providers = IdentityProviderService(events=bus)

    providers.delete_identity_provider("acme", "P1")

    with pytest.raises(NotFoundError):
        providers.get_identity_provider("acme", "P1")
    assert _ids(SqlActivationStore().find_all_by_target(ENV_X)) == {"P2"}
    assert [item.event_type for item in bus.published] == ["identity_provider.deleted"]


def test_environment_delete_read_failure_is_persistence_error(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    unreachable = create_engine(f"sqlite:///{tmp_path / 'missing' / 'console.db'}")
    monkeypatch.setattr(db, "engine", unreachable)

    with pytest.raises(PersistenceError):
        SqlEnvironmentStore().delete("env-x")
