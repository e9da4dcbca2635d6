from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, ForeignKeyConstraint, Index, UniqueConstraint
from sqlmodel import Field, SQLModel

from apim.domain.scope import ReferenceType


def now_utc() -> datetime:
    return datetime.now(UTC)


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    organization_id: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    correlation_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    organization_id: str = Field(index=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class Organization(SQLModel, table=True):
    __tablename__ = "organizations"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True, unique=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Environment(SQLModel, table=True):
    __tablename__ = "environments"
    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_environments_organization_name"),
    )

    id: str = Field(primary_key=True)
    organization_id: str = Field(foreign_key="organizations.id", index=True)
    name: str = Field(index=True)
    description: str | None = None
    hrids: list[str] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
    domain_restrictions: list[str] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class IdentityProviderType(StrEnum):
    GRAVITEEIO_AM = "GRAVITEEIO_AM"
    GOOGLE = "GOOGLE"
    GITHUB = "GITHUB"
    OIDC = "OIDC"


class IdentityProvider(SQLModel, table=True):
    __tablename__ = "identity_providers"
    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_identity_providers_organization_name"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    organization_id: str = Field(foreign_key="organizations.id", index=True)
    name: str = Field(index=True)
    type: IdentityProviderType
    description: str | None = None
    enabled: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class IdentityProviderActivation(SQLModel, table=True):
    __tablename__ = "identity_provider_activations"
    __table_args__ = (
        ForeignKeyConstraint(
            ["identity_provider_id"],
            ["identity_providers.id"],
            ondelete="CASCADE",
        ),
        Index("ix_identity_provider_activations_target", "reference_type", "reference_id"),
    )

    identity_provider_id: str = Field(primary_key=True)
    reference_id: str = Field(primary_key=True)
    reference_type: ReferenceType = Field(primary_key=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    organization_id: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    correlation_id: str | None = None
    payload: dict[str, Any] = PydanticField(default_factory=dict)


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class OrganizationCreate(BaseModel):
    name: str


class OrganizationRead(ORMReadModel):
    id: str
    name: str
    created_at: datetime


class EnvironmentUpdate(BaseModel):
    id: str | None = None
    name: str
    description: str | None = None
    hrids: list[str] = PydanticField(default_factory=list)
    domain_restrictions: list[str] = PydanticField(default_factory=list)


class EnvironmentRead(ORMReadModel):
    id: str
    organization_id: str
    name: str
    description: str | None = None
    hrids: list[str]
    domain_restrictions: list[str]
    created_at: datetime
    updated_at: datetime


class IdentityProviderCreate(BaseModel):
    id: str | None = None
    name: str
    type: IdentityProviderType
    description: str | None = None
    enabled: bool = True


class IdentityProviderRead(ORMReadModel):
    id: str
    organization_id: str
    name: str
    type: IdentityProviderType
    description: str | None = None
    enabled: bool
    created_at: datetime


class IdentityProviderActivationRef(BaseModel):
    identity_provider_id: str


class IdentityProviderActivationRead(ORMReadModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    identity_provider_id: str
    reference_id: str
    reference_type: ReferenceType
    created_at: datetime
