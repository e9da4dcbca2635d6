"""organizations, environments and identity provider activations

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610190001"
down_revision = None
branch_labels = None
depends_on = None

REFERENCE_TYPE = sa.Enum("ORGANIZATION", "ENVIRONMENT", name="referencetype")
IDENTITY_PROVIDER_TYPE = sa.Enum("GRAVITEEIO_AM", "GOOGLE", "GITHUB", "OIDC", name="identityprovidertype")


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_index("ix_organizations_name", "organizations", ["name"])
    op.create_index("ix_organizations_created_at", "organizations", ["created_at"])

    op.create_table(
        "environments",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("hrids", sa.JSON(), nullable=False),
        sa.Column("domain_restrictions", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("organization_id", "name", name="uq_environments_organization_name"),
    )
    op.create_index("ix_environments_organization_id", "environments", ["organization_id"])
    op.create_index("ix_environments_name", "environments", ["name"])
    op.create_index("ix_environments_created_at", "environments", ["created_at"])
    op.create_index("ix_environments_updated_at", "environments", ["updated_at"])

    op.create_table(
        "identity_providers",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("type", IDENTITY_PROVIDER_TYPE, nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("organization_id", "name", name="uq_identity_providers_organization_name"),
    )
    op.create_index("ix_identity_providers_organization_id", "identity_providers", ["organization_id"])
    op.create_index("ix_identity_providers_name", "identity_providers", ["name"])
    op.create_index("ix_identity_providers_created_at", "identity_providers", ["created_at"])

    op.create_table(
        "identity_provider_activations",
        sa.Column("identity_provider_id", sa.String(), nullable=False),
        sa.Column("reference_id", sa.String(), nullable=False),
        sa.Column("reference_type", REFERENCE_TYPE, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["identity_provider_id"], ["identity_providers.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("identity_provider_id", "reference_id", "reference_type"),
    )
    op.create_index(
        "ix_identity_provider_activations_target",
        "identity_provider_activations",
        ["reference_type", "reference_id"],
    )
    op.create_index(
        "ix_identity_provider_activations_created_at",
        "identity_provider_activations",
        ["created_at"],
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource", sa.String(), nullable=False),
        sa.Column("method", sa.String(), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("detail", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_organization_id", "audit_logs", ["organization_id"])
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_ts", "audit_logs", ["ts"])

    op.create_table(
        "events",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("correlation_id", sa.String(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index("ix_events_event_type", "events", ["event_type"])
    op.create_index("ix_events_organization_id", "events", ["organization_id"])
    op.create_index("ix_events_ts", "events", ["ts"])
    op.create_index("ix_events_actor_id", "events", ["actor_id"])
    op.create_index("ix_events_correlation_id", "events", ["correlation_id"])


def downgrade() -> None:
    op.drop_table("events")
    op.drop_table("audit_logs")
    op.drop_table("identity_provider_activations")
    op.drop_table("identity_providers")
    op.drop_table("environments")
    op.drop_table("organizations")
    IDENTITY_PROVIDER_TYPE.drop(op.get_bind(), checkfirst=True)
    REFERENCE_TYPE.drop(op.get_bind(), checkfirst=True)
