"""create registration consent schema

Revision ID: 3f1c9a2e7b40
Revises:
Create Date: 2026-10-12
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3f1c9a2e7b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _has_table(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not _has_table(inspector, "template_documents"):
        op.create_table(
            "template_documents",
            sa.Column("id", sa.String(length=64), nullable=False),
            sa.Column("title", sa.String(length=256), nullable=False),
            sa.Column("type", sa.String(length=8), nullable=False),
            sa.Column("content", sa.Text(), nullable=True),
            sa.Column("required_signer_type", sa.String(length=64), nullable=True),
            sa.Column("sign_once", sa.Boolean(), server_default=sa.text("false"), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _has_table(inspector, "events"):
        op.create_table(
            "events",
            sa.Column("id", sa.String(length=64), nullable=False),
            sa.Column("name", sa.String(length=256), nullable=False),
            sa.Column("organization_id", sa.String(length=64), nullable=True),
            sa.Column("required_template_ids", sa.JSON(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_events_organization_id", "events", ["organization_id"], unique=False)

    if not _has_table(inspector, "signed_documents"):
        op.create_table(
            "signed_documents",
            sa.Column("id", sa.String(length=64), nullable=False),
            sa.Column("template_id", sa.String(length=64), nullable=False),
            sa.Column("user_id", sa.String(length=64), nullable=False),
            sa.Column("signer_role", sa.String(length=32), nullable=False),
            sa.Column("host_id", sa.String(length=64), nullable=True),
            sa.Column("event_id", sa.String(length=64), nullable=True),
            sa.Column("organization_id", sa.String(length=64), nullable=True),
            sa.Column("status", sa.String(length=32), nullable=False),
            sa.Column("signed_document_id", sa.String(length=128), nullable=True),
            sa.Column("document_name", sa.String(length=256), nullable=True),
            sa.Column("signer_email", sa.String(length=320), nullable=True),
            sa.Column("ip_address", sa.String(length=64), nullable=True),
            sa.Column("request_id", sa.String(length=128), nullable=True),
            sa.Column("signed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_signed_documents_template_id", "signed_documents", ["template_id"], unique=False)
        op.create_index("ix_signed_documents_user_id", "signed_documents", ["user_id"], unique=False)
        op.create_index(
            "ix_signed_documents_template_user_role",
            "signed_documents",
            ["template_id", "user_id", "signer_role"],
            unique=False,
        )
        op.create_index("ix_signed_documents_host_event", "signed_documents", ["host_id", "event_id"], unique=False)

    if not _has_table(inspector, "event_registrations"):
        op.create_table(
            "event_registrations",
            sa.Column("id", sa.String(length=64), nullable=False),
            sa.Column("event_id", sa.String(length=64), nullable=False),
            sa.Column("registrant_id", sa.String(length=64), nullable=False),
            sa.Column("registrant_type", sa.String(length=8), nullable=False),
            sa.Column("parent_id", sa.String(length=64), nullable=True),
            sa.Column("status", sa.String(length=14), nullable=False),
            sa.Column("consent_status", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("event_id", "registrant_id", name="uq_event_registrations_event_registrant"),
        )
        op.create_index("ix_event_registrations_event_id", "event_registrations", ["event_id"], unique=False)
        op.create_index("ix_event_registrations_registrant_id", "event_registrations", ["registrant_id"], unique=False)
        op.create_index("ix_event_registrations_parent_id", "event_registrations", ["parent_id"], unique=False)

    if not _has_table(inspector, "parent_child_links"):
        op.create_table(
            "parent_child_links",
            sa.Column("id", sa.String(length=64), nullable=False),
            sa.Column("parent_id", sa.String(length=64), nullable=False),
            sa.Column("child_id", sa.String(length=64), nullable=False),
            sa.Column("status", sa.String(length=8), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("parent_id", "child_id", name="uq_parent_child_links_parent_child"),
        )
        op.create_index("ix_parent_child_links_parent_id", "parent_child_links", ["parent_id"], unique=False)
        op.create_index("ix_parent_child_links_child_id", "parent_child_links", ["child_id"], unique=False)

    if not _has_table(inspector, "api_keys"):
        op.create_table(
            "api_keys",
            sa.Column("id", sa.String(length=64), nullable=False),
            sa.Column("user_id", sa.String(length=64), nullable=False),
            sa.Column("is_admin", sa.Boolean(), server_default=sa.text("false"), nullable=False),
            sa.Column("key_hash", sa.String(length=128), nullable=False),
            sa.Column("label", sa.String(length=128), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("key_hash"),
        )
        op.create_index("ix_api_keys_user_id", "api_keys", ["user_id"], unique=False)


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    for table_name in (
        "api_keys",
        "parent_child_links",
        "event_registrations",
        "signed_documents",
        "events",
        "template_documents",
    ):
        if _has_table(inspector, table_name):
            op.drop_table(table_name)
