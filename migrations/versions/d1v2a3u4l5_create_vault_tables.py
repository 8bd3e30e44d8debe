"""Create vault document and access log tables.

Revision ID: d1v2a3u4l5
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "d1v2a3u4l5"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "vault_documents",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("owner_id", sa.String(128), nullable=False),
        sa.Column("grantee_id", sa.String(128), nullable=False),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("permission", sa.String(32), nullable=False),
        sa.Column("stored_blob_ref", sa.String(512), nullable=True),
        sa.Column("content_hash", sa.String(64), nullable=False),
        sa.Column("mime_category", sa.String(32), nullable=False, server_default="other"),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("content_type", sa.String(128), nullable=False, server_default="application/octet-stream"),
        sa.Column("size_bytes", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("idx_vault_documents_owner", "vault_documents", ["owner_id", "created_at"])
    op.create_index("idx_vault_documents_grantee", "vault_documents", ["grantee_id", "created_at"])

    # No foreign key: entries outlive their documents and may name unknown ids.
    op.create_table(
        "vault_access_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("document_id", sa.String(64), nullable=False),
        sa.Column("owner_id", sa.String(128), nullable=False),
        sa.Column("grantee_id", sa.String(128), nullable=False),
        sa.Column("access_type", sa.String(16), nullable=False),
        sa.Column("method", sa.String(16), nullable=False),
        sa.Column("action", sa.String(32), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("error_kind", sa.String(64), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
    )
    op.create_index("idx_access_log_document", "vault_access_log", ["document_id", "id"])
    op.create_index("idx_access_log_owner", "vault_access_log", ["owner_id", "id"])
    op.create_index("idx_access_log_grantee", "vault_access_log", ["grantee_id", "id"])


def downgrade() -> None:
    op.drop_index("idx_access_log_grantee", table_name="vault_access_log")
    op.drop_index("idx_access_log_owner", table_name="vault_access_log")
    op.drop_index("idx_access_log_document", table_name="vault_access_log")
    op.drop_table("vault_access_log")
    op.drop_index("idx_vault_documents_grantee", table_name="vault_documents")
    op.drop_index("idx_vault_documents_owner", table_name="vault_documents")
    op.drop_table("vault_documents")
