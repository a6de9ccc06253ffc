"""vault core

Revision ID: 0001_vault_core
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_vault_core"
down_revision = None
branch_labels = None
depends_on = None


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    op.create_table(
        "workspaces",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("plan", sa.String(), nullable=True),
        _created_at(),
    )

    op.create_table(
        "workspace_members",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("workspace_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False, server_default="member"),
        _created_at(),
        sa.UniqueConstraint("workspace_id", "user_id", name="uq_workspace_members_user"),
    )
    op.create_index("ix_workspace_members_workspace_id", "workspace_members", ["workspace_id"])
    op.create_index("ix_workspace_members_user_id", "workspace_members", ["user_id"])

    op.create_table(
        "vault_files",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("workspace_id", sa.String(), nullable=False),
        sa.Column("project_id", sa.String(), nullable=True),
        sa.Column("config_section", sa.String(), nullable=False, server_default="simple"),
        sa.Column("file_name", sa.String(), nullable=False),
        sa.Column("file_type", sa.String(), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("storage_path", sa.String(), nullable=False),
        sa.Column("is_processed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("uploaded_by", sa.String(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_vault_files_workspace_id", "vault_files", ["workspace_id"])
    op.create_index("ix_vault_files_project_id", "vault_files", ["project_id"])
    op.create_index("ix_vault_files_workspace_created", "vault_files", ["workspace_id", "created_at"])

    op.create_table(
        "vault_parsed_content",
        sa.Column("file_id", sa.String(), primary_key=True),
        sa.Column("workspace_id", sa.String(), nullable=False),
        sa.Column("content_type", sa.String(), nullable=False),
        sa.Column("structured_data", postgresql.JSONB(), nullable=True),
        sa.Column("columns_metadata", postgresql.JSONB(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("token_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("parsing_status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("parsing_error", sa.Text(), nullable=True),
        sa.Column("parsed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_vault_parsed_content_workspace_id", "vault_parsed_content", ["workspace_id"])

    op.create_table(
        "semantic_cache_entries",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("query_hash", sa.String(length=64), nullable=False),
        sa.Column("query_text", sa.Text(), nullable=False),
        sa.Column("response_content", sa.Text(), nullable=False),
        sa.Column("workspace_id", sa.String(), nullable=False),
        sa.Column("tokens_saved", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
    )
    op.create_index("ix_semantic_cache_entries_query_hash", "semantic_cache_entries", ["query_hash"])
    op.create_index("ix_semantic_cache_entries_workspace_id", "semantic_cache_entries", ["workspace_id"])
    op.create_index(
        "ix_semantic_cache_workspace_created",
        "semantic_cache_entries",
        ["workspace_id", "created_at"],
    )

    op.create_table(
        "vault_interactions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("workspace_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource_type", sa.String(), nullable=True),
        sa.Column("resource_id", sa.String(), nullable=True),
        sa.Column("request_id", sa.String(), nullable=True),
        sa.Column("metadata_json", postgresql.JSONB(), nullable=True),
        _created_at(),
    )
    # Limiter counts by (workspace, user, action, day); alerts scan by (workspace, time).
    op.create_index(
        "ix_vault_interactions_ws_user_action_created",
        "vault_interactions",
        ["workspace_id", "user_id", "action", "created_at"],
    )
    op.create_index("ix_vault_interactions_ws_created", "vault_interactions", ["workspace_id", "created_at"])

    op.create_table(
        "alert_rules",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("workspace_id", sa.String(), nullable=False),
        sa.Column("alert_type", sa.String(), nullable=False),
        sa.Column("threshold_value", sa.Float(), nullable=False),
        sa.Column("notification_channels", postgresql.JSONB(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
    )
    op.create_index("ix_alert_rules_workspace_id", "alert_rules", ["workspace_id"])

    op.create_table(
        "alert_records",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("workspace_id", sa.String(), nullable=False),
        sa.Column("alert_type", sa.String(), nullable=False),
        sa.Column("severity", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("metadata_json", postgresql.JSONB(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        _created_at(),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_alert_records_workspace_id", "alert_records", ["workspace_id"])
    op.create_index(
        "ix_alert_records_ws_type_status",
        "alert_records",
        ["workspace_id", "alert_type", "status"],
    )

    op.create_table(
        "vault_configs",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("workspace_id", sa.String(), nullable=False),
        sa.Column("config_section", sa.String(), nullable=False),
        sa.Column("completion_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("config_data", postgresql.JSONB(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("workspace_id", "config_section", name="uq_vault_configs_section"),
    )
    op.create_index("ix_vault_configs_workspace_id", "vault_configs", ["workspace_id"])

    op.create_table(
        "ab_tests",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("workspace_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("hypothesis", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=True),
        sa.Column("metrics_json", postgresql.JSONB(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_ab_tests_workspace_id", "ab_tests", ["workspace_id"])

    op.create_table(
        "analytics_exports",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("workspace_id", sa.String(), nullable=False),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("analysis_results", postgresql.JSONB(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_analytics_exports_workspace_id", "analytics_exports", ["workspace_id"])

    op.create_table(
        "knowledge_base_entries",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("workspace_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        _created_at(),
    )
    op.create_index("ix_knowledge_base_entries_workspace_id", "knowledge_base_entries", ["workspace_id"])


def downgrade() -> None:
    for table in (
        "knowledge_base_entries",
        "analytics_exports",
        "ab_tests",
        "vault_configs",
        "alert_records",
        "alert_rules",
        "vault_interactions",
        "semantic_cache_entries",
        "vault_parsed_content",
        "vault_files",
        "workspace_members",
        "workspaces",
    ):
        op.drop_table(table)
