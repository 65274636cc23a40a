"""Initial agent work store schema."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261016_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "projects",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("slug", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("brief", sa.Text(), nullable=True),
        sa.Column("repo_full_name", sa.String(), nullable=True),
        sa.Column("repo_default_branch", sa.String(), nullable=False, server_default="main"),
        sa.Column("github_token_ref", sa.String(), nullable=True),
        sa.Column("webhook_secret", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_projects_slug", "projects", ["slug"], unique=True)
    op.create_index("ix_projects_repo_full_name", "projects", ["repo_full_name"])
    op.create_index(
        "ix_projects_webhook_secret_present",
        "projects",
        ["id"],
        sqlite_where=sa.text("webhook_secret IS NOT NULL"),
        postgresql_where=sa.text("webhook_secret IS NOT NULL"),
    )

    op.create_table(
        "agents",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("key", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=True),
        sa.Column("capabilities", sa.JSON(), nullable=False),
        sa.Column("max_concurrency", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_agents_key", "agents", ["key"], unique=True)
    op.create_index("ix_agents_enabled", "agents", ["enabled"])

    op.create_table(
        "work_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("work_type", sa.String(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("assigned_agent_id", sa.Integer(), nullable=True),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("locked_by_agent_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["assigned_agent_id"], ["agents.id"]),
        sa.ForeignKeyConstraint(["locked_by_agent_id"], ["agents.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_work_items_project_id", "work_items", ["project_id"])
    op.create_index("ix_work_items_work_type", "work_items", ["work_type"])
    op.create_index("ix_work_items_status", "work_items", ["status"])
    op.create_index("ix_work_items_assigned_agent_id", "work_items", ["assigned_agent_id"])
    op.create_index("ix_work_items_locked_by_agent_id", "work_items", ["locked_by_agent_id"])
    op.create_index(
        "ix_work_items_status_priority_locked",
        "work_items",
        ["status", "priority", "locked_at"],
    )
    op.create_index(
        "ix_work_items_project_work_type",
        "work_items",
        ["project_id", "work_type"],
    )

    op.create_table(
        "runs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("agent_id", sa.Integer(), nullable=False),
        sa.Column("work_item_id", sa.Integer(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("outcome", sa.String(), nullable=True),
        sa.Column("idempotency_key", sa.String(), nullable=True),
        sa.Column("logs", sa.Text(), nullable=True),
        sa.Column("logs_url", sa.String(), nullable=True),
        sa.Column("artifacts_url", sa.String(), nullable=True),
        sa.Column("github_pr_number", sa.Integer(), nullable=True),
        sa.Column("github_pr_head_sha", sa.String(), nullable=True),
        sa.Column("github_check_suite_id", sa.Integer(), nullable=True),
        sa.Column("costs", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["agent_id"], ["agents.id"]),
        sa.ForeignKeyConstraint(["work_item_id"], ["work_items.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_runs_agent_id", "runs", ["agent_id"])
    op.create_index("ix_runs_work_item_id", "runs", ["work_item_id"])
    op.create_index("ix_runs_outcome", "runs", ["outcome"])
    op.create_index("ix_runs_github_pr_number", "runs", ["github_pr_number"])
    op.create_index("ix_runs_github_pr_head_sha", "runs", ["github_pr_head_sha"])
    op.create_index("ix_runs_github_check_suite_id", "runs", ["github_check_suite_id"])
    op.create_index("ix_runs_work_item_started", "runs", ["work_item_id", "started_at"])
    op.create_index(
        "uq_runs_idempotency_key",
        "runs",
        ["idempotency_key"],
        unique=True,
        sqlite_where=sa.text("idempotency_key IS NOT NULL"),
        postgresql_where=sa.text("idempotency_key IS NOT NULL"),
    )

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=True),
        sa.Column("delivery_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_webhook_events_project_id", "webhook_events", ["project_id"])
    op.create_index("ix_webhook_events_delivery_id", "webhook_events", ["delivery_id"], unique=True)
    op.create_index("ix_webhook_events_event_type", "webhook_events", ["event_type"])


def downgrade() -> None:
    op.drop_index("ix_webhook_events_event_type", table_name="webhook_events")
    op.drop_index("ix_webhook_events_delivery_id", table_name="webhook_events")
    op.drop_index("ix_webhook_events_project_id", table_name="webhook_events")
    op.drop_table("webhook_events")

    op.drop_index("uq_runs_idempotency_key", table_name="runs")
    op.drop_index("ix_runs_work_item_started", table_name="runs")
    op.drop_index("ix_runs_github_check_suite_id", table_name="runs")
    op.drop_index("ix_runs_github_pr_head_sha", table_name="runs")
    op.drop_index("ix_runs_github_pr_number", table_name="runs")
    op.drop_index("ix_runs_outcome", table_name="runs")
    op.drop_index("ix_runs_work_item_id", table_name="runs")
    op.drop_index("ix_runs_agent_id", table_name="runs")
    op.drop_table("runs")

    op.drop_index("ix_work_items_project_work_type", table_name="work_items")
    op.drop_index("ix_work_items_status_priority_locked", table_name="work_items")
    op.drop_index("ix_work_items_locked_by_agent_id", table_name="work_items")
    op.drop_index("ix_work_items_assigned_agent_id", table_name="work_items")
    op.drop_index("ix_work_items_status", table_name="work_items")
    op.drop_index("ix_work_items_work_type", table_name="work_items")
    op.drop_index("ix_work_items_project_id", table_name="work_items")
    op.drop_table("work_items")

    op.drop_index("ix_agents_enabled", table_name="agents")
    op.drop_index("ix_agents_key", table_name="agents")
    op.drop_table("agents")

    op.drop_index("ix_projects_webhook_secret_present", table_name="projects")
    op.drop_index("ix_projects_repo_full_name", table_name="projects")
    op.drop_index("ix_projects_slug", table_name="projects")
    op.drop_table("projects")
