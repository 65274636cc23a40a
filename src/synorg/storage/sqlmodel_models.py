"""SQLModel ORM tables for the agent work store."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, Text, text
from sqlmodel import Field, SQLModel


class Project(SQLModel, table=True):
    __tablename__ = "projects"  # type: ignore[bad-override]
    __table_args__ = (
        Index(
            "ix_projects_webhook_secret_present",
            "id",
            sqlite_where=text("webhook_secret IS NOT NULL"),
            postgresql_where=text("webhook_secret IS NOT NULL"),
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    slug: str = Field(index=True, unique=True)
    name: str
    brief: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    repo_full_name: str | None = Field(default=None, index=True)
    repo_default_branch: str = "main"
    github_token_ref: str | None = None
    webhook_secret: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Agent(SQLModel, table=True):
    __tablename__ = "agents"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    key: str = Field(index=True, unique=True)
    name: str
    prompt: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    capabilities: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    max_concurrency: int = 1
    enabled: bool = Field(default=True, index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class WorkItem(SQLModel, table=True):
    __tablename__ = "work_items"  # type: ignore[bad-override]
    __table_args__ = (
        Index("ix_work_items_status_priority_locked", "status", "priority", "locked_at"),
        Index("ix_work_items_project_work_type", "project_id", "work_type"),
    )

    id: int | None = Field(default=None, primary_key=True)
    project_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    work_type: str = Field(index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    status: str = Field(default="pending", index=True)
    priority: int = 0
    assigned_agent_id: int | None = Field(
        default=None,
        sa_column=Column(Integer, ForeignKey("agents.id"), nullable=True, index=True),
    )
    locked_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    locked_by_agent_id: int | None = Field(
        default=None,
        sa_column=Column(Integer, ForeignKey("agents.id"), nullable=True, index=True),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Run(SQLModel, table=True):
    __tablename__ = "runs"  # type: ignore[bad-override]
    __table_args__ = (
        Index(
            "uq_runs_idempotency_key",
            "idempotency_key",
            unique=True,
            sqlite_where=text("idempotency_key IS NOT NULL"),
            postgresql_where=text("idempotency_key IS NOT NULL"),
        ),
        Index("ix_runs_work_item_started", "work_item_id", "started_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    agent_id: int = Field(
        sa_column=Column(Integer, ForeignKey("agents.id"), nullable=False, index=True),
    )
    work_item_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("work_items.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    started_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    finished_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    outcome: str | None = Field(default=None, index=True)
    idempotency_key: str | None = None
    logs: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    logs_url: str | None = None
    artifacts_url: str | None = None
    github_pr_number: int | None = Field(default=None, index=True)
    github_pr_head_sha: str | None = Field(default=None, index=True)
    github_check_suite_id: int | None = Field(default=None, index=True)
    costs: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class WebhookEvent(SQLModel, table=True):
    __tablename__ = "webhook_events"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    project_id: int | None = Field(
        default=None,
        sa_column=Column(
            Integer,
            ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=True,
            index=True,
        ),
    )
    delivery_id: str = Field(index=True, unique=True)
    event_type: str = Field(index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    processed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
