"""Domain models for the work queue, runs and execution results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class WorkItemStatus(str, Enum):
    """Durable work item lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class RunOutcome(str, Enum):
    """Terminal run outcomes; an open run has no outcome."""

    SUCCESS = "success"
    FAILURE = "failure"


class FailureKind(str, Enum):
    """Normalized failure classes reported by execution results."""

    INVALID_INPUT = "invalid_input"
    NOTHING_TO_DO = "nothing_to_do"
    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    EXTERNAL_SERVICE = "external_service"
    CREDENTIAL_MISSING = "credential_missing"
    PATH_TRAVERSAL = "path_traversal"
    DUPLICATE_IN_FLIGHT = "duplicate_in_flight"
    INTERNAL = "internal"


@dataclass(slots=True)
class ProjectCreate:
    """Input payload for registering a project."""

    slug: str
    name: str
    brief: str | None = None
    repo_full_name: str | None = None
    repo_default_branch: str = "main"
    github_token_ref: str | None = None
    webhook_secret: str | None = None


@dataclass(slots=True)
class ProjectView:
    """Read model for a project."""

    id: int
    slug: str
    name: str
    brief: str | None
    repo_full_name: str | None
    repo_default_branch: str
    github_token_ref: str | None
    webhook_secret: str | None


@dataclass(slots=True)
class AgentCreate:
    """Input payload for registering an agent."""

    key: str
    name: str
    prompt: str | None = None
    capabilities: dict[str, Any] = field(default_factory=dict)
    max_concurrency: int = 1
    enabled: bool = True


@dataclass(slots=True)
class AgentView:
    """Read model for an agent."""

    id: int
    key: str
    name: str
    prompt: str | None
    capabilities: dict[str, Any]
    max_concurrency: int
    enabled: bool

    @property
    def work_types(self) -> tuple[str, ...]:
        """Work types this agent leases; empty means any."""

        values = self.capabilities.get("work_types") or ()
        if isinstance(values, str):
            return (values,)
        return tuple(str(value) for value in values)


@dataclass(slots=True)
class WorkItemCreate:
    """Input payload for enqueuing a work item."""

    project_id: int
    work_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    priority: int = 0
    assigned_agent_id: int | None = None
    status: WorkItemStatus = WorkItemStatus.PENDING


@dataclass(slots=True)
class WorkItemView:
    """Read model for a work item."""

    id: int
    project_id: int
    work_type: str
    payload: dict[str, Any]
    status: WorkItemStatus
    priority: int
    assigned_agent_id: int | None
    locked_at: datetime | None
    locked_by_agent_id: int | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class RunView:
    """Read model for one execution attempt."""

    id: int
    agent_id: int
    work_item_id: int
    started_at: datetime | None
    finished_at: datetime | None
    outcome: RunOutcome | None
    idempotency_key: str | None
    logs: str | None
    logs_url: str | None
    artifacts_url: str | None
    github_pr_number: int | None
    github_pr_head_sha: str | None
    github_check_suite_id: int | None
    costs: dict[str, Any]
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class RunCorrelation:
    """External identifiers attached to a run; ``None`` fields are left untouched."""

    logs_url: str | None = None
    artifacts_url: str | None = None
    github_pr_number: int | None = None
    github_pr_head_sha: str | None = None
    github_check_suite_id: int | None = None

    def as_values(self) -> dict[str, Any]:
        values = {
            "logs_url": self.logs_url,
            "artifacts_url": self.artifacts_url,
            "github_pr_number": self.github_pr_number,
            "github_pr_head_sha": self.github_pr_head_sha,
            "github_check_suite_id": self.github_check_suite_id,
        }
        return {key: value for key, value in values.items() if value is not None}


@dataclass(slots=True)
class LeasedWorkItem:
    """Work item claimed by an agent together with the run opened for it."""

    work_item: WorkItemView
    run: RunView


class IdempotencyClaim(str, Enum):
    """Outcome of attaching an idempotency key to a run."""

    CLAIMED = "claimed"
    ALREADY_SUCCEEDED = "already_succeeded"
    IN_FLIGHT = "in_flight"


@dataclass(slots=True)
class ExecutionResult:
    """Result of executing one work item or one strategy."""

    success: bool
    message: str | None = None
    error: str | None = None
    failure_kind: FailureKind | None = None
    details: dict[str, Any] = field(default_factory=dict)
    correlation: RunCorrelation | None = None

    @classmethod
    def ok(
        cls,
        message: str,
        *,
        correlation: RunCorrelation | None = None,
        **details: Any,
    ) -> ExecutionResult:
        return cls(success=True, message=message, details=details, correlation=correlation)

    @classmethod
    def failure(
        cls,
        error: str,
        *,
        kind: FailureKind,
        correlation: RunCorrelation | None = None,
        **details: Any,
    ) -> ExecutionResult:
        return cls(
            success=False,
            error=error,
            failure_kind=kind,
            details=details,
            correlation=correlation,
        )

    def as_dict(self) -> dict[str, Any]:
        """Flatten to the ``{success, message, error, ...details}`` wire shape."""

        payload: dict[str, Any] = {"success": self.success}
        if self.message is not None:
            payload["message"] = self.message
        if self.error is not None:
            payload["error"] = self.error
        if self.failure_kind is not None:
            payload["failure_kind"] = self.failure_kind.value
        payload.update(self.details)
        return payload
