"""Error taxonomy for the execution pipeline."""

from __future__ import annotations

from synorg.orchestrator.models import FailureKind


class SynorgError(RuntimeError):
    """Base error carrying the failure class reported to callers."""

    failure_kind = FailureKind.INTERNAL


class ConfigurationError(SynorgError):
    """Agent or routing configuration cannot run this work item."""

    failure_kind = FailureKind.CONFIGURATION


class MissingPromptError(ConfigurationError):
    def __init__(self, agent_key: str) -> None:
        super().__init__(f"Agent {agent_key!r} has no prompt configured.")
        self.agent_key = agent_key


class UnknownWorkTypeError(ConfigurationError):
    def __init__(self, work_type: str) -> None:
        super().__init__(f"Unknown work_type: {work_type!r}")
        self.work_type = work_type


class OutputValidationError(SynorgError):
    """LLM output does not match the expected schema."""

    failure_kind = FailureKind.VALIDATION


class ExternalServiceError(SynorgError):
    """LLM, git, or repository host call failed."""

    failure_kind = FailureKind.EXTERNAL_SERVICE


class CredentialMissingError(SynorgError):
    """No repository write credential is configured for the project."""

    failure_kind = FailureKind.CREDENTIAL_MISSING

    def __init__(self, project_slug: str) -> None:
        super().__init__(f"No repository write credential configured for project {project_slug!r}.")
        self.project_slug = project_slug


class PathTraversalError(SynorgError):
    """A requested file path resolves outside its root directory."""

    failure_kind = FailureKind.PATH_TRAVERSAL

    def __init__(self, path: str) -> None:
        super().__init__(f"Path escapes the working tree root: {path!r}")
        self.path = path
