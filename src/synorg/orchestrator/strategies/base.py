"""Shared contract for turning a validated LLM response into one side effect."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar

from synorg.config import CredentialStore
from synorg.github.client import RepositoryHost
from synorg.orchestrator.agents import AgentDirectory
from synorg.orchestrator.errors import SynorgError
from synorg.orchestrator.models import (
    AgentView,
    ExecutionResult,
    FailureKind,
    ProjectView,
    RunView,
    WorkItemView,
)
from synorg.orchestrator.repository import WorkRepository
from synorg.orchestrator.schemas import OutputKind
from synorg.workspace.executor import WorkspaceExecutor

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ExecutionContext:
    """The project, agent, work item and open run a strategy acts for."""

    project: ProjectView
    agent: AgentView
    work_item: WorkItemView
    run: RunView


@dataclass(slots=True)
class StrategyServices:
    """Collaborators shared by all strategies of one runner."""

    repository: WorkRepository
    agents: AgentDirectory
    credentials: CredentialStore
    files_root: Path
    github_factory: Callable[[str], RepositoryHost]
    workspace_executor: WorkspaceExecutor


class ExecutionStrategy:
    """Base strategy: type check, empty check and error capture around ``_execute``.

    ``execute`` never raises; every failure becomes an ``ExecutionResult``.
    """

    output_kind: ClassVar[OutputKind]
    empty_message: ClassVar[str] = "Nothing to do"

    def __init__(self, context: ExecutionContext, services: StrategyServices) -> None:
        self.context = context
        self.services = services

    @property
    def project(self) -> ProjectView:
        return self.context.project

    @property
    def work_item(self) -> WorkItemView:
        return self.context.work_item

    def execute(self, response: dict[str, Any]) -> ExecutionResult:
        declared = response.get("type")
        if declared != self.output_kind.value:
            return ExecutionResult.failure(
                f"Invalid response type: {declared}",
                kind=FailureKind.INVALID_INPUT,
            )
        if not self._actions(response):
            return ExecutionResult.failure(self.empty_message, kind=FailureKind.NOTHING_TO_DO)
        try:
            return self._execute(response)
        except SynorgError as error:
            logger.warning("%s failed: %s", type(self).__name__, error)
            return ExecutionResult.failure(str(error), kind=error.failure_kind)
        except Exception as error:  # noqa: BLE001
            logger.exception("%s failed unexpectedly", type(self).__name__)
            return ExecutionResult.failure(
                f"{type(error).__name__}: {error}",
                kind=FailureKind.INTERNAL,
            )

    def _actions(self, response: dict[str, Any]) -> list[Any]:
        raise NotImplementedError

    def _execute(self, response: dict[str, Any]) -> ExecutionResult:
        raise NotImplementedError
