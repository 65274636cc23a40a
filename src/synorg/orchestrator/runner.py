"""Execution orchestrator: prompt, LLM call, validation, strategy and finalization."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from synorg.llm.base import LlmClient
from synorg.orchestrator.errors import (
    ExternalServiceError,
    MissingPromptError,
    OutputValidationError,
    SynorgError,
)
from synorg.orchestrator.leasing import LeasingService
from synorg.orchestrator.models import (
    AgentView,
    ExecutionResult,
    FailureKind,
    ProjectView,
    RunOutcome,
    RunView,
    WorkItemCreate,
    WorkItemStatus,
    WorkItemView,
)
from synorg.orchestrator.repository import WorkRepository
from synorg.orchestrator.sanitization import redact_secrets
from synorg.orchestrator.schemas import (
    declared_error,
    output_kind_for,
    parse_response_document,
    schema_for,
    validate_and_normalize,
)
from synorg.orchestrator.strategies import (
    ExecutionContext,
    StrategyServices,
    build_strategy,
    check_routes,
)

logger = logging.getLogger(__name__)

ORCHESTRATOR_WORK_TYPE = "orchestrator"
ORCHESTRATOR_PRIORITY = 10


class AgentRunner:
    """Runs one agent against one work item and always finalizes its run.

    ``run`` never raises; every failure is returned as an ``ExecutionResult``
    and recorded on the run with secrets redacted.
    """

    def __init__(
        self,
        *,
        repository: WorkRepository,
        llm: LlmClient,
        services: StrategyServices,
        leasing: LeasingService | None = None,
        secrets: Sequence[str] | None = None,
    ) -> None:
        check_routes()
        self.repository = repository
        self.llm = llm
        self.services = services
        self.leasing = leasing or LeasingService(repository)
        self.secrets = tuple(secrets) if secrets is not None else services.credentials.secrets()

    def run(
        self,
        agent: AgentView,
        project: ProjectView,
        work_item: WorkItemView,
    ) -> ExecutionResult:
        logger.info(
            "Executing agent %s for work item %s (%s)",
            agent.key,
            work_item.id,
            work_item.work_type,
        )
        run: RunView | None = None
        try:
            run = self._open_run(agent, work_item)
            result = self._execute(agent=agent, project=project, work_item=work_item, run=run)
        except SynorgError as error:
            logger.warning("Work item %s failed: %s", work_item.id, self._redact(str(error)))
            result = ExecutionResult.failure(str(error), kind=error.failure_kind)
        except Exception as error:  # noqa: BLE001
            logger.exception("Unexpected error executing work item %s", work_item.id)
            result = ExecutionResult.failure(
                f"{type(error).__name__}: {error}",
                kind=FailureKind.INTERNAL,
            )

        if result.error is not None:
            result.error = self._redact(result.error)
        if run is not None:
            self._finalize(work_item=work_item, run=run, result=result)
            result.details.setdefault("run_id", run.id)
        return result

    def _open_run(self, agent: AgentView, work_item: WorkItemView) -> RunView:
        existing = self.repository.find_open_run(work_item_id=work_item.id, agent_id=agent.id)
        if existing is not None:
            return existing
        return self.repository.create_run(agent_id=agent.id, work_item_id=work_item.id)

    def _execute(
        self,
        *,
        agent: AgentView,
        project: ProjectView,
        work_item: WorkItemView,
        run: RunView,
    ) -> ExecutionResult:
        if not agent.prompt or not agent.prompt.strip():
            raise MissingPromptError(agent.key)
        context = build_context(project=project, agent=agent, work_item=work_item)
        kind = output_kind_for(work_item.work_type)

        response = self.llm.chat(agent.prompt, context, schema_for(kind))
        if response.usage:
            self.repository.record_run_costs(run_id=run.id, costs=dict(response.usage))
        if response.error:
            raise ExternalServiceError(f"LLM call failed: {response.error}")
        if response.content is None or not str(response.content).strip():
            raise ExternalServiceError("LLM returned empty content")

        document = parse_response_document(response.content)
        agent_error = declared_error(document)
        if agent_error is not None:
            raise OutputValidationError(f"Agent reported an error: {agent_error}")
        validated = validate_and_normalize(
            kind,
            document,
            default_branch=project.repo_default_branch,
        )

        strategy = build_strategy(
            kind,
            ExecutionContext(project=project, agent=agent, work_item=work_item, run=run),
            self.services,
        )
        return strategy.execute(validated)

    def _finalize(self, *, work_item: WorkItemView, run: RunView, result: ExecutionResult) -> None:
        outcome = RunOutcome.SUCCESS if result.success else RunOutcome.FAILURE
        logs = result.message if result.success else result.error
        self.leasing.complete(
            work_item,
            run,
            outcome,
            logs=self._redact(logs or outcome.value),
            correlation=result.correlation,
        )

    def _redact(self, text: str) -> str:
        return redact_secrets(text, secrets=self.secrets)


def build_context(
    *,
    project: ProjectView,
    agent: AgentView,
    work_item: WorkItemView,
) -> dict[str, Any]:
    """Project the records an agent may see into one JSON-serializable document."""

    return {
        "project": {
            "name": project.name,
            "slug": project.slug,
            "brief": project.brief,
            "repo_full_name": project.repo_full_name,
            "repo_default_branch": project.repo_default_branch,
        },
        "work_item": {
            "id": work_item.id,
            "work_type": work_item.work_type,
            "payload": work_item.payload,
            "priority": work_item.priority,
        },
        "agent": {
            "key": agent.key,
            "name": agent.name,
            "capabilities": agent.capabilities,
        },
    }


def enqueue_orchestrator(repository: WorkRepository, project: ProjectView) -> WorkItemView | None:
    """Queue an urgent ``orchestrator`` item unless one is already pending or running."""

    for status in (WorkItemStatus.PENDING, WorkItemStatus.IN_PROGRESS):
        active = repository.list_work_items(status=status, project_id=project.id, limit=500)
        if any(item.work_type == ORCHESTRATOR_WORK_TYPE for item in active):
            logger.info("Orchestrator already queued for project %s", project.slug)
            return None
    return repository.enqueue_work_item(
        WorkItemCreate(
            project_id=project.id,
            work_type=ORCHESTRATOR_WORK_TYPE,
            priority=ORCHESTRATOR_PRIORITY,
            payload={
                "title": "Run Orchestrator",
                "description": "Orchestrator agent execution triggered manually",
            },
        ),
    )
