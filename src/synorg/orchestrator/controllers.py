"""Controllers for work-engine CLI commands."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from functools import partial
from pathlib import Path

from synorg.config import Settings
from synorg.github.client import GithubClient, RepositoryHost
from synorg.llm import build_llm_client
from synorg.orchestrator.agents import AgentDirectory
from synorg.orchestrator.models import (
    AgentCreate,
    ProjectCreate,
    ProjectView,
    WorkItemCreate,
    WorkItemStatus,
)
from synorg.orchestrator.repository import WorkRepository
from synorg.orchestrator.runner import AgentRunner, enqueue_orchestrator
from synorg.orchestrator.schemas import output_kind_for
from synorg.orchestrator.strategies import StrategyServices
from synorg.orchestrator.worker import QueueWorker
from synorg.webhooks.ingress import WebhookIngress
from synorg.workspace.executor import WorkspaceExecutor


@dataclass(slots=True)
class DbInitCommand:
    """CLI input for schema migration."""

    db_path: Path | None


@dataclass(slots=True)
class ProjectAddCommand:
    """CLI input for project registration."""

    db_path: Path | None
    slug: str
    name: str
    brief: str | None
    repo_full_name: str | None
    default_branch: str
    github_token_ref: str | None
    webhook_secret: str | None


@dataclass(slots=True)
class AgentAddCommand:
    """CLI input for agent registration."""

    db_path: Path | None
    key: str
    name: str
    prompt: str | None
    prompt_file: Path | None
    work_types: tuple[str, ...]
    max_concurrency: int
    enabled: bool


@dataclass(slots=True)
class WorkEnqueueCommand:
    """CLI input for enqueuing one work item."""

    db_path: Path | None
    project_slug: str
    work_type: str
    payload_json: str
    priority: int
    agent_key: str | None


@dataclass(slots=True)
class WorkListCommand:
    db_path: Path | None
    status: str | None
    project_slug: str | None
    limit: int


@dataclass(slots=True)
class OrchestratorTriggerCommand:
    db_path: Path | None
    project_slug: str


@dataclass(slots=True)
class WorkerRunCommand:
    """CLI input for worker execution."""

    db_path: Path | None
    agent_key: str | None
    once: bool
    max_items: int | None
    max_idle_polls: int = 1


@dataclass(slots=True)
class RunsListCommand:
    db_path: Path | None
    work_item_id: int | None
    limit: int


@dataclass(slots=True)
class WebhookIngestCommand:
    """CLI input for replaying a captured webhook delivery."""

    db_path: Path | None
    body_path: Path
    event_type: str
    delivery_id: str | None
    signature: str | None


class WorkCliController:
    """Coordinates work-engine command execution."""

    def init_db(self, command: DbInitCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings):
            pass
        target = settings.db_path if settings.database.url is None else "configured database"
        return [f"Schema migrated to head: {target}"]

    def add_project(self, command: ProjectAddCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            if repository.get_project_by_slug(command.slug) is not None:
                raise ValueError(f"Project already exists: {command.slug!r}")
            project = repository.create_project(
                ProjectCreate(
                    slug=command.slug,
                    name=command.name,
                    brief=command.brief,
                    repo_full_name=command.repo_full_name,
                    repo_default_branch=command.default_branch,
                    github_token_ref=command.github_token_ref,
                    webhook_secret=command.webhook_secret,
                ),
            )
        return [
            f"Project created: id={project.id} slug={project.slug} "
            f"repo={project.repo_full_name or '-'} branch={project.repo_default_branch} "
            f"webhook_secret={'set' if project.webhook_secret else 'unset'}",
        ]

    def add_agent(self, command: AgentAddCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        prompt = command.prompt
        if command.prompt_file is not None:
            prompt = command.prompt_file.read_text("utf-8")
        capabilities = {"work_types": list(command.work_types)} if command.work_types else {}
        with _repository(settings) as repository:
            if repository.get_agent_by_key(command.key) is not None:
                raise ValueError(f"Agent already exists: {command.key!r}")
            agent = repository.create_agent(
                AgentCreate(
                    key=command.key,
                    name=command.name,
                    prompt=prompt,
                    capabilities=capabilities,
                    max_concurrency=command.max_concurrency,
                    enabled=command.enabled,
                ),
            )
        return [
            f"Agent created: id={agent.id} key={agent.key} enabled={agent.enabled} "
            f"work_types={','.join(agent.work_types) or '*'} "
            f"prompt={'set' if agent.prompt else 'missing'}",
        ]

    def enqueue(self, command: WorkEnqueueCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        output_kind = output_kind_for(command.work_type)
        try:
            payload = json.loads(command.payload_json)
        except json.JSONDecodeError as error:
            raise ValueError(f"Invalid --payload JSON: {error}") from error
        if not isinstance(payload, dict):
            raise ValueError("--payload must be a JSON object.")

        with _repository(settings) as repository:
            project = _require_project(repository, command.project_slug)
            assigned_agent_id = None
            if command.agent_key:
                agent = repository.get_agent_by_key(command.agent_key)
                if agent is None:
                    raise ValueError(f"Unknown agent: {command.agent_key!r}")
                assigned_agent_id = agent.id
            item = repository.enqueue_work_item(
                WorkItemCreate(
                    project_id=project.id,
                    work_type=command.work_type,
                    payload=payload,
                    priority=command.priority,
                    assigned_agent_id=assigned_agent_id,
                ),
            )
        return [
            f"Work item queued: id={item.id} type={item.work_type} "
            f"output={output_kind.value} priority={item.priority}",
        ]

    def list_work(self, command: WorkListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status = None
        if command.status is not None:
            try:
                status = WorkItemStatus(command.status)
            except ValueError as error:
                raise ValueError(f"Unsupported status: {command.status!r}") from error
        with _repository(settings) as repository:
            project_id = None
            if command.project_slug:
                project_id = _require_project(repository, command.project_slug).id
            items = repository.list_work_items(
                status=status,
                project_id=project_id,
                limit=command.limit,
            )
        if not items:
            return ["No work items."]
        return [
            f"{item.id} status={item.status.value} type={item.work_type} "
            f"priority={item.priority} assigned={item.assigned_agent_id or '-'} "
            f"locked_by={item.locked_by_agent_id or '-'}"
            for item in items
        ]

    def trigger_orchestrator(self, command: OrchestratorTriggerCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            project = _require_project(repository, command.project_slug)
            item = enqueue_orchestrator(repository, project)
        if item is None:
            return ["Orchestrator is already queued or running for this project."]
        return [f"Orchestrator queued: work_item={item.id} priority={item.priority}"]

    def run_worker(self, command: WorkerRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        agent_key = command.agent_key or settings.worker.agent_key
        if not agent_key:
            raise ValueError("Agent key is required (--agent-key or SYNORG_WORKER_AGENT_KEY).")

        with _repository(settings) as repository:
            agent = repository.get_agent_by_key(agent_key)
            if agent is None:
                raise ValueError(f"Unknown agent: {agent_key!r}")
            worker = QueueWorker(
                repository=repository,
                runner=build_runner(settings, repository),
                agent=agent,
                poll_interval_seconds=settings.worker.poll_interval_seconds,
                stale_lease_seconds=settings.worker.stale_lease_seconds,
            )
            summary = (
                worker.run_once()
                if command.once
                else worker.run_loop(
                    max_items=command.max_items,
                    max_idle_polls=command.max_idle_polls,
                )
            )
        return [
            "Worker summary: "
            f"agent={agent_key} processed={summary.processed} succeeded={summary.succeeded} "
            f"failed={summary.failed} idle_polls={summary.idle_polls}",
        ]

    def list_runs(self, command: RunsListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            runs = repository.list_runs(work_item_id=command.work_item_id, limit=command.limit)
        if not runs:
            return ["No runs."]
        return [
            f"{run.id} work_item={run.work_item_id} agent={run.agent_id} "
            f"outcome={run.outcome.value if run.outcome else 'open'} "
            f"pr={run.github_pr_number or '-'} artifacts={run.artifacts_url or '-'}"
            for run in runs
        ]

    def ingest_webhook(self, command: WebhookIngestCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        body = command.body_path.read_bytes()
        headers = {"X-GitHub-Event": command.event_type}
        if command.delivery_id:
            headers["X-GitHub-Delivery"] = command.delivery_id
        if command.signature:
            headers["X-Hub-Signature-256"] = command.signature
        with _repository(settings) as repository:
            response = WebhookIngress(repository).handle(body, headers)
        return [f"Webhook response: status={response.status} message={response.message}"]


def build_runner(settings: Settings, repository: WorkRepository) -> AgentRunner:
    """Wire the runner with collaborators built from ``settings``."""

    host_factory: Callable[[str], RepositoryHost] = partial(
        GithubClient,
        api_base_url=settings.github.api_base_url,
        timeout_seconds=settings.github.request_timeout_seconds,
        max_retries=settings.github.max_retries,
    )
    services = StrategyServices(
        repository=repository,
        agents=AgentDirectory(repository, ttl_seconds=settings.worker.agent_cache_ttl_seconds),
        credentials=settings.credentials,
        files_root=settings.workspace.files_root,
        github_factory=host_factory,
        workspace_executor=WorkspaceExecutor(
            repository=repository,
            credentials=settings.credentials,
            settings=settings.workspace,
            host_factory=host_factory,
            web_base_url=settings.github.web_base_url,
        ),
    )
    return AgentRunner(
        repository=repository,
        llm=build_llm_client(settings.llm),
        services=services,
    )


def _require_project(repository: WorkRepository, slug: str) -> ProjectView:
    project = repository.get_project_by_slug(slug)
    if project is None:
        raise ValueError(f"Unknown project: {slug!r}")
    return project


@contextmanager
def _repository(settings: Settings) -> Iterator[WorkRepository]:
    repository = WorkRepository(
        settings.db_path,
        database_url=settings.database.url,
        sqlite_busy_timeout_ms=settings.database.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
