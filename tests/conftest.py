"""Shared test fixtures."""

from __future__ import annotations

import itertools
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from synorg.config import CredentialStore, WorkspaceSettings
from synorg.github.client import BranchCreation, IssueRef, PullRequestRef
from synorg.orchestrator.agents import AgentDirectory
from synorg.orchestrator.models import (
    AgentCreate,
    AgentView,
    ProjectCreate,
    ProjectView,
    WorkItemCreate,
)
from synorg.orchestrator.repository import WorkRepository
from synorg.orchestrator.strategies import ExecutionContext, StrategyServices
from synorg.workspace.executor import WorkspaceExecutor

WRITE_TOKEN = "ghp_" + "T0k3n" * 8


@dataclass
class FakeHost:
    """In-memory repository host that records every call."""

    pr_number: int = 42
    issue_number: int = 7
    base_sha: str | None = "base-sha"
    branch_result: BranchCreation = BranchCreation.CREATED
    fail_issue: bool = False
    fail_pull_request: bool = False
    existing_files: dict[str, str] = field(default_factory=dict)
    calls: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    tokens: list[str] = field(default_factory=list)
    closed: int = 0

    def create_issue(
        self,
        repo: str,
        *,
        title: str,
        body: str,
        labels: list[str] | None = None,
    ) -> IssueRef | None:
        self.calls.append(
            ("create_issue", {"repo": repo, "title": title, "body": body, "labels": labels}),
        )
        if self.fail_issue:
            return None
        return IssueRef(
            number=self.issue_number,
            html_url=f"https://github.com/{repo}/issues/{self.issue_number}",
        )

    def create_pull_request(
        self,
        repo: str,
        *,
        title: str,
        body: str,
        head: str,
        base: str,
    ) -> PullRequestRef | None:
        self.calls.append(
            (
                "create_pull_request",
                {"repo": repo, "title": title, "body": body, "head": head, "base": base},
            ),
        )
        if self.fail_pull_request:
            return None
        return PullRequestRef(
            number=self.pr_number,
            html_url=f"https://github.com/{repo}/pull/{self.pr_number}",
            head_sha="remote-head-sha",
        )

    def get_branch_sha(self, repo: str, branch: str) -> str | None:
        self.calls.append(("get_branch_sha", {"repo": repo, "branch": branch}))
        return self.base_sha

    def create_branch(self, repo: str, *, branch: str, sha: str) -> BranchCreation:
        self.calls.append(("create_branch", {"repo": repo, "branch": branch, "sha": sha}))
        return self.branch_result

    def get_file_sha(self, repo: str, *, path: str, branch: str) -> str | None:
        self.calls.append(("get_file_sha", {"repo": repo, "path": path, "branch": branch}))
        return self.existing_files.get(path)

    def create_or_update_file(  # noqa: PLR0913
        self,
        repo: str,
        *,
        path: str,
        content_base64: str,
        branch: str,
        message: str,
        existing_sha: str | None = None,
    ) -> bool:
        self.calls.append(
            (
                "create_or_update_file",
                {
                    "repo": repo,
                    "path": path,
                    "content_base64": content_base64,
                    "branch": branch,
                    "message": message,
                    "existing_sha": existing_sha,
                },
            ),
        )
        return True

    def close(self) -> None:
        self.closed += 1

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def factory(self, token: str) -> FakeHost:
        self.tokens.append(token)
        return self


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[WorkRepository]:
    repo = WorkRepository(tmp_path / "synorg.db")
    repo.init_schema()
    yield repo
    repo.close()


@pytest.fixture()
def make_project(repository: WorkRepository) -> Callable[..., ProjectView]:
    counter = itertools.count(1)

    def _make(**overrides: Any) -> ProjectView:
        index = next(counter)
        values: dict[str, Any] = {
            "slug": f"project-{index}",
            "name": f"Project {index}",
            "repo_full_name": "owner/repo",
        }
        values.update(overrides)
        return repository.create_project(ProjectCreate(**values))

    return _make


@pytest.fixture()
def make_agent(repository: WorkRepository) -> Callable[..., AgentView]:
    counter = itertools.count(1)

    def _make(**overrides: Any) -> AgentView:
        index = next(counter)
        values: dict[str, Any] = {
            "key": f"agent-{index}",
            "name": f"Agent {index}",
            "prompt": "Do the next piece of work.",
        }
        values.update(overrides)
        return repository.create_agent(AgentCreate(**values))

    return _make


@pytest.fixture()
def make_context(repository: WorkRepository) -> Callable[..., ExecutionContext]:
    def _make(
        project: ProjectView,
        agent: AgentView,
        *,
        work_type: str,
        payload: dict[str, Any] | None = None,
    ) -> ExecutionContext:
        work_item = repository.enqueue_work_item(
            WorkItemCreate(
                project_id=project.id,
                work_type=work_type,
                payload=payload or {},
                assigned_agent_id=agent.id,
            ),
        )
        run = repository.create_run(agent_id=agent.id, work_item_id=work_item.id)
        return ExecutionContext(project=project, agent=agent, work_item=work_item, run=run)

    return _make


@pytest.fixture()
def write_token() -> str:
    return WRITE_TOKEN


@pytest.fixture()
def credentials() -> CredentialStore:
    return CredentialStore(tokens={"default": WRITE_TOKEN})


@pytest.fixture()
def fake_host() -> FakeHost:
    return FakeHost()


@pytest.fixture()
def workspace_settings(tmp_path: Path) -> WorkspaceSettings:
    return WorkspaceSettings(root=tmp_path / "workspaces", files_root=tmp_path / "files")


@pytest.fixture()
def services(
    repository: WorkRepository,
    credentials: CredentialStore,
    fake_host: FakeHost,
    workspace_settings: WorkspaceSettings,
) -> StrategyServices:
    return StrategyServices(
        repository=repository,
        agents=AgentDirectory(repository),
        credentials=credentials,
        files_root=workspace_settings.files_root,
        github_factory=fake_host.factory,
        workspace_executor=WorkspaceExecutor(
            repository=repository,
            credentials=credentials,
            settings=workspace_settings,
            host_factory=fake_host.factory,
        ),
    )
