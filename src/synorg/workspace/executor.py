"""Branch-per-run git workflow: clone, commit, push and open a pull request."""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from synorg.config import CredentialStore, WorkspaceSettings
from synorg.github.client import PullRequestRef, RepositoryHost
from synorg.orchestrator.errors import (
    ConfigurationError,
    CredentialMissingError,
    ExternalServiceError,
    SynorgError,
)
from synorg.orchestrator.models import (
    AgentView,
    ExecutionResult,
    FailureKind,
    IdempotencyClaim,
    ProjectView,
    RunCorrelation,
    RunOutcome,
    RunView,
    WorkItemView,
)
from synorg.orchestrator.repository import WorkRepository
from synorg.orchestrator.sanitization import redact_secrets
from synorg.workspace.git import (
    GIT_USERNAME,
    GitClient,
    GitResult,
    askpass_credentials,
    build_branch_name,
    remote_url,
)
from synorg.workspace.workdir import FileChange, Workspace, WorkspaceManager, write_files

logger = logging.getLogger(__name__)

DEFAULT_COMMIT_MESSAGE = "feat: automated agent work"

GitFactory = Callable[[Path, Sequence[str]], GitClient]


@dataclass(slots=True)
class WorkspaceChangeRequest:
    """Normalized ``workspace_changes`` output."""

    files: list[FileChange] = field(default_factory=list)
    message: str | None = None
    pr_title: str | None = None
    pr_body: str | None = None


def idempotency_key(work_item: WorkItemView, agent_key: str) -> str:
    """Deterministic key for one logical request; any payload change yields a new key."""

    canonical = json.dumps(
        work_item.payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    material = f"{work_item.id}:{work_item.work_type}:{canonical}:{agent_key}"
    digest = hashlib.sha256(material.encode("utf-8")).hexdigest()
    return f"run:{work_item.id}:{agent_key}:{digest}"


class WorkspaceExecutor:
    """Applies file changes to a fresh clone and proposes them as a pull request.

    Every call owns one temporary directory that is removed on all exit paths.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: WorkRepository,
        credentials: CredentialStore,
        settings: WorkspaceSettings,
        host_factory: Callable[[str], RepositoryHost],
        web_base_url: str = "https://github.com",
        workspace_manager: WorkspaceManager | None = None,
        git_factory: GitFactory | None = None,
    ) -> None:
        self.repository = repository
        self.credentials = credentials
        self.settings = settings
        self.host_factory = host_factory
        self.web_base_url = web_base_url
        self.workspace_manager = workspace_manager or WorkspaceManager(settings.root)
        self.git_factory = git_factory or self._default_git_client

    def execute(  # noqa: PLR0913
        self,
        *,
        project: ProjectView,
        agent: AgentView,
        work_item: WorkItemView,
        run: RunView,
        request: WorkspaceChangeRequest,
    ) -> ExecutionResult:
        key = idempotency_key(work_item, agent.key)
        claim = self.repository.claim_idempotency_key(run_id=run.id, key=key)
        if claim is IdempotencyClaim.ALREADY_SUCCEEDED:
            return self._already_applied(run=run, key=key)
        if claim is IdempotencyClaim.IN_FLIGHT:
            message = f"Another run is already executing work item {work_item.id}"
            return self._fail(
                run,
                message,
                kind=FailureKind.DUPLICATE_IN_FLIGHT,
                secrets=(),
                idempotency_key=key,
            )

        token = self.credentials.resolve(project.github_token_ref)
        secrets = _credential_secrets(token)
        try:
            with self.workspace_manager.provision() as workspace:
                if token is None:
                    raise CredentialMissingError(project.slug)
                result = self._run_workflow(
                    workspace=workspace,
                    project=project,
                    agent=agent,
                    work_item=work_item,
                    run=run,
                    request=request,
                    token=token,
                )
        except SynorgError as exc:
            return self._fail(
                run,
                str(exc),
                kind=exc.failure_kind,
                secrets=secrets,
                idempotency_key=key,
            )

        self.repository.finalize_run(
            run_id=run.id,
            outcome=RunOutcome.SUCCESS,
            logs=redact_secrets(_success_logs(result), secrets=secrets),
            correlation=result.correlation,
        )
        result.details["idempotency_key"] = key
        return result

    def _run_workflow(  # noqa: PLR0913
        self,
        *,
        workspace: Workspace,
        project: ProjectView,
        agent: AgentView,
        work_item: WorkItemView,
        run: RunView,
        request: WorkspaceChangeRequest,
        token: str,
    ) -> ExecutionResult:
        if not project.repo_full_name:
            raise ConfigurationError(f"Project {project.slug!r} has no repository configured.")
        default_branch = project.repo_default_branch
        checkout = workspace.checkout_dir

        with askpass_credentials(workspace.credentials_dir, token) as askpass_path:
            git = self.git_factory(askpass_path, _credential_secrets(token))

            url = remote_url(project.repo_full_name, web_base_url=self.web_base_url)
            _require(git.clone(url, checkout, branch=default_branch), "Failed to clone repository")
            logger.info("Cloned %s into %s", project.repo_full_name, checkout)

            branch = build_branch_name(agent.key, at=run.started_at)
            self._prepare_branch(git, checkout, branch=branch, default_branch=default_branch)

            try:
                written = write_files(checkout, request.files)
            except OSError as exc:
                raise ExternalServiceError(f"Failed to apply changes: {exc}") from exc
            logger.info("Applied %d file change(s) on %s", len(written), branch)

            committed = git.commit_all(checkout, request.message or DEFAULT_COMMIT_MESSAGE)
            if not committed.ok:
                if git.is_nothing_to_commit(committed):
                    raise ExternalServiceError("Failed to commit changes: nothing to commit")
                raise ExternalServiceError(f"Failed to commit changes: {committed.summary()}")
            _require(git.push(checkout, branch), "Failed to push branch")
            logger.info("Pushed branch %s to %s", branch, project.repo_full_name)

            local_sha = git.head_sha(checkout)

        pull_request = self._open_pull_request(
            token=token,
            project=project,
            title=request.pr_title or f"feat: automated work by {agent.name}",
            body=request.pr_body or _default_pr_body(agent, work_item),
            branch=branch,
        )
        correlation = RunCorrelation(
            artifacts_url=pull_request.html_url or None,
            github_pr_number=pull_request.number,
            github_pr_head_sha=pull_request.head_sha or local_sha,
        )
        return ExecutionResult.ok(
            f"Pull request #{pull_request.number} opened from {branch}",
            correlation=correlation,
            branch=branch,
            files_changed=written,
            pr_number=pull_request.number,
            pr_url=pull_request.html_url,
        )

    def _prepare_branch(
        self,
        git: GitClient,
        checkout: Path,
        *,
        branch: str,
        default_branch: str,
    ) -> None:
        exists = git.remote_branch_exists(checkout, branch)
        if exists is None:
            raise ExternalServiceError("Failed to query remote branches")
        if exists:
            logger.info("Branch %s exists on remote; updating it", branch)
            _require(git.fetch(checkout, branch), "Failed to update existing branch")
            _require(git.checkout_tracking(checkout, branch), "Failed to update existing branch")
            _require(git.fetch(checkout, default_branch), "Failed to update existing branch")
            _require(git.deepen(checkout, default_branch), "Failed to update existing branch")
            _require(
                git.merge(checkout, f"origin/{default_branch}"),
                "Failed to update existing branch",
            )
            return
        _require(git.fetch(checkout, default_branch), "Failed to create branch")
        _require(
            git.create_branch(checkout, branch, start_point=f"origin/{default_branch}"),
            "Failed to create branch",
        )

    def _open_pull_request(
        self,
        *,
        token: str,
        project: ProjectView,
        title: str,
        body: str,
        branch: str,
    ) -> PullRequestRef:
        host = self.host_factory(token)
        try:
            pull_request = host.create_pull_request(
                project.repo_full_name or "",
                title=title,
                body=body,
                head=branch,
                base=project.repo_default_branch,
            )
        finally:
            host.close()
        if pull_request is None:
            raise ExternalServiceError("Failed to create pull request")
        return pull_request

    def _already_applied(self, *, run: RunView, key: str) -> ExecutionResult:
        previous = self.repository.find_run_by_idempotency_key(key)
        artifacts_url = previous.artifacts_url if previous is not None else None
        logger.info("Workspace changes for %s already applied; skipping", key)
        message = "Workspace changes were already applied by a previous successful run"
        self.repository.finalize_run(
            run_id=run.id,
            outcome=RunOutcome.SUCCESS,
            logs=message,
            correlation=RunCorrelation(artifacts_url=artifacts_url),
        )
        return ExecutionResult.ok(
            message,
            idempotency_key=key,
            skipped=True,
            previous_run_id=previous.id if previous is not None else None,
        )

    def _fail(
        self,
        run: RunView,
        error: str,
        *,
        kind: FailureKind,
        secrets: Sequence[str],
        idempotency_key: str,
    ) -> ExecutionResult:
        safe_error = redact_secrets(error, secrets=secrets)
        logger.warning("Workspace execution for run %s failed: %s", run.id, safe_error)
        self.repository.finalize_run(
            run_id=run.id,
            outcome=RunOutcome.FAILURE,
            logs=redact_secrets(_failure_logs(safe_error), secrets=secrets),
        )
        return ExecutionResult.failure(safe_error, kind=kind, idempotency_key=idempotency_key)

    def _default_git_client(self, askpass_path: Path, secrets: Sequence[str]) -> GitClient:
        return GitClient(
            git_binary=self.settings.git_binary,
            timeout_seconds=self.settings.git_timeout_seconds,
            askpass_path=askpass_path,
            secrets=secrets,
            author_name=self.settings.git_author_name,
            author_email=self.settings.git_author_email,
        )


def _require(result: GitResult, failure: str) -> None:
    if not result.ok:
        raise ExternalServiceError(f"{failure}: {result.summary()}")


def _credential_secrets(token: str | None) -> tuple[str, ...]:
    if not token:
        return ()
    return (f"{GIT_USERNAME}:{token}", token)


def _default_pr_body(agent: AgentView, work_item: WorkItemView) -> str:
    lines = [
        "## Automated Agent Work",
        "",
        f"**Agent:** {agent.name} ({agent.key})",
        f"**Work Item:** #{work_item.id}",
        f"**Type:** {work_item.work_type}",
        "",
        "This PR was automatically generated by the synorg agent system.",
    ]
    description = work_item.payload.get("description")
    if description:
        lines.extend(["", str(description)])
    return "\n".join(lines) + "\n"


def _success_logs(result: ExecutionResult) -> str:
    return "\n".join(
        [
            "Workspace execution completed successfully",
            f"Branch {result.details.get('branch')} created and pushed",
            f"Pull request created: {result.details.get('pr_url') or 'N/A'}",
        ],
    )


def _failure_logs(error: str) -> str:
    return f"Workspace execution failed\nError: {error}"
