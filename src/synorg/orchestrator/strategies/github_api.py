"""Strategy that performs repository-host operations through the REST API."""

from __future__ import annotations

import base64
import logging
from typing import Any

from synorg.github.client import BranchCreation, RepositoryHost
from synorg.orchestrator.errors import ConfigurationError, CredentialMissingError
from synorg.orchestrator.models import ExecutionResult, FailureKind
from synorg.orchestrator.repository import ISSUE_NUMBER_FIELD
from synorg.orchestrator.schemas import OutputKind
from synorg.orchestrator.strategies.base import ExecutionStrategy
from synorg.workspace.git import BRANCH_NAME_PATTERN, build_branch_name

logger = logging.getLogger(__name__)


class GitHubApiStrategy(ExecutionStrategy):
    """Runs ``create_issue``, ``create_pr`` and ``create_files_and_pr`` operations.

    Every operation is attempted; the first error message decides the failure
    while successful operations stay recorded on the work item payload.
    """

    output_kind = OutputKind.GITHUB_OPERATIONS
    empty_message = "No operations provided"

    def _actions(self, response: dict[str, Any]) -> list[Any]:
        return list(response.get("operations") or [])

    def _execute(self, response: dict[str, Any]) -> ExecutionResult:
        repo = self.project.repo_full_name
        if not repo:
            raise ConfigurationError(f"Project {self.project.slug!r} has no repository configured.")
        token = self.services.credentials.resolve(self.project.github_token_ref)
        if token is None:
            raise CredentialMissingError(self.project.slug)

        performed: list[dict[str, Any]] = []
        errors: list[str] = []
        payload_updates: dict[str, Any] = {}
        host = self.services.github_factory(token)
        try:
            for operation in self._actions(response):
                name = operation.get("operation")
                if name == "create_issue":
                    outcome = self._create_issue(host, repo, operation, payload_updates)
                elif name == "create_pr":
                    outcome = self._create_pr(host, repo, operation, payload_updates)
                elif name == "create_files_and_pr":
                    outcome = self._create_files_and_pr(host, repo, operation, payload_updates)
                else:
                    outcome = f"Unknown GitHub operation: {name}"
                if isinstance(outcome, str):
                    logger.warning("GitHub operation %s failed: %s", name, outcome)
                    errors.append(outcome)
                else:
                    performed.append(outcome)
        finally:
            host.close()

        if payload_updates:
            self.services.repository.merge_work_item_payload(
                work_item_id=self.work_item.id,
                updates=payload_updates,
            )
        if errors:
            return ExecutionResult.failure(
                errors[0],
                kind=FailureKind.EXTERNAL_SERVICE,
                operations_performed=len(performed),
                operations=performed,
                errors=errors,
            )
        return ExecutionResult.ok(
            f"Successfully performed {len(performed)} GitHub operations",
            operations_performed=len(performed),
            operations=performed,
        )

    def _create_issue(
        self,
        host: RepositoryHost,
        repo: str,
        operation: dict[str, Any],
        payload_updates: dict[str, Any],
    ) -> dict[str, Any] | str:
        issue = host.create_issue(
            repo,
            title=str(operation["title"]),
            body=str(operation.get("body") or ""),
            labels=list(operation.get("labels") or []),
        )
        if issue is None:
            return f"Failed to create issue {operation['title']!r}"
        created = payload_updates.setdefault(
            "github_created_issues",
            list(self.work_item.payload.get("github_created_issues") or []),
        )
        created.append({"number": issue.number, "html_url": issue.html_url})
        if ISSUE_NUMBER_FIELD not in self.work_item.payload:
            payload_updates.setdefault(ISSUE_NUMBER_FIELD, issue.number)
            payload_updates.setdefault("github_issue_url", issue.html_url)
        return {"operation": "create_issue", "number": issue.number, "html_url": issue.html_url}

    def _create_pr(
        self,
        host: RepositoryHost,
        repo: str,
        operation: dict[str, Any],
        payload_updates: dict[str, Any],
    ) -> dict[str, Any] | str:
        head = str(operation["head"])
        pull_request = host.create_pull_request(
            repo,
            title=str(operation.get("title") or operation.get("pr_title")),
            body=str(operation.get("body") or operation.get("pr_body") or ""),
            head=head,
            base=str(operation["base"]),
        )
        if pull_request is None:
            return f"Failed to create pull request from {head}"
        payload_updates["github_pr_number"] = pull_request.number
        payload_updates["github_pr_url"] = pull_request.html_url
        return {
            "operation": "create_pr",
            "number": pull_request.number,
            "html_url": pull_request.html_url,
        }

    def _create_files_and_pr(
        self,
        host: RepositoryHost,
        repo: str,
        operation: dict[str, Any],
        payload_updates: dict[str, Any],
    ) -> dict[str, Any] | str:
        base = str(operation["base"])
        requested = str(operation.get("branch") or "")
        if BRANCH_NAME_PATTERN.match(requested):
            branch = requested
        else:
            branch = build_branch_name(self.context.agent.key, at=self.context.run.started_at)

        base_sha = host.get_branch_sha(repo, base)
        if base_sha is None:
            return f"Failed to resolve base branch {base}"
        if host.create_branch(repo, branch=branch, sha=base_sha) is BranchCreation.FAILED:
            return f"Failed to create branch {branch}"

        commit_message = str(operation.get("message") or "feat: automated agent work")
        written: list[str] = []
        for entry in operation.get("files") or []:
            path = str(entry["path"])
            encoded = base64.b64encode(str(entry["content"]).encode("utf-8")).decode("ascii")
            existing_sha = host.get_file_sha(repo, path=path, branch=branch)
            if not host.create_or_update_file(
                repo,
                path=path,
                content_base64=encoded,
                branch=branch,
                message=commit_message,
                existing_sha=existing_sha,
            ):
                return f"Failed to write {path} on {branch}"
            written.append(path)

        title = operation.get("pr_title") or operation.get("title")
        pull_request = host.create_pull_request(
            repo,
            title=str(title or f"feat: automated work by {self.context.agent.name}"),
            body=str(operation.get("pr_body") or operation.get("body") or ""),
            head=branch,
            base=base,
        )
        if pull_request is None:
            return f"Failed to create pull request from {branch}"
        payload_updates["github_pr_number"] = pull_request.number
        payload_updates["github_pr_url"] = pull_request.html_url
        return {
            "operation": "create_files_and_pr",
            "branch": branch,
            "files": written,
            "number": pull_request.number,
            "html_url": pull_request.html_url,
        }
