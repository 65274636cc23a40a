"""Strategy that hands repository changes to the workspace executor."""

from __future__ import annotations

from typing import Any

from synorg.orchestrator.models import ExecutionResult
from synorg.orchestrator.schemas import OutputKind
from synorg.orchestrator.strategies.base import ExecutionStrategy
from synorg.workspace.executor import WorkspaceChangeRequest
from synorg.workspace.workdir import FileChange


class WorkspaceStrategy(ExecutionStrategy):
    output_kind = OutputKind.WORKSPACE_CHANGES
    empty_message = "No file changes provided"

    def _actions(self, response: dict[str, Any]) -> list[Any]:
        return list(_changes(response).get("files") or [])

    def _execute(self, response: dict[str, Any]) -> ExecutionResult:
        changes = _changes(response)
        request = WorkspaceChangeRequest(
            files=[
                FileChange(path=str(entry["path"]), content=str(entry["content"]))
                for entry in self._actions(response)
            ],
            message=changes.get("message"),
            pr_title=changes.get("pr_title"),
            pr_body=changes.get("pr_body"),
        )
        return self.services.workspace_executor.execute(
            project=self.project,
            agent=self.context.agent,
            work_item=self.work_item,
            run=self.context.run,
            request=request,
        )


def _changes(response: dict[str, Any]) -> dict[str, Any]:
    """Accept both ``{"changes": {"files": [...]}}`` and a bare file list."""

    changes = response.get("changes")
    if isinstance(changes, list):
        return {"files": changes}
    if isinstance(changes, dict):
        return changes
    return {}
