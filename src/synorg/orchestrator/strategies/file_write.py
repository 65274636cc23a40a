"""Strategy that writes generated documents into the project's working tree."""

from __future__ import annotations

import logging
from typing import Any

from synorg.orchestrator.errors import PathTraversalError
from synorg.orchestrator.models import ExecutionResult
from synorg.orchestrator.schemas import OutputKind
from synorg.orchestrator.strategies.base import ExecutionStrategy
from synorg.workspace.workdir import resolve_within

logger = logging.getLogger(__name__)


class FileWriteStrategy(ExecutionStrategy):
    output_kind = OutputKind.FILE_WRITES
    empty_message = "No files provided"

    def _actions(self, response: dict[str, Any]) -> list[Any]:
        return list(response.get("files") or [])

    def _execute(self, response: dict[str, Any]) -> ExecutionResult:
        root = self.services.files_root / self.project.slug
        root.mkdir(parents=True, exist_ok=True)
        files_written: list[str] = []
        rejected: list[str] = []

        for entry in self._actions(response):
            path = entry.get("path")
            content = entry.get("content")
            if not path or content is None:
                continue
            try:
                target = resolve_within(root, str(path))
            except PathTraversalError:
                logger.warning("Rejected file path outside %s: %r", root, path)
                rejected.append(str(path))
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(str(content), "utf-8")
            files_written.append(str(path))

        logger.info("Wrote %d file(s) under %s", len(files_written), root)
        return ExecutionResult.ok(
            f"Successfully wrote {len(files_written)} files",
            files_written=files_written,
            rejected_paths=rejected,
        )
