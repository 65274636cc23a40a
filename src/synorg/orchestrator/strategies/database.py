"""Strategy that fans a planning response out into queued work items."""

from __future__ import annotations

import logging
from typing import Any

from synorg.orchestrator.models import (
    ExecutionResult,
    FailureKind,
    WorkItemCreate,
    WorkItemStatus,
)
from synorg.orchestrator.schemas import DEFAULT_WORK_ITEM_PRIORITY, OutputKind
from synorg.orchestrator.strategies.base import ExecutionStrategy

logger = logging.getLogger(__name__)


class DatabaseStrategy(ExecutionStrategy):
    """Upserts one pending work item per ``(project, work_type)`` entry."""

    output_kind = OutputKind.WORK_ITEMS
    empty_message = "No work items provided"

    def _actions(self, response: dict[str, Any]) -> list[Any]:
        return list(response.get("work_items") or [])

    def _execute(self, response: dict[str, Any]) -> ExecutionResult:
        created = 0
        updated = 0
        work_item_ids: list[int] = []
        skipped: list[str] = []

        for entry in self._actions(response):
            agent_key = str(entry.get("agent_key") or "").strip()
            assigned = self.services.agents.get(agent_key) if agent_key else None
            if assigned is None:
                logger.warning("Skipping work item for unknown agent %r", agent_key)
                skipped.append(agent_key)
                continue

            priority = entry.get("priority")
            stored, was_created = self.services.repository.upsert_work_item(
                WorkItemCreate(
                    project_id=self.project.id,
                    work_type=str(entry["work_type"]),
                    payload=dict(entry.get("payload") or {}),
                    priority=DEFAULT_WORK_ITEM_PRIORITY if priority is None else int(priority),
                    assigned_agent_id=assigned.id,
                    status=WorkItemStatus.PENDING,
                ),
            )
            work_item_ids.append(stored.id)
            if was_created:
                created += 1
            else:
                updated += 1

        if not work_item_ids:
            return ExecutionResult.failure(
                "No work items could be assigned to a known agent",
                kind=FailureKind.NOTHING_TO_DO,
                skipped_agent_keys=skipped,
            )
        return ExecutionResult.ok(
            f"Successfully created {created} work items",
            work_items_created=created,
            work_items_updated=updated,
            work_item_ids=work_item_ids,
            skipped_agent_keys=skipped,
        )
