"""Exclusive work assignment: lease, release, complete and reap stale leases."""

from __future__ import annotations

import logging
from datetime import timedelta

from synorg.orchestrator.models import (
    AgentView,
    LeasedWorkItem,
    RunCorrelation,
    RunOutcome,
    RunView,
    WorkItemView,
)
from synorg.orchestrator.repository import WorkRepository

logger = logging.getLogger(__name__)


class LeasingService:
    """Claims work for agents using skip-locked selection (CAS on SQLite)."""

    def __init__(self, repository: WorkRepository) -> None:
        self.repository = repository

    def lease_next(
        self,
        agent: AgentView,
        *,
        work_types: tuple[str, ...] | None = None,
    ) -> LeasedWorkItem | None:
        """Claim the highest-priority pending item for ``agent`` and open its run.

        ``work_types`` narrows eligible items; by default the agent's declared
        ``capabilities["work_types"]`` are used, and an empty set means any type.
        """

        if not agent.enabled:
            logger.info("Agent %s is disabled; not leasing", agent.key)
            return None
        effective_types = agent.work_types if work_types is None else work_types
        leased = self.repository.claim_next_work_item(
            agent_id=agent.id,
            work_types=effective_types,
        )
        if leased is None:
            logger.debug("No eligible work for agent %s", agent.key)
            return None
        logger.info(
            "Agent %s leased work item %s (%s, priority=%s) run=%s",
            agent.key,
            leased.work_item.id,
            leased.work_item.work_type,
            leased.work_item.priority,
            leased.run.id,
        )
        return leased

    def release(self, work_item: WorkItemView) -> None:
        """Drop the claim marker, keeping status, after an infrastructure failure."""

        if self.repository.release_work_item(work_item_id=work_item.id):
            logger.info("Released lease on work item %s", work_item.id)

    def complete(
        self,
        work_item: WorkItemView,
        run: RunView,
        outcome: RunOutcome,
        *,
        logs: str | None = None,
        correlation: RunCorrelation | None = None,
    ) -> bool:
        """Finalize item status and run outcome in one transaction.

        Re-finalizing an already finished run is a no-op for its outcome.
        """

        finalized = self.repository.complete_work_item(
            work_item_id=work_item.id,
            run_id=run.id,
            outcome=outcome,
            logs=logs,
            correlation=correlation,
        )
        logger.info(
            "Work item %s finished with %s (run %s %s)",
            work_item.id,
            outcome.value,
            run.id,
            "finalized" if finalized else "already finalized",
        )
        return finalized

    def recover_stale_leases(self, *, stale_after: timedelta) -> list[int]:
        """Return items leased longer than ``stale_after`` to ``pending``."""

        recovered = self.repository.recover_stale_leases(stale_after=stale_after)
        for work_item_id in recovered:
            logger.warning("Recovered stale lease on work item %s", work_item_id)
        return recovered
