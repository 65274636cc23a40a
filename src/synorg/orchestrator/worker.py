"""Per-agent queue worker that leases work items and runs them."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta

from synorg.orchestrator.leasing import LeasingService
from synorg.orchestrator.models import AgentView, LeasedWorkItem
from synorg.orchestrator.repository import WorkRepository
from synorg.orchestrator.runner import AgentRunner

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    idle_polls: int = 0


class QueueWorker:
    """Consumes pending work items for one agent."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: WorkRepository,
        runner: AgentRunner,
        agent: AgentView,
        leasing: LeasingService | None = None,
        poll_interval_seconds: float = 2.0,
        stale_lease_seconds: int = 3_600,
    ) -> None:
        self.repository = repository
        self.runner = runner
        self.agent = agent
        self.leasing = leasing or LeasingService(repository)
        self.poll_interval_seconds = poll_interval_seconds
        self.stale_lease_seconds = stale_lease_seconds
        self._stop_requested = False

    def run_once(self) -> WorkerRunSummary:
        """Process at most one work item from the queue."""

        summary = WorkerRunSummary()
        leased = self._claim_work_item()
        if leased is None:
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        work_item = leased.work_item
        project = self.repository.get_project(work_item.project_id)
        if project is None:
            logger.error(
                "Work item %s references missing project %s",
                work_item.id,
                work_item.project_id,
            )
            self.leasing.release(work_item)
            summary.failed = 1
            return summary

        result = self.runner.run(self.agent, project, work_item)
        if result.success:
            summary.succeeded = 1
        else:
            summary.failed = 1
        return summary

    def run_loop(
        self,
        *,
        max_items: int | None = None,
        max_idle_polls: int | None = 1,
    ) -> WorkerRunSummary:
        """Run until the queue is idle or ``max_items`` were processed.

        Args:
            max_items: Stop after processing this many items (None = unlimited).
            max_idle_polls: Consecutive empty polls before exiting (None = poll forever).
        """

        aggregate = WorkerRunSummary()
        consecutive_idle = 0
        with self._signal_handlers():
            while True:
                if self._stop_requested:
                    return aggregate
                if max_items is not None and aggregate.processed >= max_items:
                    return aggregate

                summary = self.run_once()
                aggregate.processed += summary.processed
                aggregate.succeeded += summary.succeeded
                aggregate.failed += summary.failed
                aggregate.idle_polls += summary.idle_polls

                if summary.processed == 0:
                    consecutive_idle += 1
                    if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                        return aggregate
                    self._sleep_with_stop(self.poll_interval_seconds)
                    continue
                consecutive_idle = 0

    def request_stop(self) -> None:
        self._stop_requested = True

    def _claim_work_item(self) -> LeasedWorkItem | None:
        self._recover_stale_leases()
        if self._stop_requested:
            return None
        return self.leasing.lease_next(self.agent)

    def _recover_stale_leases(self) -> None:
        if self.stale_lease_seconds <= 0:
            return
        self.leasing.recover_stale_leases(stale_after=timedelta(seconds=self.stale_lease_seconds))

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.info("Received %s; stopping after the current work item", name)
            self.request_stop()

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)
        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            installed = False
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)
