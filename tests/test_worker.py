from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

import allure
import pytest
from sqlalchemy import update as sa_update
from sqlmodel import Session, col

from synorg.orchestrator.agents import AgentDirectory
from synorg.orchestrator.leasing import LeasingService
from synorg.orchestrator.models import (
    AgentView,
    ExecutionResult,
    FailureKind,
    ProjectView,
    RunOutcome,
    WorkItemCreate,
    WorkItemStatus,
    WorkItemView,
)
from synorg.orchestrator.worker import QueueWorker
from synorg.storage.common import to_db_datetime, utc_now
from synorg.storage.sqlmodel_models import WorkItem

pytestmark = [
    allure.epic("Execution"),
    allure.feature("Queue Worker"),
]


@dataclass
class StubRunner:
    """Finalizes each item as the real runner would, failing ``fail_types``."""

    repository: object
    fail_types: set[str] = field(default_factory=set)
    seen: list[int] = field(default_factory=list)

    def run(self, agent: AgentView, project: ProjectView, work_item: WorkItemView):
        self.seen.append(work_item.id)
        run = self.repository.find_open_run(work_item_id=work_item.id, agent_id=agent.id)
        if work_item.work_type in self.fail_types:
            result = ExecutionResult.failure("scripted failure", kind=FailureKind.EXTERNAL_SERVICE)
            outcome = RunOutcome.FAILURE
        else:
            result = ExecutionResult.ok("done")
            outcome = RunOutcome.SUCCESS
        LeasingService(self.repository).complete(work_item, run, outcome, logs=result.message)
        return result


def _worker(repository, agent, runner, **kwargs) -> QueueWorker:
    return QueueWorker(
        repository=repository,
        runner=runner,
        agent=agent,
        poll_interval_seconds=0,
        **kwargs,
    )


def test_run_once_on_empty_queue_is_idle(repository, make_agent) -> None:
    agent = make_agent()
    runner = StubRunner(repository)

    summary = _worker(repository, agent, runner).run_once()

    assert (summary.processed, summary.idle_polls) == (0, 1)
    assert runner.seen == []


def test_run_loop_drains_queue_in_priority_order(repository, make_project, make_agent) -> None:
    project = make_project()
    agent = make_agent()
    low = repository.enqueue_work_item(
        WorkItemCreate(project_id=project.id, work_type="docs", priority=1),
    )
    high = repository.enqueue_work_item(
        WorkItemCreate(project_id=project.id, work_type="gtm", priority=9),
    )
    runner = StubRunner(repository, fail_types={"docs"})

    summary = _worker(repository, agent, runner).run_loop(max_idle_polls=2)

    assert runner.seen == [high.id, low.id]
    assert (summary.processed, summary.succeeded, summary.failed) == (2, 1, 1)
    assert summary.idle_polls == 2
    done = repository.get_work_item(high.id)
    failed = repository.get_work_item(low.id)
    assert done is not None and failed is not None
    assert done.status == WorkItemStatus.COMPLETED
    assert failed.status == WorkItemStatus.FAILED


def test_run_loop_honours_max_items(repository, make_project, make_agent) -> None:
    project = make_project()
    agent = make_agent()
    for work_type in ("docs", "gtm", "issue"):
        repository.enqueue_work_item(WorkItemCreate(project_id=project.id, work_type=work_type))
    runner = StubRunner(repository)

    summary = _worker(repository, agent, runner).run_loop(max_items=2)

    assert summary.processed == 2
    assert len(repository.list_work_items(status=WorkItemStatus.PENDING)) == 1


def test_stopped_worker_does_not_lease(repository, make_project, make_agent) -> None:
    project = make_project()
    agent = make_agent()
    repository.enqueue_work_item(WorkItemCreate(project_id=project.id, work_type="docs"))
    runner = StubRunner(repository)
    worker = _worker(repository, agent, runner)

    worker.request_stop()

    assert worker.run_loop().processed == 0
    assert runner.seen == []


def test_stale_lease_is_recovered_before_claiming(repository, make_project, make_agent) -> None:
    project = make_project()
    crashed = make_agent(key="crashed")
    healthy = make_agent(key="healthy")
    item = repository.enqueue_work_item(WorkItemCreate(project_id=project.id, work_type="docs"))
    assert LeasingService(repository).lease_next(crashed) is not None
    with Session(repository.engine) as session:
        session.exec(
            sa_update(WorkItem)
            .where(col(WorkItem.id) == item.id)
            .values(locked_at=to_db_datetime(utc_now() - timedelta(days=1))),
        )
        session.commit()
    runner = StubRunner(repository)

    summary = _worker(repository, healthy, runner, stale_lease_seconds=60).run_once()

    assert summary.processed == 1
    assert runner.seen == [item.id]


class _CountingAgents:
    def __init__(self, repository) -> None:
        self.repository = repository
        self.lookups = 0

    def get_agent_by_key(self, key: str):
        self.lookups += 1
        return self.repository.get_agent_by_key(key)


class TestAgentDirectory:
    def test_hits_are_cached_until_ttl_expires(self, repository, make_agent) -> None:
        make_agent(key="docs-bot")
        counting = _CountingAgents(repository)
        now = [100.0]
        directory = AgentDirectory(counting, ttl_seconds=10, clock=lambda: now[0])

        first = directory.get("docs-bot")
        second = directory.get(" docs-bot ")

        assert first is not None and second is not None
        assert counting.lookups == 1
        now[0] += 11
        assert directory.get("docs-bot") is not None
        assert counting.lookups == 2

    def test_misses_are_not_cached(self, repository, make_agent) -> None:
        directory = AgentDirectory(repository)

        assert directory.get("late-bot") is None
        make_agent(key="late-bot")
        assert directory.get("late-bot") is not None

    def test_invalidate_forces_reload(self, repository, make_agent) -> None:
        make_agent(key="docs-bot")
        counting = _CountingAgents(repository)
        directory = AgentDirectory(counting)

        directory.get("docs-bot")
        directory.invalidate("docs-bot")
        directory.get("docs-bot")
        directory.invalidate()
        directory.get("docs-bot")

        assert counting.lookups == 3

    @pytest.mark.parametrize("key", ["", "   "])
    def test_blank_keys_resolve_to_none(self, repository, key: str) -> None:
        assert AgentDirectory(repository).get(key) is None
