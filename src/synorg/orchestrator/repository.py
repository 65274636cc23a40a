"""Persistent work store facade backed by SQLModel."""

from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from synorg.orchestrator.models import (
    AgentCreate,
    AgentView,
    IdempotencyClaim,
    LeasedWorkItem,
    ProjectCreate,
    ProjectView,
    RunCorrelation,
    RunOutcome,
    RunView,
    WorkItemCreate,
    WorkItemStatus,
    WorkItemView,
)
from synorg.storage.alembic_runner import upgrade_head
from synorg.storage.common import (
    build_engine,
    supports_skip_locked,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from synorg.storage.sqlmodel_models import Agent, Project, Run, WebhookEvent, WorkItem

ISSUE_WORK_TYPE = "issue"
ISSUE_NUMBER_FIELD = "github_issue_number"


class WorkRepository:
    """Work item, run, project and agent persistence over one relational store."""

    def __init__(
        self,
        db_path: Path | None = None,
        *,
        database_url: str | None = None,
        sqlite_busy_timeout_ms: int = 5_000,
    ) -> None:
        if database_url is None:
            if db_path is None:
                raise ValueError("Either db_path or database_url is required.")
            database_url = f"sqlite:///{db_path}"
        self.database_url = database_url
        self.engine = build_engine(url=database_url, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        upgrade_head(self.database_url)

    # -- projects & agents -------------------------------------------------

    def create_project(self, payload: ProjectCreate) -> ProjectView:
        now = utc_now()
        with Session(self.engine) as session:
            row = Project(
                slug=payload.slug,
                name=payload.name,
                brief=payload.brief,
                repo_full_name=payload.repo_full_name,
                repo_default_branch=payload.repo_default_branch,
                github_token_ref=payload.github_token_ref,
                webhook_secret=payload.webhook_secret,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_project_view(row)

    def get_project(self, project_id: int) -> ProjectView | None:
        with Session(self.engine) as session:
            row = session.get(Project, project_id)
            return _to_project_view(row) if row is not None else None

    def get_project_by_slug(self, slug: str) -> ProjectView | None:
        with Session(self.engine) as session:
            row = session.exec(select(Project).where(Project.slug == slug)).one_or_none()
            return _to_project_view(row) if row is not None else None

    def list_projects_with_webhook_secret(self) -> list[ProjectView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(Project)
                .where(col(Project.webhook_secret).is_not(None))
                .order_by(col(Project.id).asc()),
            ).all()
            return [_to_project_view(row) for row in rows]

    def create_agent(self, payload: AgentCreate) -> AgentView:
        if payload.max_concurrency <= 0:
            raise ValueError("Agent max_concurrency must be > 0.")
        now = utc_now()
        with Session(self.engine) as session:
            row = Agent(
                key=payload.key,
                name=payload.name,
                prompt=payload.prompt,
                capabilities=dict(payload.capabilities),
                max_concurrency=payload.max_concurrency,
                enabled=payload.enabled,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_agent_view(row)

    def get_agent(self, agent_id: int) -> AgentView | None:
        with Session(self.engine) as session:
            row = session.get(Agent, agent_id)
            return _to_agent_view(row) if row is not None else None

    def get_agent_by_key(self, key: str) -> AgentView | None:
        with Session(self.engine) as session:
            row = session.exec(select(Agent).where(Agent.key == key)).one_or_none()
            return _to_agent_view(row) if row is not None else None

    # -- work items --------------------------------------------------------

    def enqueue_work_item(self, payload: WorkItemCreate) -> WorkItemView:
        """Create a work item."""

        now = utc_now()
        with Session(self.engine) as session:
            row = WorkItem(
                project_id=payload.project_id,
                work_type=payload.work_type,
                payload=dict(payload.payload),
                status=payload.status.value,
                priority=payload.priority,
                assigned_agent_id=payload.assigned_agent_id,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_work_item_view(row)

    def upsert_work_item(self, payload: WorkItemCreate) -> tuple[WorkItemView, bool]:
        """Create or reset the unlocked work item keyed by (project, work_type).

        Returns the stored item and whether it was newly created.
        """

        now = utc_now()
        with Session(self.engine) as session:
            row = session.exec(
                select(WorkItem)
                .where(
                    WorkItem.project_id == payload.project_id,
                    WorkItem.work_type == payload.work_type,
                    col(WorkItem.locked_by_agent_id).is_(None),
                )
                .order_by(col(WorkItem.id).desc())
                .limit(1),
            ).one_or_none()
            created = row is None
            if row is None:
                row = WorkItem(
                    project_id=payload.project_id,
                    work_type=payload.work_type,
                    created_at=now,
                )
            row.payload = dict(payload.payload)
            row.status = payload.status.value
            row.priority = payload.priority
            row.assigned_agent_id = payload.assigned_agent_id
            row.updated_at = now
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_work_item_view(row), created

    def get_work_item(self, work_item_id: int) -> WorkItemView | None:
        with Session(self.engine) as session:
            row = session.get(WorkItem, work_item_id)
            return _to_work_item_view(row) if row is not None else None

    def list_work_items(
        self,
        *,
        status: WorkItemStatus | None = None,
        project_id: int | None = None,
        limit: int = 50,
    ) -> list[WorkItemView]:
        query = select(WorkItem)
        if status is not None:
            query = query.where(WorkItem.status == status.value)
        if project_id is not None:
            query = query.where(WorkItem.project_id == project_id)
        query = query.order_by(col(WorkItem.priority).desc(), col(WorkItem.created_at).asc())
        with Session(self.engine) as session:
            rows = session.exec(query.limit(max(1, limit))).all()
            return [_to_work_item_view(row) for row in rows]

    def claim_next_work_item(
        self,
        *,
        agent_id: int,
        work_types: tuple[str, ...] = (),
    ) -> LeasedWorkItem | None:
        """Atomically claim the most urgent unlocked pending item and open a run for it."""

        if supports_skip_locked(self.engine):
            return self._claim_skip_locked(agent_id=agent_id, work_types=work_types)
        return self._claim_compare_and_swap(agent_id=agent_id, work_types=work_types)

    def _claim_skip_locked(
        self,
        *,
        agent_id: int,
        work_types: tuple[str, ...],
    ) -> LeasedWorkItem | None:
        now = utc_now()
        with Session(self.engine) as session:
            row = session.exec(
                _eligible_work_items(work_types).limit(1).with_for_update(skip_locked=True),
            ).one_or_none()
            if row is None:
                return None
            row.status = WorkItemStatus.IN_PROGRESS.value
            row.locked_at = now
            row.locked_by_agent_id = agent_id
            if row.assigned_agent_id is None:
                row.assigned_agent_id = agent_id
            row.updated_at = now
            session.add(row)
            run = _new_run(agent_id=agent_id, work_item_id=_require_id(row.id), now=now)
            session.add(run)
            session.commit()
            session.refresh(row)
            session.refresh(run)
            return LeasedWorkItem(work_item=_to_work_item_view(row), run=_to_run_view(run))

    def _claim_compare_and_swap(
        self,
        *,
        agent_id: int,
        work_types: tuple[str, ...],
    ) -> LeasedWorkItem | None:
        while True:
            now = utc_now()
            # The guarded update opens its own transaction; upgrading a WAL read
            # snapshot to a writer fails immediately when another claim committed.
            with Session(self.engine) as session:
                candidate = session.exec(_eligible_work_items(work_types).limit(1)).one_or_none()
                if candidate is None:
                    return None
                candidate_id = _require_id(candidate.id)

            with Session(self.engine) as session:
                result = session.exec(
                    sa_update(WorkItem)
                    .where(
                        col(WorkItem.id) == candidate_id,
                        col(WorkItem.status) == WorkItemStatus.PENDING.value,
                        col(WorkItem.locked_by_agent_id).is_(None),
                    )
                    .values(
                        status=WorkItemStatus.IN_PROGRESS.value,
                        locked_at=to_db_datetime(now),
                        locked_by_agent_id=agent_id,
                        assigned_agent_id=func.coalesce(col(WorkItem.assigned_agent_id), agent_id),
                        updated_at=to_db_datetime(now),
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    continue

                run = _new_run(agent_id=agent_id, work_item_id=candidate_id, now=now)
                session.add(run)
                session.commit()
                claimed = session.exec(select(WorkItem).where(WorkItem.id == candidate_id)).one()
                session.refresh(run)
                return LeasedWorkItem(work_item=_to_work_item_view(claimed), run=_to_run_view(run))

    def release_work_item(self, *, work_item_id: int) -> bool:
        """Clear the claim marker without touching status."""

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(WorkItem)
                .where(col(WorkItem.id) == work_item_id)
                .values(locked_at=None, locked_by_agent_id=None, updated_at=to_db_datetime(now)),
            )
            session.commit()
            return result.rowcount == 1

    def complete_work_item(  # noqa: PLR0913
        self,
        *,
        work_item_id: int,
        run_id: int,
        outcome: RunOutcome,
        logs: str | None = None,
        correlation: RunCorrelation | None = None,
    ) -> bool:
        """Set item status from outcome, clear its lock, and finalize the run once.

        Returns whether this call finalized the run; correlation fields are still
        back-filled when another path finalized it first.
        """

        now = utc_now()
        status = (
            WorkItemStatus.COMPLETED if outcome == RunOutcome.SUCCESS else WorkItemStatus.FAILED
        )
        correlation_values = correlation.as_values() if correlation is not None else {}
        with Session(self.engine) as session:
            session.exec(
                sa_update(WorkItem)
                .where(col(WorkItem.id) == work_item_id)
                .values(
                    status=status.value,
                    locked_at=None,
                    locked_by_agent_id=None,
                    updated_at=to_db_datetime(now),
                ),
            )
            run_values: dict[str, Any] = {
                "outcome": outcome.value,
                "finished_at": to_db_datetime(now),
                "updated_at": to_db_datetime(now),
                **correlation_values,
            }
            if logs is not None:
                run_values["logs"] = logs
            result = session.exec(
                sa_update(Run)
                .where(col(Run.id) == run_id, col(Run.outcome).is_(None))
                .values(**run_values),
            )
            finalized = result.rowcount == 1
            if not finalized and correlation_values:
                session.exec(
                    sa_update(Run)
                    .where(col(Run.id) == run_id)
                    .values(**correlation_values, updated_at=to_db_datetime(now)),
                )
            session.commit()
            return finalized

    def set_work_item_status(self, *, work_item_id: int, status: WorkItemStatus) -> None:
        now = utc_now()
        values: dict[str, Any] = {"status": status.value, "updated_at": to_db_datetime(now)}
        if status in {WorkItemStatus.COMPLETED, WorkItemStatus.FAILED}:
            values["locked_at"] = None
            values["locked_by_agent_id"] = None
        with Session(self.engine) as session:
            session.exec(
                sa_update(WorkItem).where(col(WorkItem.id) == work_item_id).values(**values),
            )
            session.commit()

    def merge_work_item_payload(
        self,
        *,
        work_item_id: int,
        updates: dict[str, Any],
    ) -> WorkItemView | None:
        """Shallow-merge ``updates`` into the stored payload."""

        with Session(self.engine) as session:
            row = session.get(WorkItem, work_item_id)
            if row is None:
                return None
            row.payload = {**(row.payload or {}), **updates}
            row.updated_at = utc_now()
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_work_item_view(row)

    def recover_stale_leases(self, *, stale_after: timedelta) -> list[int]:
        """Return expired in-progress items to the queue and fail their open runs."""

        now = utc_now()
        cutoff = to_db_datetime(now - stale_after)
        recovered: list[int] = []
        with Session(self.engine) as session:
            stale_ids = session.exec(
                select(WorkItem.id).where(
                    WorkItem.status == WorkItemStatus.IN_PROGRESS.value,
                    col(WorkItem.locked_at).is_not(None),
                    col(WorkItem.locked_at) < cutoff,
                ),
            ).all()
        if not stale_ids:
            return recovered

        with Session(self.engine) as session:
            for work_item_id in stale_ids:
                result = session.exec(
                    sa_update(WorkItem)
                    .where(
                        col(WorkItem.id) == work_item_id,
                        col(WorkItem.status) == WorkItemStatus.IN_PROGRESS.value,
                        col(WorkItem.locked_at) < cutoff,
                    )
                    .values(
                        status=WorkItemStatus.PENDING.value,
                        locked_at=None,
                        locked_by_agent_id=None,
                        updated_at=to_db_datetime(now),
                    ),
                )
                if result.rowcount != 1:
                    continue
                session.exec(
                    sa_update(Run)
                    .where(col(Run.work_item_id) == work_item_id, col(Run.outcome).is_(None))
                    .values(
                        outcome=RunOutcome.FAILURE.value,
                        finished_at=to_db_datetime(now),
                        logs=(
                            f"Lease expired after {int(stale_after.total_seconds())}s; "
                            "work item returned to the queue."
                        ),
                        updated_at=to_db_datetime(now),
                    ),
                )
                recovered.append(_require_id(work_item_id))
            session.commit()
        return recovered

    def find_issue_work_item(self, *, project_id: int, issue_number: int) -> WorkItemView | None:
        with Session(self.engine) as session:
            row = session.exec(
                _issue_work_item_query(project_id=project_id, issue_number=issue_number),
            ).one_or_none()
            return _to_work_item_view(row) if row is not None else None

    def upsert_issue_work_item(
        self,
        *,
        project_id: int,
        issue_number: int,
        fields: dict[str, Any],
        is_open: bool,
    ) -> WorkItemView:
        """Create or merge the ``issue`` work item correlated by issue number."""

        now = utc_now()
        with Session(self.engine) as session:
            row = session.exec(
                _issue_work_item_query(project_id=project_id, issue_number=issue_number),
            ).one_or_none()
            if row is None:
                row = WorkItem(
                    project_id=project_id,
                    work_type=ISSUE_WORK_TYPE,
                    payload={},
                    status=WorkItemStatus.PENDING.value,
                    priority=0,
                    created_at=now,
                )
            row.payload = {**(row.payload or {}), **fields, ISSUE_NUMBER_FIELD: issue_number}
            if not is_open:
                row.status = WorkItemStatus.COMPLETED.value
                row.locked_at = None
                row.locked_by_agent_id = None
            elif row.locked_by_agent_id is None:
                row.status = WorkItemStatus.PENDING.value
            row.updated_at = now
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_work_item_view(row)

    # -- runs --------------------------------------------------------------

    def create_run(
        self,
        *,
        agent_id: int,
        work_item_id: int,
        idempotency_key: str | None = None,
    ) -> RunView:
        now = utc_now()
        with Session(self.engine) as session:
            row = _new_run(agent_id=agent_id, work_item_id=work_item_id, now=now)
            row.idempotency_key = idempotency_key
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_run_view(row)

    def get_run(self, run_id: int) -> RunView | None:
        with Session(self.engine) as session:
            row = session.get(Run, run_id)
            return _to_run_view(row) if row is not None else None

    def list_runs(self, *, work_item_id: int | None = None, limit: int = 20) -> list[RunView]:
        query = select(Run)
        if work_item_id is not None:
            query = query.where(Run.work_item_id == work_item_id)
        query = query.order_by(col(Run.id).desc()).limit(max(1, limit))
        with Session(self.engine) as session:
            return [_to_run_view(row) for row in session.exec(query).all()]

    def find_open_run(self, *, work_item_id: int, agent_id: int) -> RunView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(Run)
                .where(
                    Run.work_item_id == work_item_id,
                    Run.agent_id == agent_id,
                    col(Run.outcome).is_(None),
                )
                .order_by(col(Run.id).desc())
                .limit(1),
            ).one_or_none()
            return _to_run_view(row) if row is not None else None

    def find_run_by_idempotency_key(self, key: str) -> RunView | None:
        with Session(self.engine) as session:
            row = session.exec(select(Run).where(Run.idempotency_key == key)).one_or_none()
            return _to_run_view(row) if row is not None else None

    def claim_idempotency_key(self, *, run_id: int, key: str) -> IdempotencyClaim:
        """Attach ``key`` to ``run_id`` unless a successful or open run already holds it.

        A key held by a failed run moves to the new run in the same transaction.
        """

        now = utc_now()
        with Session(self.engine) as session:
            holder = session.exec(select(Run).where(Run.idempotency_key == key)).one_or_none()
            if holder is not None and holder.id != run_id:
                if holder.outcome == RunOutcome.SUCCESS.value:
                    return IdempotencyClaim.ALREADY_SUCCEEDED
                if holder.outcome is None:
                    return IdempotencyClaim.IN_FLIGHT
                holder.idempotency_key = None
                holder.updated_at = now
                session.add(holder)
                session.flush()
            session.exec(
                sa_update(Run)
                .where(col(Run.id) == run_id)
                .values(idempotency_key=key, updated_at=to_db_datetime(now)),
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return IdempotencyClaim.IN_FLIGHT
            return IdempotencyClaim.CLAIMED

    def finalize_run(
        self,
        *,
        run_id: int,
        outcome: RunOutcome,
        logs: str | None = None,
        correlation: RunCorrelation | None = None,
        finished_at: datetime | None = None,
    ) -> bool:
        """Set terminal outcome only when the run is still open."""

        now = utc_now()
        values: dict[str, Any] = {
            "outcome": outcome.value,
            "finished_at": to_db_datetime(finished_at or now),
            "updated_at": to_db_datetime(now),
        }
        if logs is not None:
            values["logs"] = logs
        if correlation is not None:
            values.update(correlation.as_values())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Run)
                .where(col(Run.id) == run_id, col(Run.outcome).is_(None))
                .values(**values),
            )
            session.commit()
            return result.rowcount == 1

    def update_run_correlation(self, *, run_id: int, correlation: RunCorrelation) -> None:
        values = correlation.as_values()
        if not values:
            return
        with Session(self.engine) as session:
            session.exec(
                sa_update(Run)
                .where(col(Run.id) == run_id)
                .values(**values, updated_at=to_db_datetime(utc_now())),
            )
            session.commit()

    def record_run_costs(self, *, run_id: int, costs: dict[str, Any]) -> None:
        with Session(self.engine) as session:
            row = session.get(Run, run_id)
            if row is None:
                return
            row.costs = {**(row.costs or {}), **costs}
            row.updated_at = utc_now()
            session.add(row)
            session.commit()

    def find_or_create_run_for_pull_request(
        self,
        *,
        project_id: int,
        agent_id: int,
        work_item_id: int,
        pr_number: int,
    ) -> RunView:
        """Return the run tracking a pull request, creating it at most once."""

        existing = self.find_run_by_pr_number(project_id=project_id, pr_number=pr_number)
        if existing is not None:
            return existing
        key = f"pull_request:{project_id}:{pr_number}"
        now = utc_now()
        with Session(self.engine) as session:
            row = _new_run(agent_id=agent_id, work_item_id=work_item_id, now=now)
            row.idempotency_key = key
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                raced = session.exec(select(Run).where(Run.idempotency_key == key)).one()
                return _to_run_view(raced)
            session.refresh(row)
            return _to_run_view(row)

    def find_run_by_pr_number(self, *, project_id: int, pr_number: int) -> RunView | None:
        return self._find_project_run(project_id, col(Run.github_pr_number) == pr_number)

    def find_run_by_head_sha(self, *, project_id: int, head_sha: str) -> RunView | None:
        return self._find_project_run(project_id, col(Run.github_pr_head_sha) == head_sha)

    def find_run_by_check_suite(self, *, project_id: int, check_suite_id: int) -> RunView | None:
        return self._find_project_run(project_id, col(Run.github_check_suite_id) == check_suite_id)

    def find_run_by_logs_url(self, *, work_item_id: int, logs_url: str) -> RunView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(Run)
                .where(Run.work_item_id == work_item_id, Run.logs_url == logs_url)
                .order_by(col(Run.id).desc())
                .limit(1),
            ).one_or_none()
            return _to_run_view(row) if row is not None else None

    def latest_run_for_work_item(self, *, work_item_id: int) -> RunView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(Run)
                .where(Run.work_item_id == work_item_id)
                .order_by(col(Run.created_at).desc(), col(Run.id).desc())
                .limit(1),
            ).one_or_none()
            return _to_run_view(row) if row is not None else None

    def _find_project_run(self, project_id: int, criterion: Any) -> RunView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(Run)
                .join(WorkItem, col(WorkItem.id) == col(Run.work_item_id))
                .where(WorkItem.project_id == project_id, criterion)
                .order_by(col(Run.id).desc())
                .limit(1),
            ).one_or_none()
            return _to_run_view(row) if row is not None else None

    # -- webhook deliveries ------------------------------------------------

    def record_webhook_event(
        self,
        *,
        project_id: int | None,
        delivery_id: str,
        event_type: str,
        payload: dict[str, Any],
    ) -> bool:
        """Persist one delivery; ``False`` once the delivery id has been processed.

        A delivery recorded earlier whose processing never completed is reported
        as new again so a redelivery gets applied.
        """

        with Session(self.engine) as session:
            session.add(
                WebhookEvent(
                    project_id=project_id,
                    delivery_id=delivery_id,
                    event_type=event_type,
                    payload=payload,
                    created_at=utc_now(),
                ),
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
            else:
                return True
            existing = session.exec(
                select(WebhookEvent).where(WebhookEvent.delivery_id == delivery_id),
            ).one_or_none()
            return existing is not None and existing.processed_at is None

    def mark_webhook_event_processed(self, delivery_id: str) -> None:
        with Session(self.engine) as session:
            session.exec(
                sa_update(WebhookEvent)
                .where(col(WebhookEvent.delivery_id) == delivery_id)
                .values(processed_at=to_db_datetime(utc_now())),
            )
            session.commit()

    def count_webhook_events(self, *, project_id: int | None = None) -> int:
        query = select(func.count()).select_from(WebhookEvent)
        if project_id is not None:
            query = query.where(WebhookEvent.project_id == project_id)
        with Session(self.engine) as session:
            return int(session.exec(query).one())


def _eligible_work_items(work_types: tuple[str, ...]):
    query = select(WorkItem).where(
        WorkItem.status == WorkItemStatus.PENDING.value,
        col(WorkItem.locked_by_agent_id).is_(None),
    )
    if work_types:
        query = query.where(col(WorkItem.work_type).in_(work_types))
    return query.order_by(
        col(WorkItem.priority).desc(),
        col(WorkItem.created_at).asc(),
        col(WorkItem.id).asc(),
    )


def _issue_work_item_query(*, project_id: int, issue_number: int):
    return (
        select(WorkItem)
        .where(
            WorkItem.project_id == project_id,
            WorkItem.work_type == ISSUE_WORK_TYPE,
            col(WorkItem.payload)[ISSUE_NUMBER_FIELD].as_integer() == issue_number,
        )
        .order_by(col(WorkItem.id).asc())
        .limit(1)
    )


def _new_run(*, agent_id: int, work_item_id: int, now: datetime) -> Run:
    return Run(
        agent_id=agent_id,
        work_item_id=work_item_id,
        started_at=now,
        costs={},
        created_at=now,
        updated_at=now,
    )


def _require_id(value: int | None) -> int:
    if value is None:
        raise RuntimeError("Row identifier is not assigned.")
    return value


def _optional_datetime(value: datetime | None) -> datetime | None:
    return to_utc_aware_datetime(value) if value is not None else None


def _to_project_view(row: Project) -> ProjectView:
    return ProjectView(
        id=_require_id(row.id),
        slug=row.slug,
        name=row.name,
        brief=row.brief,
        repo_full_name=row.repo_full_name,
        repo_default_branch=row.repo_default_branch or "main",
        github_token_ref=row.github_token_ref,
        webhook_secret=row.webhook_secret,
    )


def _to_agent_view(row: Agent) -> AgentView:
    return AgentView(
        id=_require_id(row.id),
        key=row.key,
        name=row.name,
        prompt=row.prompt,
        capabilities=dict(row.capabilities or {}),
        max_concurrency=row.max_concurrency,
        enabled=row.enabled,
    )


def _to_work_item_view(row: WorkItem) -> WorkItemView:
    return WorkItemView(
        id=_require_id(row.id),
        project_id=row.project_id,
        work_type=row.work_type,
        payload=dict(row.payload or {}),
        status=WorkItemStatus(row.status),
        priority=row.priority,
        assigned_agent_id=row.assigned_agent_id,
        locked_at=_optional_datetime(row.locked_at),
        locked_by_agent_id=row.locked_by_agent_id,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_run_view(row: Run) -> RunView:
    return RunView(
        id=_require_id(row.id),
        agent_id=row.agent_id,
        work_item_id=row.work_item_id,
        started_at=_optional_datetime(row.started_at),
        finished_at=_optional_datetime(row.finished_at),
        outcome=RunOutcome(row.outcome) if row.outcome is not None else None,
        idempotency_key=row.idempotency_key,
        logs=row.logs,
        logs_url=row.logs_url,
        artifacts_url=row.artifacts_url,
        github_pr_number=row.github_pr_number,
        github_pr_head_sha=row.github_pr_head_sha,
        github_check_suite_id=row.github_check_suite_id,
        costs=dict(row.costs or {}),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
