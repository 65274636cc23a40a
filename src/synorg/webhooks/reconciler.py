"""Applies repository host events to work items and runs."""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any

from synorg.orchestrator.models import (
    ProjectView,
    RunCorrelation,
    RunOutcome,
    RunView,
    WorkItemStatus,
)
from synorg.orchestrator.repository import WorkRepository
from synorg.storage.common import to_utc_aware_datetime, utc_now

logger = logging.getLogger(__name__)

SUPPORTED_EVENTS = ("issues", "pull_request", "push", "workflow_run", "check_suite")
ISSUE_REFERENCE_PATTERN = re.compile(r"(fix|fixes|close|closes|resolve|resolves)\s+#(\d+)", re.I)
FAILED_CONCLUSIONS = frozenset({"failure", "timed_out", "cancelled"})


class WebhookReconciler:
    """Maps one webhook event onto stored state; unmatched events are no-ops.

    ``process`` returns ``False`` only for unsupported events and payloads
    missing their top-level object.
    """

    def __init__(self, repository: WorkRepository) -> None:
        self.repository = repository

    def process(self, project: ProjectView, event_type: str, payload: dict[str, Any]) -> bool:
        if event_type == "issues":
            return self._process_issue_event(project, payload)
        if event_type == "pull_request":
            return self._process_pull_request_event(project, payload)
        if event_type == "push":
            logger.info("Received push event for %s ref %s", project.slug, payload.get("ref"))
            return True
        if event_type in {"workflow_run", "check_suite"}:
            return self._process_ci_event(project, event_type, payload)
        logger.warning("Unsupported webhook event type: %s", event_type)
        return False

    def _process_issue_event(self, project: ProjectView, payload: dict[str, Any]) -> bool:
        issue = payload.get("issue")
        if not isinstance(issue, dict):
            return False
        action = payload.get("action")
        number = _as_int(issue.get("number"))
        if number is None:
            return True

        if action in {"opened", "labeled", "reopened"}:
            labels = [
                str(label.get("name"))
                for label in issue.get("labels") or []
                if isinstance(label, dict) and label.get("name")
            ]
            state = issue.get("state") or "open"
            item = self.repository.upsert_issue_work_item(
                project_id=project.id,
                issue_number=number,
                fields={
                    "title": issue.get("title"),
                    "body": issue.get("body"),
                    "labels": labels,
                    "state": state,
                    "html_url": issue.get("html_url"),
                },
                is_open=state == "open",
            )
            logger.info("Issue #%s synced to work item %s", number, item.id)
        elif action == "closed":
            item = self.repository.find_issue_work_item(project_id=project.id, issue_number=number)
            if item is not None:
                self.repository.set_work_item_status(
                    work_item_id=item.id,
                    status=WorkItemStatus.COMPLETED,
                )
                logger.info("Issue #%s closed; work item %s completed", number, item.id)
        else:
            logger.debug("Ignoring issue action: %s", action)
        return True

    def _process_pull_request_event(self, project: ProjectView, payload: dict[str, Any]) -> bool:
        pull_request = payload.get("pull_request")
        if not isinstance(pull_request, dict):
            return False
        action = payload.get("action")
        if action == "opened":
            self._attach_pull_request(project, pull_request)
        elif action == "closed":
            self._close_pull_request(project, pull_request)
        else:
            logger.debug("Ignoring pull request action: %s", action)
        return True

    def _attach_pull_request(self, project: ProjectView, pull_request: dict[str, Any]) -> None:
        pr_number = _as_int(pull_request.get("number"))
        issue_number = extract_issue_number(pull_request.get("body"))
        if pr_number is None or issue_number is None:
            return
        item = self.repository.find_issue_work_item(
            project_id=project.id,
            issue_number=issue_number,
        )
        if item is None or item.assigned_agent_id is None:
            return
        run = self.repository.find_or_create_run_for_pull_request(
            project_id=project.id,
            agent_id=item.assigned_agent_id,
            work_item_id=item.id,
            pr_number=pr_number,
        )
        html_url = pull_request.get("html_url") or None
        self.repository.update_run_correlation(
            run_id=run.id,
            correlation=RunCorrelation(
                logs_url=html_url,
                artifacts_url=html_url,
                github_pr_number=pr_number,
                github_pr_head_sha=_head_sha(pull_request),
            ),
        )
        logger.info(
            "Pull request #%s linked to run %s (issue #%s)",
            pr_number,
            run.id,
            issue_number,
        )

    def _close_pull_request(self, project: ProjectView, pull_request: dict[str, Any]) -> None:
        run = self._locate_pull_request_run(project, pull_request)
        if run is None:
            logger.debug("No run matches closed pull request %s", pull_request.get("number"))
            return
        merged = bool(pull_request.get("merged"))
        outcome = RunOutcome.SUCCESS if merged else RunOutcome.FAILURE
        finalized = self.repository.finalize_run(run_id=run.id, outcome=outcome)
        self.repository.update_run_correlation(
            run_id=run.id,
            correlation=RunCorrelation(
                github_pr_number=_as_int(pull_request.get("number")),
                github_pr_head_sha=_head_sha(pull_request),
            ),
        )
        if merged:
            self.repository.set_work_item_status(
                work_item_id=run.work_item_id,
                status=WorkItemStatus.COMPLETED,
            )
        logger.info(
            "Pull request #%s closed (merged=%s); run %s %s",
            pull_request.get("number"),
            merged,
            run.id,
            f"finalized as {outcome.value}" if finalized else "was already finalized",
        )

    def _locate_pull_request_run(
        self,
        project: ProjectView,
        pull_request: dict[str, Any],
    ) -> RunView | None:
        pr_number = _as_int(pull_request.get("number"))
        if pr_number is not None:
            run = self.repository.find_run_by_pr_number(project_id=project.id, pr_number=pr_number)
            if run is not None:
                return run
        head_sha = _head_sha(pull_request)
        if head_sha:
            run = self.repository.find_run_by_head_sha(project_id=project.id, head_sha=head_sha)
            if run is not None:
                return run

        issue_number = extract_issue_number(pull_request.get("body"))
        if issue_number is None:
            return None
        item = self.repository.find_issue_work_item(
            project_id=project.id,
            issue_number=issue_number,
        )
        if item is None:
            return None
        html_url = pull_request.get("html_url")
        if html_url:
            run = self.repository.find_run_by_logs_url(work_item_id=item.id, logs_url=html_url)
            if run is not None:
                return run
        return self.repository.latest_run_for_work_item(work_item_id=item.id)

    def _process_ci_event(
        self,
        project: ProjectView,
        event_type: str,
        payload: dict[str, Any],
    ) -> bool:
        source = payload.get(event_type)
        if not isinstance(source, dict):
            return False
        if payload.get("action") != "completed":
            return True

        check_suite_id = _as_int(
            source.get("id") if event_type == "check_suite" else source.get("check_suite_id"),
        )
        run = self._locate_ci_run(project, source, check_suite_id=check_suite_id)
        if run is None:
            logger.debug("No run matches %s %s", event_type, source.get("id"))
            return True

        if check_suite_id is not None:
            self.repository.update_run_correlation(
                run_id=run.id,
                correlation=RunCorrelation(github_check_suite_id=check_suite_id),
            )
        outcome = conclusion_outcome(source.get("conclusion"))
        if outcome is None:
            logger.info(
                "%s for run %s concluded %r; outcome unchanged",
                event_type,
                run.id,
                source.get("conclusion"),
            )
            return True
        self.repository.finalize_run(
            run_id=run.id,
            outcome=outcome,
            finished_at=_parse_timestamp(source.get("updated_at")),
        )
        logger.info("%s completed for run %s with %s", event_type, run.id, outcome.value)
        return True

    def _locate_ci_run(
        self,
        project: ProjectView,
        source: dict[str, Any],
        *,
        check_suite_id: int | None,
    ) -> RunView | None:
        for pull_request in source.get("pull_requests") or []:
            if not isinstance(pull_request, dict):
                continue
            pr_number = _as_int(pull_request.get("number"))
            if pr_number is None:
                continue
            run = self.repository.find_run_by_pr_number(project_id=project.id, pr_number=pr_number)
            if run is not None:
                return run
        head_sha = source.get("head_sha")
        if head_sha:
            run = self.repository.find_run_by_head_sha(project_id=project.id, head_sha=head_sha)
            if run is not None:
                return run
        if check_suite_id is not None:
            return self.repository.find_run_by_check_suite(
                project_id=project.id,
                check_suite_id=check_suite_id,
            )
        return None


def extract_issue_number(body: Any) -> int | None:
    """Issue referenced by ``Fixes #12``-style keywords in a pull request body."""

    if not isinstance(body, str):
        return None
    match = ISSUE_REFERENCE_PATTERN.search(body)
    return int(match.group(2)) if match else None


def conclusion_outcome(conclusion: Any) -> RunOutcome | None:
    if conclusion == "success":
        return RunOutcome.SUCCESS
    if conclusion in FAILED_CONCLUSIONS:
        return RunOutcome.FAILURE
    return None


def _head_sha(pull_request: dict[str, Any]) -> str | None:
    head = pull_request.get("head")
    if not isinstance(head, dict):
        return None
    sha = head.get("sha")
    return str(sha) if sha else None


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, str) and value.strip():
        try:
            return to_utc_aware_datetime(datetime.fromisoformat(value.strip()))
        except ValueError:
            logger.debug("Unparseable event timestamp %r", value)
    return utc_now()
