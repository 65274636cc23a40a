from __future__ import annotations

import json
from typing import Any

import allure
import pytest

from synorg.orchestrator.leasing import LeasingService
from synorg.orchestrator.models import RunCorrelation, RunOutcome, WorkItemStatus
from synorg.webhooks.ingress import WebhookIngress
from synorg.webhooks.reconciler import WebhookReconciler, conclusion_outcome, extract_issue_number
from synorg.webhooks.verifier import compute_signature, find_project_by_signature, verify_signature

pytestmark = [
    allure.epic("Integrations"),
    allure.feature("Webhooks"),
]

SECRET = "hush-hush"  # noqa: S105


def _headers(body: bytes, event: str, *, delivery: str = "d-1", secret: str = SECRET) -> dict:
    return {
        "X-GitHub-Event": event,
        "X-GitHub-Delivery": delivery,
        "X-Hub-Signature-256": compute_signature(body, secret),
    }


def _body(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload).encode("utf-8")


def _issue_payload(number: int, *, action: str = "opened", state: str = "open") -> dict:
    return {
        "action": action,
        "issue": {
            "number": number,
            "title": f"Issue {number}",
            "body": "Details",
            "state": state,
            "labels": [{"name": "bug"}],
            "html_url": f"https://github.com/owner/repo/issues/{number}",
        },
    }


class TestSignatures:
    def test_valid_signature_is_accepted(self) -> None:
        body = b'{"zen": "keep it simple"}'

        assert verify_signature(body, compute_signature(body, SECRET), SECRET)

    @pytest.mark.parametrize(
        "signature",
        [None, "", "sha1=abc", "sha256=" + "0" * 64],
    )
    def test_invalid_signatures_are_rejected(self, signature: str | None) -> None:
        assert not verify_signature(b"{}", signature, SECRET)

    def test_missing_secret_rejects(self) -> None:
        assert not verify_signature(b"{}", compute_signature(b"{}", SECRET), None)

    def test_project_is_found_by_its_own_secret(self, repository, make_project) -> None:
        make_project(webhook_secret="other")
        target = make_project(webhook_secret=SECRET)
        make_project()
        body = b"{}"

        found = find_project_by_signature(repository, body, compute_signature(body, SECRET))

        assert found is not None
        assert found.id == target.id
        assert find_project_by_signature(repository, body, compute_signature(body, "x")) is None


class TestIngress:
    def test_bad_signature_is_rejected_before_recording(self, repository, make_project) -> None:
        project = make_project(webhook_secret=SECRET)
        body = _body(_issue_payload(1))

        response = WebhookIngress(repository).handle(
            body,
            _headers(body, "issues", secret="wrong"),
        )

        assert (response.status, response.message) == (401, "Invalid signature")
        assert repository.count_webhook_events(project_id=project.id) == 0

    def test_accepted_delivery_is_recorded_once(self, repository, make_project) -> None:
        project = make_project(webhook_secret=SECRET)
        body = _body(_issue_payload(3))
        ingress = WebhookIngress(repository)

        first = ingress.handle(body, _headers(body, "issues"))
        second = ingress.handle(body, _headers(body, "issues"))

        assert (first.status, first.message) == (202, "Accepted")
        assert (second.status, second.message) == (202, "Duplicate delivery")
        assert repository.count_webhook_events(project_id=project.id) == 1
        item = repository.find_issue_work_item(project_id=project.id, issue_number=3)
        assert item is not None
        assert item.payload["labels"] == ["bug"]

    def test_unsupported_event_is_ignored(self, repository, make_project) -> None:
        make_project(webhook_secret=SECRET)
        body = b"{}"

        response = WebhookIngress(repository).handle(body, _headers(body, "star"))

        assert (response.status, response.message) == (202, "Ignored event star")
        assert repository.count_webhook_events() == 0

    def test_malformed_json_is_a_bad_request(self, repository, make_project) -> None:
        make_project(webhook_secret=SECRET)
        body = b"{not json"

        response = WebhookIngress(repository).handle(body, _headers(body, "issues"))

        assert response.status == 400

    def test_reconciler_failure_is_an_opaque_internal_error(
        self,
        repository,
        make_project,
    ) -> None:
        class BrokenReconciler(WebhookReconciler):
            def process(self, project, event_type, payload) -> bool:
                raise RuntimeError("database exploded with secret details")

        make_project(webhook_secret=SECRET)
        body = _body({"ref": "refs/heads/main"})

        response = WebhookIngress(repository, BrokenReconciler(repository)).handle(
            body,
            _headers(body, "push"),
        )

        assert (response.status, response.message) == (500, "Internal error")

    def test_redelivery_after_internal_error_is_applied(self, repository, make_project) -> None:
        class FlakyReconciler(WebhookReconciler):
            calls = 0

            def process(self, project, event_type, payload) -> bool:
                FlakyReconciler.calls += 1
                if FlakyReconciler.calls == 1:
                    raise RuntimeError("transient database error")
                return super().process(project, event_type, payload)

        project = make_project(webhook_secret=SECRET)
        body = _body(_issue_payload(9))
        ingress = WebhookIngress(repository, FlakyReconciler(repository))

        first = ingress.handle(body, _headers(body, "issues", delivery="d-9"))
        assert repository.find_issue_work_item(project_id=project.id, issue_number=9) is None
        second = ingress.handle(body, _headers(body, "issues", delivery="d-9"))
        third = ingress.handle(body, _headers(body, "issues", delivery="d-9"))

        assert (first.status, first.message) == (500, "Internal error")
        assert (second.status, second.message) == (202, "Accepted")
        assert (third.status, third.message) == (202, "Duplicate delivery")
        assert repository.count_webhook_events(project_id=project.id) == 1
        assert repository.find_issue_work_item(project_id=project.id, issue_number=9) is not None


class TestReconciler:
    def test_issue_opened_then_closed(self, repository, make_project) -> None:
        project = make_project()
        reconciler = WebhookReconciler(repository)

        assert reconciler.process(project, "issues", _issue_payload(12))
        item = repository.find_issue_work_item(project_id=project.id, issue_number=12)
        assert item is not None
        assert item.work_type == "issue"
        assert item.status == WorkItemStatus.PENDING
        assert item.payload["github_issue_number"] == 12

        reconciler.process(project, "issues", _issue_payload(12, action="closed", state="closed"))
        closed = repository.get_work_item(item.id)
        assert closed is not None
        assert closed.status == WorkItemStatus.COMPLETED

    def test_issue_event_without_issue_object_is_ignored(self, repository, make_project) -> None:
        assert not WebhookReconciler(repository).process(make_project(), "issues", {"x": 1})

    def test_pull_request_lifecycle_links_and_completes_issue(
        self,
        repository,
        make_project,
        make_agent,
    ) -> None:
        project = make_project()
        agent = make_agent()
        reconciler = WebhookReconciler(repository)
        reconciler.process(project, "issues", _issue_payload(5))
        leased = LeasingService(repository).lease_next(agent)
        assert leased is not None
        pull_request = {
            "number": 99,
            "body": "This change Fixes #5 for good.",
            "html_url": "https://github.com/owner/repo/pull/99",
            "head": {"sha": "feedface"},
        }

        reconciler.process(
            project,
            "pull_request",
            {"action": "opened", "pull_request": pull_request},
        )

        run = repository.find_run_by_pr_number(project_id=project.id, pr_number=99)
        assert run is not None
        assert run.work_item_id == leased.work_item.id
        assert run.github_pr_head_sha == "feedface"
        assert run.artifacts_url == "https://github.com/owner/repo/pull/99"

        reconciler.process(
            project,
            "pull_request",
            {"action": "closed", "pull_request": {**pull_request, "merged": True}},
        )

        finished = repository.get_run(run.id)
        assert finished is not None
        assert finished.outcome == RunOutcome.SUCCESS
        item = repository.get_work_item(leased.work_item.id)
        assert item is not None
        assert item.status == WorkItemStatus.COMPLETED

    def test_pull_request_number_wins_over_head_sha(
        self,
        repository,
        make_project,
        make_agent,
        make_context,
    ) -> None:
        project = make_project()
        agent = make_agent()
        by_number = make_context(project, agent, work_type="docs").run
        by_sha = make_context(project, agent, work_type="gtm").run
        repository.update_run_correlation(
            run_id=by_number.id,
            correlation=RunCorrelation(github_pr_number=11),
        )
        repository.update_run_correlation(
            run_id=by_sha.id,
            correlation=RunCorrelation(github_pr_head_sha="abc123"),
        )

        WebhookReconciler(repository).process(
            project,
            "pull_request",
            {
                "action": "closed",
                "pull_request": {"number": 11, "merged": False, "head": {"sha": "abc123"}},
            },
        )

        first = repository.get_run(by_number.id)
        second = repository.get_run(by_sha.id)
        assert first is not None and second is not None
        assert first.outcome == RunOutcome.FAILURE
        assert second.outcome is None

    def test_closed_pull_request_falls_back_to_referenced_issue(
        self,
        repository,
        make_project,
        make_agent,
    ) -> None:
        project = make_project()
        agent = make_agent()
        reconciler = WebhookReconciler(repository)
        reconciler.process(project, "issues", _issue_payload(7))
        item = repository.find_issue_work_item(project_id=project.id, issue_number=7)
        assert item is not None
        linked = repository.create_run(agent_id=agent.id, work_item_id=item.id)
        newer = repository.create_run(agent_id=agent.id, work_item_id=item.id)
        pr_url = "https://github.com/owner/repo/pull/70"
        repository.update_run_correlation(
            run_id=linked.id,
            correlation=RunCorrelation(logs_url=pr_url),
        )

        reconciler.process(
            project,
            "pull_request",
            {
                "action": "closed",
                "pull_request": {
                    "number": 70,
                    "merged": False,
                    "body": "Closes #7",
                    "html_url": pr_url,
                },
            },
        )

        by_url = repository.get_run(linked.id)
        untouched = repository.get_run(newer.id)
        assert by_url is not None and untouched is not None
        assert by_url.outcome == RunOutcome.FAILURE
        assert by_url.github_pr_number == 70
        assert untouched.outcome is None

        reconciler.process(
            project,
            "pull_request",
            {
                "action": "closed",
                "pull_request": {
                    "number": 71,
                    "merged": True,
                    "body": "Closes #7",
                    "html_url": "https://github.com/owner/repo/pull/71",
                },
            },
        )

        latest = repository.get_run(newer.id)
        assert latest is not None
        assert latest.outcome == RunOutcome.SUCCESS
        completed = repository.get_work_item(item.id)
        assert completed is not None
        assert completed.status == WorkItemStatus.COMPLETED

    def test_ci_event_locates_run_by_recorded_check_suite(
        self,
        repository,
        make_project,
        make_agent,
        make_context,
    ) -> None:
        project = make_project()
        run = make_context(project, make_agent(), work_type="docs").run
        repository.update_run_correlation(
            run_id=run.id,
            correlation=RunCorrelation(github_check_suite_id=777),
        )

        WebhookReconciler(repository).process(
            project,
            "check_suite",
            {
                "action": "completed",
                "check_suite": {
                    "id": 777,
                    "conclusion": "success",
                    "head_sha": "unrelated",
                    "pull_requests": [],
                },
            },
        )

        stored = repository.get_run(run.id)
        assert stored is not None
        assert stored.outcome == RunOutcome.SUCCESS

    def test_completed_workflow_run_finalizes_run(
        self,
        repository,
        make_project,
        make_agent,
        make_context,
    ) -> None:
        project = make_project()
        run = make_context(project, make_agent(), work_type="docs").run
        repository.update_run_correlation(
            run_id=run.id,
            correlation=RunCorrelation(github_pr_head_sha="d00d"),
        )

        assert WebhookReconciler(repository).process(
            project,
            "workflow_run",
            {
                "action": "completed",
                "workflow_run": {
                    "id": 4242,
                    "check_suite_id": 888,
                    "head_sha": "d00d",
                    "conclusion": "timed_out",
                    "updated_at": "2026-10-16T08:30:00+00:00",
                },
            },
        )

        stored = repository.get_run(run.id)
        assert stored is not None
        assert stored.outcome == RunOutcome.FAILURE
        assert stored.github_check_suite_id == 888
        assert stored.finished_at is not None
        assert (stored.finished_at.hour, stored.finished_at.minute) == (8, 30)

    def test_failed_check_suite_finalizes_run_once(
        self,
        repository,
        make_project,
        make_agent,
        make_context,
    ) -> None:
        project = make_project()
        agent = make_agent()
        run = make_context(project, agent, work_type="docs").run
        repository.update_run_correlation(
            run_id=run.id,
            correlation=RunCorrelation(github_pr_number=21),
        )
        suite = {
            "id": 555,
            "conclusion": "failure",
            "head_sha": "cafe",
            "pull_requests": [{"number": 21}],
            "updated_at": "2026-10-16T12:00:00+00:00",
        }
        reconciler = WebhookReconciler(repository)

        reconciler.process(project, "check_suite", {"action": "completed", "check_suite": suite})
        reconciler.process(
            project,
            "check_suite",
            {"action": "completed", "check_suite": {**suite, "conclusion": "success"}},
        )

        stored = repository.get_run(run.id)
        assert stored is not None
        assert stored.outcome == RunOutcome.FAILURE
        assert stored.github_check_suite_id == 555
        assert stored.finished_at is not None
        assert (stored.finished_at.hour, stored.finished_at.minute) == (12, 0)

    def test_in_progress_ci_event_changes_nothing(
        self,
        repository,
        make_project,
        make_agent,
        make_context,
    ) -> None:
        project = make_project()
        run = make_context(project, make_agent(), work_type="docs").run
        repository.update_run_correlation(
            run_id=run.id,
            correlation=RunCorrelation(github_pr_head_sha="beef"),
        )

        assert WebhookReconciler(repository).process(
            project,
            "workflow_run",
            {"action": "requested", "workflow_run": {"head_sha": "beef", "conclusion": None}},
        )

        stored = repository.get_run(run.id)
        assert stored is not None
        assert stored.outcome is None


@pytest.mark.parametrize(
    ("body", "expected"),
    [
        ("Fixes #12", 12),
        ("closes #3 and more", 3),
        ("Resolves   #44", 44),
        ("Refs #8", None),
        (None, None),
    ],
)
def test_extract_issue_number(body: str | None, expected: int | None) -> None:
    assert extract_issue_number(body) == expected


def test_conclusion_outcome_mapping() -> None:
    assert conclusion_outcome("success") == RunOutcome.SUCCESS
    assert conclusion_outcome("timed_out") == RunOutcome.FAILURE
    assert conclusion_outcome("neutral") is None
