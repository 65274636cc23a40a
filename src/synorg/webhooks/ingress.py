"""Webhook request handling: authenticate, dedupe, persist, reconcile."""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass

from synorg.orchestrator.repository import WorkRepository
from synorg.webhooks.reconciler import SUPPORTED_EVENTS, WebhookReconciler
from synorg.webhooks.verifier import find_project_by_signature

logger = logging.getLogger(__name__)

EVENT_HEADER = "x-github-event"
SIGNATURE_HEADER = "x-hub-signature-256"
DELIVERY_HEADER = "x-github-delivery"


@dataclass(slots=True)
class WebhookResponse:
    status: int
    message: str


class WebhookIngress:
    """Turns one raw delivery into an HTTP-style status without exposing internals."""

    def __init__(self, repository: WorkRepository, reconciler: WebhookReconciler | None = None):
        self.repository = repository
        self.reconciler = reconciler or WebhookReconciler(repository)

    def handle(self, body: bytes, headers: Mapping[str, str]) -> WebhookResponse:
        normalized = {name.lower(): value for name, value in headers.items()}
        event_type = normalized.get(EVENT_HEADER, "")
        delivery_id = normalized.get(DELIVERY_HEADER) or f"local-{uuid.uuid4().hex}"

        project = find_project_by_signature(
            self.repository,
            body,
            normalized.get(SIGNATURE_HEADER),
        )
        if project is None:
            logger.warning("Webhook signature verification failed for delivery %s", delivery_id)
            return WebhookResponse(status=401, message="Invalid signature")

        if event_type not in SUPPORTED_EVENTS:
            logger.warning("Unsupported webhook event type: %s", event_type)
            return WebhookResponse(status=202, message=f"Ignored event {event_type or '<none>'}")

        try:
            payload = json.loads(body)
        except (UnicodeDecodeError, json.JSONDecodeError) as error:
            logger.error("Failed to parse webhook payload %s: %s", delivery_id, error)
            return WebhookResponse(status=400, message="Invalid JSON payload")
        if not isinstance(payload, dict):
            return WebhookResponse(status=400, message="Webhook payload must be a JSON object")

        recorded = self.repository.record_webhook_event(
            project_id=project.id,
            delivery_id=delivery_id,
            event_type=event_type,
            payload=payload,
        )
        if not recorded:
            logger.info("Duplicate delivery %s ignored", delivery_id)
            return WebhookResponse(status=202, message="Duplicate delivery")

        try:
            processed = self.reconciler.process(project, event_type, payload)
        except Exception:  # noqa: BLE001
            logger.exception("Error processing webhook delivery %s", delivery_id)
            return WebhookResponse(status=500, message="Internal error")
        self.repository.mark_webhook_event_processed(delivery_id)
        logger.info(
            "Delivery %s (%s) for project %s processed=%s",
            delivery_id,
            event_type,
            project.slug,
            processed,
        )
        return WebhookResponse(status=202, message="Accepted")
