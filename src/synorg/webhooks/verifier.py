"""HMAC-SHA256 verification of repository host webhook deliveries."""

from __future__ import annotations

import hashlib
import hmac
import logging

from synorg.orchestrator.models import ProjectView
from synorg.orchestrator.repository import WorkRepository

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def compute_signature(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(body: bytes, signature: str | None, secret: str | None) -> bool:
    """Constant-time check of an ``X-Hub-Signature-256`` header against ``secret``."""

    if not signature or not secret:
        return False
    if not signature.startswith(SIGNATURE_PREFIX):
        return False
    return hmac.compare_digest(compute_signature(body, secret), signature.strip())


def find_project_by_signature(
    repository: WorkRepository,
    body: bytes,
    signature: str | None,
) -> ProjectView | None:
    """Return the first project whose webhook secret validates ``signature``.

    Every project secret is tried in turn, which is linear in the number of
    projects with a secret; route per project once that becomes too slow.
    """

    if not signature:
        return None
    for project in repository.list_projects_with_webhook_secret():
        if verify_signature(body, signature, project.webhook_secret):
            return project
    logger.debug("No project secret matched the webhook signature")
    return None
