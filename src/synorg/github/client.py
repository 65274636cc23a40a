"""Repository host REST client with retries and non-raising results."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from synorg.orchestrator.sanitization import redact_secrets

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://api.github.com"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_USER_AGENT = "synorg-agent/1.0"
ALREADY_EXISTS_MARKER = "reference already exists"


@dataclass(slots=True)
class IssueRef:
    number: int
    html_url: str


@dataclass(slots=True)
class PullRequestRef:
    number: int
    html_url: str
    head_sha: str | None


class BranchCreation(str, Enum):
    """Result of creating a branch ref; an existing branch is not an error."""

    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    FAILED = "failed"


class RepositoryHost(Protocol):
    """Capabilities the execution pipeline needs from the repository host."""

    def create_issue(
        self,
        repo: str,
        *,
        title: str,
        body: str,
        labels: list[str] | None = None,
    ) -> IssueRef | None: ...

    def create_pull_request(
        self,
        repo: str,
        *,
        title: str,
        body: str,
        head: str,
        base: str,
    ) -> PullRequestRef | None: ...

    def get_branch_sha(self, repo: str, branch: str) -> str | None: ...

    def create_branch(self, repo: str, *, branch: str, sha: str) -> BranchCreation: ...

    def get_file_sha(self, repo: str, *, path: str, branch: str) -> str | None: ...

    def create_or_update_file(  # noqa: PLR0913
        self,
        repo: str,
        *,
        path: str,
        content_base64: str,
        branch: str,
        message: str,
        existing_sha: str | None = None,
    ) -> bool: ...

    def close(self) -> None: ...


class GithubClient:
    """GitHub REST v3 wrapper; every call returns ``None``/``False`` on failure."""

    def __init__(
        self,
        token: str,
        *,
        api_base_url: str = DEFAULT_API_BASE_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._token = token
        self._client = httpx.Client(
            base_url=api_base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers={
                "Authorization": f"token {token}",
                "Accept": "application/vnd.github+json",
                "User-Agent": DEFAULT_USER_AGENT,
            },
            transport=transport or httpx.HTTPTransport(retries=max_retries),
        )

    def create_issue(
        self,
        repo: str,
        *,
        title: str,
        body: str,
        labels: list[str] | None = None,
    ) -> IssueRef | None:
        payload: dict[str, Any] = {"title": title, "body": body}
        if labels:
            payload["labels"] = labels
        data = self._request_json("POST", f"/repos/{repo}/issues", json=payload)
        if data is None:
            return None
        return IssueRef(number=int(data["number"]), html_url=str(data.get("html_url", "")))

    def create_pull_request(
        self,
        repo: str,
        *,
        title: str,
        body: str,
        head: str,
        base: str,
    ) -> PullRequestRef | None:
        data = self._request_json(
            "POST",
            f"/repos/{repo}/pulls",
            json={"title": title, "body": body, "head": head, "base": base},
        )
        if data is None:
            return None
        head_info = data.get("head") or {}
        return PullRequestRef(
            number=int(data["number"]),
            html_url=str(data.get("html_url", "")),
            head_sha=head_info.get("sha"),
        )

    def get_branch_sha(self, repo: str, branch: str) -> str | None:
        data = self._request_json("GET", f"/repos/{repo}/git/ref/heads/{quote(branch)}")
        if data is None:
            return None
        sha = (data.get("object") or {}).get("sha")
        return str(sha) if sha else None

    def create_branch(self, repo: str, *, branch: str, sha: str) -> BranchCreation:
        response = self._send(
            "POST",
            f"/repos/{repo}/git/refs",
            json={"ref": f"refs/heads/{branch}", "sha": sha},
        )
        if response is None:
            return BranchCreation.FAILED
        if response.is_success:
            return BranchCreation.CREATED
        if response.status_code == 422 and ALREADY_EXISTS_MARKER in response.text.lower():
            logger.info("Branch %s already exists in %s", branch, repo)
            return BranchCreation.ALREADY_EXISTS
        self._log_failure("POST", f"/repos/{repo}/git/refs", response)
        return BranchCreation.FAILED

    def get_file_sha(self, repo: str, *, path: str, branch: str) -> str | None:
        response = self._send(
            "GET",
            f"/repos/{repo}/contents/{quote(path)}",
            params={"ref": branch},
        )
        if response is None or not response.is_success:
            return None
        data = response.json()
        if not isinstance(data, dict):
            return None
        sha = data.get("sha")
        return str(sha) if sha else None

    def create_or_update_file(  # noqa: PLR0913
        self,
        repo: str,
        *,
        path: str,
        content_base64: str,
        branch: str,
        message: str,
        existing_sha: str | None = None,
    ) -> bool:
        payload: dict[str, Any] = {
            "message": message,
            "content": content_base64,
            "branch": branch,
        }
        if existing_sha:
            payload["sha"] = existing_sha
        data = self._request_json("PUT", f"/repos/{repo}/contents/{quote(path)}", json=payload)
        return data is not None

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> GithubClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _request_json(self, method: str, url: str, **kwargs: Any) -> dict[str, Any] | None:
        response = self._send(method, url, **kwargs)
        if response is None:
            return None
        if not response.is_success:
            self._log_failure(method, url, response)
            return None
        try:
            data = response.json()
        except ValueError:
            logger.warning("Non-JSON response from %s %s", method, url)
            return None
        return data if isinstance(data, dict) else None

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response | None:
        try:
            return self._client.request(method, url, **kwargs)
        except httpx.TimeoutException:
            logger.warning("Timeout calling %s %s", method, url)
            return None
        except httpx.HTTPError as exc:
            logger.warning(
                "HTTP error calling %s %s: %s",
                method,
                url,
                redact_secrets(str(exc), secrets=(self._token,)),
            )
            return None

    def _log_failure(self, method: str, url: str, response: httpx.Response) -> None:
        logger.warning(
            "GitHub API %s %s failed with HTTP %s: %s",
            method,
            url,
            response.status_code,
            redact_secrets(response.text, secrets=(self._token,), max_chars=500),
        )
