"""Runtime configuration for the agent work engine."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

DEFAULT_CREDENTIAL_REF = "default"
SUPPORTED_LLM_BACKENDS = ("openai", "cli")


@dataclass(slots=True)
class DatabaseSettings:
    """Relational store settings."""

    url: str | None = None
    sqlite_busy_timeout_ms: int = 5_000


@dataclass(slots=True)
class WorkerSettings:
    """Queue worker settings."""

    agent_key: str | None = None
    poll_interval_seconds: float = 2.0
    stale_lease_seconds: int = 3_600
    agent_cache_ttl_seconds: int = 3_600


@dataclass(slots=True)
class WorkspaceSettings:
    """Ephemeral git workspace and file-write settings."""

    root: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    files_root: Path = Path(".synorg/projects")
    git_binary: str = "git"
    git_timeout_seconds: int = 300
    git_author_name: str = "synorg-agent"
    git_author_email: str = "agent@synorg.invalid"


@dataclass(slots=True)
class GithubSettings:
    """Repository host REST settings."""

    api_base_url: str = "https://api.github.com"
    web_base_url: str = "https://github.com"
    request_timeout_seconds: float = 30.0
    max_retries: int = 3


@dataclass(slots=True)
class LlmSettings:
    """LLM collaborator settings."""

    backend: str = "openai"
    api_base_url: str = "https://api.openai.com/v1"
    api_key: str | None = None
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 4_000
    request_timeout_seconds: float = 120.0
    command_template: str = ""
    command_timeout_seconds: int = 600


@dataclass(slots=True)
class CredentialStore:
    """Explicit mapping from project credential references to write tokens."""

    tokens: dict[str, str] = field(default_factory=dict)

    def resolve(self, ref: str | None) -> str | None:
        """Token for ``ref``, or for the default ref when ``ref`` is ``None``.

        A named ref never falls back to the default token.
        """

        token = self.tokens.get(ref or DEFAULT_CREDENTIAL_REF, "").strip()
        return token or None

    def secrets(self) -> tuple[str, ...]:
        return tuple(token for token in self.tokens.values() if token.strip())


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".synorg.db")
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    workspace: WorkspaceSettings = field(default_factory=WorkspaceSettings)
    github: GithubSettings = field(default_factory=GithubSettings)
    llm: LlmSettings = field(default_factory=LlmSettings)
    credentials: CredentialStore = field(default_factory=CredentialStore)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("SYNORG_DB_PATH", ".synorg.db")),
            database=DatabaseSettings(
                url=os.getenv("SYNORG_DATABASE_URL") or None,
                sqlite_busy_timeout_ms=int(os.getenv("SYNORG_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            ),
            worker=WorkerSettings(
                agent_key=os.getenv("SYNORG_WORKER_AGENT_KEY") or None,
                poll_interval_seconds=float(os.getenv("SYNORG_WORKER_POLL_SECONDS", "2.0")),
                stale_lease_seconds=int(os.getenv("SYNORG_WORKER_STALE_LEASE_SECONDS", "3600")),
                agent_cache_ttl_seconds=int(os.getenv("SYNORG_AGENT_CACHE_TTL_SECONDS", "3600")),
            ),
            workspace=WorkspaceSettings(
                root=Path(os.getenv("SYNORG_WORKSPACE_ROOT", tempfile.gettempdir())),
                files_root=Path(os.getenv("SYNORG_FILES_ROOT", ".synorg/projects")),
                git_binary=os.getenv("SYNORG_GIT_BINARY", "git"),
                git_timeout_seconds=int(os.getenv("SYNORG_GIT_TIMEOUT_SECONDS", "300")),
                git_author_name=os.getenv("SYNORG_GIT_AUTHOR_NAME", "synorg-agent"),
                git_author_email=os.getenv("SYNORG_GIT_AUTHOR_EMAIL", "agent@synorg.invalid"),
            ),
            github=GithubSettings(
                api_base_url=os.getenv("SYNORG_GITHUB_API_URL", "https://api.github.com"),
                web_base_url=os.getenv("SYNORG_GITHUB_WEB_URL", "https://github.com"),
                request_timeout_seconds=float(
                    os.getenv("SYNORG_GITHUB_REQUEST_TIMEOUT_SECONDS", "30.0"),
                ),
                max_retries=int(os.getenv("SYNORG_GITHUB_MAX_RETRIES", "3")),
            ),
            llm=LlmSettings(
                backend=os.getenv("SYNORG_LLM_BACKEND", "openai").strip().lower(),
                api_base_url=os.getenv("SYNORG_LLM_API_URL", "https://api.openai.com/v1"),
                api_key=os.getenv("SYNORG_LLM_API_KEY") or os.getenv("OPENAI_API_KEY") or None,
                model=os.getenv("SYNORG_LLM_MODEL", "gpt-4o-mini"),
                temperature=float(os.getenv("SYNORG_LLM_TEMPERATURE", "0.7")),
                max_tokens=int(os.getenv("SYNORG_LLM_MAX_TOKENS", "4000")),
                request_timeout_seconds=float(
                    os.getenv("SYNORG_LLM_REQUEST_TIMEOUT_SECONDS", "120.0"),
                ),
                command_template=os.getenv("SYNORG_LLM_COMMAND_TEMPLATE", ""),
                command_timeout_seconds=int(os.getenv("SYNORG_LLM_COMMAND_TIMEOUT_SECONDS", "600")),
            ),
            credentials=CredentialStore(tokens=_collect_github_tokens()),
        )

    @property
    def database_url(self) -> str:
        if self.database.url:
            return self.database.url
        return f"sqlite:///{self.db_path}"

    def validate(self) -> None:
        """Raise configuration error for values that cannot work at runtime."""

        if self.database.sqlite_busy_timeout_ms <= 0:
            raise ValueError("SYNORG_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.worker.poll_interval_seconds < 0:
            raise ValueError("SYNORG_WORKER_POLL_SECONDS must be >= 0.")
        if self.worker.agent_cache_ttl_seconds < 0:
            raise ValueError("SYNORG_AGENT_CACHE_TTL_SECONDS must be >= 0.")
        if self.workspace.git_timeout_seconds <= 0:
            raise ValueError("SYNORG_GIT_TIMEOUT_SECONDS must be > 0.")
        _validate_http_url("SYNORG_GITHUB_API_URL", self.github.api_base_url)
        _validate_http_url("SYNORG_GITHUB_WEB_URL", self.github.web_base_url)
        if self.llm.backend not in SUPPORTED_LLM_BACKENDS:
            raise ValueError(
                f"Unsupported SYNORG_LLM_BACKEND: {self.llm.backend!r}. "
                f"Expected one of: {', '.join(SUPPORTED_LLM_BACKENDS)}.",
            )
        if self.llm.backend == "openai":
            _validate_http_url("SYNORG_LLM_API_URL", self.llm.api_base_url)
        if self.llm.backend == "cli" and "{prompt" not in self.llm.command_template:
            raise ValueError(
                "SYNORG_LLM_COMMAND_TEMPLATE must include {prompt} or {prompt_file} "
                "when SYNORG_LLM_BACKEND=cli.",
            )


def _collect_github_tokens() -> dict[str, str]:
    tokens: dict[str, str] = {}
    single = os.getenv("SYNORG_GITHUB_TOKEN", "").strip()
    if single:
        tokens[DEFAULT_CREDENTIAL_REF] = single

    raw = os.getenv("SYNORG_GITHUB_TOKENS", "").strip()
    if not raw:
        return tokens
    for part in raw.split(","):
        entry = part.strip()
        if not entry:
            continue
        if "|" not in entry:
            raise ValueError(
                "Invalid SYNORG_GITHUB_TOKENS entry. Expected format '<credential_ref>|<token>'.",
            )
        ref, token = entry.split("|", 1)
        ref = ref.strip()
        token = token.strip()
        if not ref or not token:
            raise ValueError(
                "Invalid SYNORG_GITHUB_TOKENS entry: credential ref and token must be non-empty.",
            )
        tokens[ref] = token
    return tokens


def _validate_http_url(name: str, value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )
