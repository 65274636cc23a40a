"""Git subprocess runner with file-based askpass credentials."""

from __future__ import annotations

import logging
import os
import re
import shlex
import subprocess
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from synorg.orchestrator.sanitization import redact_secrets
from synorg.storage.common import utc_now

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "agent/"
BRANCH_NAME_PATTERN = re.compile(r"^agent/[\w-]+$")
GIT_USERNAME = "x-access-token"
_BRANCH_COMPONENT_INVALID = re.compile(r"[^a-z0-9-]+")
_NOTHING_TO_COMMIT_MARKERS = ("nothing to commit", "nothing added to commit")


@dataclass(slots=True)
class GitResult:
    """Outcome of one git invocation with redacted output."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    def summary(self) -> str:
        detail = self.stderr.strip() or self.stdout.strip() or "no output"
        if self.timed_out:
            detail = f"timed out; {detail}"
        return f"git {' '.join(self.args[:2])} failed (rc={self.returncode}): {detail}"


def sanitize_branch_component(value: str) -> str:
    """Lowercase ``value`` into a ref-safe ``[a-z0-9-]`` token."""

    collapsed = _BRANCH_COMPONENT_INVALID.sub("-", value.strip().lower()).strip("-")
    return re.sub(r"-{2,}", "-", collapsed) or "agent"


def build_branch_name(agent_key: str, *, at: datetime | None = None) -> str:
    moment = at or utc_now()
    name = f"{BRANCH_PREFIX}{sanitize_branch_component(agent_key)}-{moment:%Y%m%d-%H%M%S}"
    if not BRANCH_NAME_PATTERN.match(name):
        raise ValueError(f"Generated branch name is not ref-safe: {name!r}")
    return name


def remote_url(repo_full_name: str, *, web_base_url: str = "https://github.com") -> str:
    """HTTPS remote without embedded credentials."""

    return f"{web_base_url.rstrip('/')}/{repo_full_name}.git"


@contextmanager
def askpass_credentials(directory: Path, token: str) -> Iterator[Path]:
    """Materialize a private askpass helper that answers with ``token``.

    The token lives only in a 0600 file next to a 0700 script; both are removed
    on exit so the secret never appears on a command line.
    """

    directory.mkdir(mode=0o700, parents=True, exist_ok=True)
    token_path = directory / "askpass-token"
    script_path = directory / "askpass.sh"
    descriptor = os.open(token_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(descriptor, "w", encoding="utf-8") as handle:
        handle.write(token)
    script_path.write_text(
        "#!/bin/sh\n"
        'case "$1" in\n'
        f"  Username*) echo {GIT_USERNAME} ;;\n"
        f"  *) cat {shlex.quote(str(token_path))} ;;\n"
        "esac\n",
        "utf-8",
    )
    script_path.chmod(0o700)
    try:
        yield script_path
    finally:
        token_path.unlink(missing_ok=True)
        script_path.unlink(missing_ok=True)


class GitClient:
    """Runs the fixed git command sequence used for branch-per-run workflows."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        git_binary: str = "git",
        timeout_seconds: int = 300,
        askpass_path: Path | None = None,
        secrets: Sequence[str] = (),
        author_name: str = "synorg-agent",
        author_email: str = "agent@synorg.invalid",
    ) -> None:
        self.git_binary = git_binary
        self.timeout_seconds = timeout_seconds
        self.askpass_path = askpass_path
        self.secrets = tuple(secrets)
        self.author_name = author_name
        self.author_email = author_email

    def clone(self, url: str, destination: Path, *, branch: str, depth: int = 1) -> GitResult:
        return self.run(
            ["clone", "--branch", branch, "--depth", str(depth), url, str(destination)],
            cwd=destination.parent,
        )

    def remote_branch_exists(self, cwd: Path, branch: str) -> bool | None:
        """``None`` when the remote could not be queried."""

        result = self.run(["ls-remote", "--heads", "origin", branch], cwd=cwd)
        if not result.ok:
            return None
        return bool(result.stdout.strip())

    def fetch(self, cwd: Path, branch: str) -> GitResult:
        return self.run(
            ["fetch", "origin", f"+refs/heads/{branch}:refs/remotes/origin/{branch}"],
            cwd=cwd,
        )

    def deepen(self, cwd: Path, branch: str) -> GitResult:
        """Fetch the full history of ``branch`` when the clone is shallow."""

        shallow = self.run(["rev-parse", "--is-shallow-repository"], cwd=cwd)
        if not shallow.ok or shallow.stdout.strip() != "true":
            return shallow
        refspec = f"+refs/heads/{branch}:refs/remotes/origin/{branch}"
        return self.run(["fetch", "--unshallow", "origin", refspec], cwd=cwd)

    def checkout_tracking(self, cwd: Path, branch: str) -> GitResult:
        return self.run(["checkout", "-B", branch, f"origin/{branch}"], cwd=cwd)

    def create_branch(self, cwd: Path, branch: str, *, start_point: str) -> GitResult:
        return self.run(["checkout", "-b", branch, start_point], cwd=cwd)

    def merge(self, cwd: Path, ref: str) -> GitResult:
        return self.run(["merge", "--no-edit", ref], cwd=cwd)

    def commit_all(self, cwd: Path, message: str) -> GitResult:
        staged = self.run(["add", "-A"], cwd=cwd)
        if not staged.ok:
            return staged
        return self.run(["commit", "-m", message], cwd=cwd)

    def push(self, cwd: Path, branch: str) -> GitResult:
        return self.run(["push", "-u", "origin", branch], cwd=cwd)

    def head_sha(self, cwd: Path) -> str | None:
        result = self.run(["rev-parse", "HEAD"], cwd=cwd)
        if not result.ok:
            return None
        return result.stdout.strip() or None

    def run(self, args: Sequence[str], *, cwd: Path) -> GitResult:
        argv = [self.git_binary, "-c", "credential.helper=", *args]
        logger.debug("Running git %s in %s", " ".join(args[:2]), cwd)
        try:
            process = subprocess.Popen(  # noqa: S603
                argv,
                cwd=cwd,
                env=self._environment(),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except FileNotFoundError:
            return GitResult(
                args=tuple(args),
                returncode=127,
                stdout="",
                stderr=f"git executable not found: {self.git_binary}",
            )

        timed_out = False
        try:
            stdout, stderr = process.communicate(timeout=self.timeout_seconds)
        except subprocess.TimeoutExpired:
            _terminate_process(process)
            stdout, stderr = process.communicate()
            timed_out = True
        except BaseException:
            _terminate_process(process)
            raise

        return GitResult(
            args=tuple(args),
            returncode=process.returncode if not timed_out else 124,
            stdout=self._redact(stdout),
            stderr=self._redact(stderr),
            timed_out=timed_out,
        )

    def is_nothing_to_commit(self, result: GitResult) -> bool:
        text = f"{result.stdout}\n{result.stderr}".lower()
        return any(marker in text for marker in _NOTHING_TO_COMMIT_MARKERS)

    def _environment(self) -> dict[str, str]:
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        env["LC_ALL"] = "C"
        env["GIT_AUTHOR_NAME"] = self.author_name
        env["GIT_AUTHOR_EMAIL"] = self.author_email
        env["GIT_COMMITTER_NAME"] = self.author_name
        env["GIT_COMMITTER_EMAIL"] = self.author_email
        if self.askpass_path is not None:
            env["GIT_ASKPASS"] = str(self.askpass_path)
        return env

    def _redact(self, text: str | None) -> str:
        return redact_secrets(text, secrets=self.secrets)


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
