from __future__ import annotations

import shutil
import stat
import subprocess
from datetime import UTC, datetime
from pathlib import Path

import allure
import pytest

from synorg.orchestrator.errors import PathTraversalError
from synorg.workspace.git import (
    GitClient,
    askpass_credentials,
    build_branch_name,
    remote_url,
    sanitize_branch_component,
)
from synorg.workspace.workdir import FileChange, WorkspaceManager, resolve_within, write_files

pytestmark = [
    allure.epic("Execution"),
    allure.feature("Workspace Helpers"),
]


def test_branch_name_is_ref_safe_and_timestamped() -> None:
    moment = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)

    assert build_branch_name("My Agent!", at=moment) == "agent/my-agent-20260102-030405"
    assert sanitize_branch_component("  ../..  ") == "agent"


def test_remote_url_never_embeds_credentials() -> None:
    assert remote_url("owner/repo") == "https://github.com/owner/repo.git"
    assert remote_url("o/r", web_base_url="https://git.example.com/") == (
        "https://git.example.com/o/r.git"
    )


@pytest.mark.skipif(shutil.which("sh") is None, reason="POSIX shell is required")
def test_askpass_helper_answers_and_is_removed(tmp_path: Path, write_token: str) -> None:
    directory = tmp_path / "credentials"

    with askpass_credentials(directory, write_token) as script:
        assert stat.S_IMODE(script.stat().st_mode) == 0o700
        assert stat.S_IMODE((directory / "askpass-token").stat().st_mode) == 0o600
        assert write_token not in script.read_text("utf-8")
        username = subprocess.run(
            [str(script), "Username for 'https://github.com': "],
            check=True,
            capture_output=True,
            text=True,
        )
        password = subprocess.run(
            [str(script), "Password for 'https://x-access-token@github.com': "],
            check=True,
            capture_output=True,
            text=True,
        )

    assert username.stdout.strip() == "x-access-token"
    assert password.stdout.strip() == write_token
    assert list(directory.iterdir()) == []


def test_missing_git_binary_is_reported_not_raised(tmp_path: Path) -> None:
    client = GitClient(git_binary=str(tmp_path / "no-such-git"))

    result = client.run(["status"], cwd=tmp_path)

    assert not result.ok
    assert result.returncode == 127
    assert "git executable not found" in result.summary()


@pytest.mark.parametrize(
    "path",
    ["../escape.txt", "/etc/passwd", "docs/../../escape.txt", ".git/config", "", "."],
)
def test_resolve_within_rejects_escaping_paths(tmp_path: Path, path: str) -> None:
    with pytest.raises(PathTraversalError):
        resolve_within(tmp_path, path)


def test_write_files_is_all_or_nothing(tmp_path: Path) -> None:
    changes = [
        FileChange(path="docs/ok.md", content="ok"),
        FileChange(path="../escape.md", content="nope"),
    ]

    with pytest.raises(PathTraversalError):
        write_files(tmp_path, changes)

    assert not (tmp_path / "docs" / "ok.md").exists()
    assert write_files(tmp_path, changes[:1]) == ["docs/ok.md"]
    assert (tmp_path / "docs" / "ok.md").read_text("utf-8") == "ok"


def test_workspace_is_removed_when_the_body_raises(tmp_path: Path) -> None:
    manager = WorkspaceManager(tmp_path / "workspaces")

    with pytest.raises(RuntimeError, match="boom"), manager.provision() as workspace:
        workspace.checkout_dir.mkdir()
        (workspace.checkout_dir / "file.txt").write_text("data", "utf-8")
        raise RuntimeError("boom")

    assert list((tmp_path / "workspaces").iterdir()) == []


def test_concurrent_workspaces_are_distinct(tmp_path: Path) -> None:
    manager = WorkspaceManager(tmp_path)

    with manager.provision() as first, manager.provision() as second:
        assert first.base_dir != second.base_dir
