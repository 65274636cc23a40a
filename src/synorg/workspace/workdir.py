"""Ephemeral workspace directories and guarded file materialization."""

from __future__ import annotations

import logging
import shutil
import tempfile
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from synorg.orchestrator.errors import PathTraversalError

logger = logging.getLogger(__name__)

WORKSPACE_PREFIX = "synorg-workspace-"


@dataclass(slots=True)
class Workspace:
    """One exclusively owned scratch directory."""

    base_dir: Path

    @property
    def checkout_dir(self) -> Path:
        return self.base_dir / "repo"

    @property
    def credentials_dir(self) -> Path:
        return self.base_dir / "credentials"


@dataclass(slots=True)
class FileChange:
    path: str
    content: str


class WorkspaceManager:
    """Creates uniquely named workspaces and removes them on every exit path."""

    def __init__(self, root_dir: Path) -> None:
        self.root_dir = root_dir

    @contextmanager
    def provision(self) -> Iterator[Workspace]:
        self.root_dir.mkdir(parents=True, exist_ok=True)
        base_dir = Path(tempfile.mkdtemp(prefix=WORKSPACE_PREFIX, dir=self.root_dir))
        logger.debug("Provisioned workspace %s", base_dir)
        try:
            yield Workspace(base_dir=base_dir)
        finally:
            shutil.rmtree(base_dir, ignore_errors=True)
            if base_dir.exists():
                logger.warning("Workspace %s could not be fully removed", base_dir)
            else:
                logger.debug("Removed workspace %s", base_dir)


def resolve_within(root: Path, relative: str) -> Path:
    """Resolve ``relative`` under ``root`` or raise ``PathTraversalError``."""

    candidate = Path(relative)
    if not relative.strip() or candidate.is_absolute() or ".git" in candidate.parts:
        raise PathTraversalError(relative)
    root_resolved = root.resolve()
    target = (root_resolved / candidate).resolve()
    if target == root_resolved or not target.is_relative_to(root_resolved):
        raise PathTraversalError(relative)
    return target


def write_files(root: Path, changes: Sequence[FileChange]) -> list[str]:
    """Write all changes under ``root``; nothing is written if any path escapes."""

    targets = [(change, resolve_within(root, change.path)) for change in changes]
    written: list[str] = []
    for change, target in targets:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(change.content, "utf-8")
        written.append(change.path)
    return written
