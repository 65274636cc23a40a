"""Execution strategies keyed by the declared output kind."""

from __future__ import annotations

from synorg.orchestrator.schemas import OutputKind
from synorg.orchestrator.strategies.base import (
    ExecutionContext,
    ExecutionStrategy,
    StrategyServices,
)
from synorg.orchestrator.strategies.database import DatabaseStrategy
from synorg.orchestrator.strategies.file_write import FileWriteStrategy
from synorg.orchestrator.strategies.github_api import GitHubApiStrategy
from synorg.orchestrator.strategies.workspace import WorkspaceStrategy

STRATEGY_CLASSES: dict[OutputKind, type[ExecutionStrategy]] = {
    OutputKind.WORK_ITEMS: DatabaseStrategy,
    OutputKind.FILE_WRITES: FileWriteStrategy,
    OutputKind.GITHUB_OPERATIONS: GitHubApiStrategy,
    OutputKind.WORKSPACE_CHANGES: WorkspaceStrategy,
}


def check_routes() -> None:
    """Fail at startup unless every output kind maps to exactly one strategy."""

    missing = [kind.value for kind in OutputKind if kind not in STRATEGY_CLASSES]
    if missing:
        raise RuntimeError(f"No execution strategy registered for: {', '.join(missing)}")
    for kind, strategy_class in STRATEGY_CLASSES.items():
        if strategy_class.output_kind is not kind:
            raise RuntimeError(
                f"{strategy_class.__name__} declares {strategy_class.output_kind.value}, "
                f"registered for {kind.value}",
            )


def build_strategy(
    kind: OutputKind,
    context: ExecutionContext,
    services: StrategyServices,
) -> ExecutionStrategy:
    return STRATEGY_CLASSES[kind](context, services)


__all__ = [
    "STRATEGY_CLASSES",
    "DatabaseStrategy",
    "ExecutionContext",
    "ExecutionStrategy",
    "FileWriteStrategy",
    "GitHubApiStrategy",
    "StrategyServices",
    "WorkspaceStrategy",
    "build_strategy",
    "check_routes",
]
