"""CLI entrypoint for synorg."""

import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from synorg import __version__
from synorg.orchestrator.controllers import (
    AgentAddCommand,
    DbInitCommand,
    OrchestratorTriggerCommand,
    ProjectAddCommand,
    RunsListCommand,
    WebhookIngestCommand,
    WorkCliController,
    WorkEnqueueCommand,
    WorkerRunCommand,
    WorkListCommand,
)
from synorg.orchestrator.errors import SynorgError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = WorkCliController()
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

CommandT = TypeVar("CommandT")


@click.group()
@click.version_option(version=__version__, prog_name="synorg")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Log level for stderr output.",
)
def synorg(log_level: str) -> None:
    """Agent work-item engine CLI."""

    logging.basicConfig(
        stream=sys.stderr,
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@synorg.group()
def db() -> None:
    """Database commands."""


@db.command("init")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def db_init(db_path: Path | None) -> None:
    """Apply schema migrations up to head."""

    _run(CONTROLLER.init_db, DbInitCommand(db_path=db_path))


@synorg.group()
def project() -> None:
    """Project registry commands."""


@project.command("add")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--slug", required=True, help="Unique project slug.")
@click.option("--name", required=True, help="Display name.")
@click.option("--brief", default=None, help="Project brief passed to agents as context.")
@click.option("--repo", "repo_full_name", default=None, help="Repository as `owner/name`.")
@click.option("--default-branch", default="main", show_default=True, help="Base branch.")
@click.option(
    "--token-ref",
    "github_token_ref",
    default=None,
    help="Credential reference resolved from `SYNORG_GITHUB_TOKENS` (default ref if omitted).",
)
@click.option("--webhook-secret", default=None, help="Shared secret for webhook signatures.")
def project_add(  # noqa: PLR0913
    db_path: Path | None,
    slug: str,
    name: str,
    brief: str | None,
    repo_full_name: str | None,
    default_branch: str,
    github_token_ref: str | None,
    webhook_secret: str | None,
) -> None:
    """Register a project."""

    _run(
        CONTROLLER.add_project,
        ProjectAddCommand(
            db_path=db_path,
            slug=slug,
            name=name,
            brief=brief,
            repo_full_name=repo_full_name,
            default_branch=default_branch,
            github_token_ref=github_token_ref,
            webhook_secret=webhook_secret,
        ),
    )


@synorg.group()
def agent() -> None:
    """Agent registry commands."""


@agent.command("add")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--key", required=True, help="Unique agent key.")
@click.option("--name", required=True, help="Display name.")
@click.option("--prompt", default=None, help="Inline prompt text.")
@click.option(
    "--prompt-file",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    default=None,
    help="Read the prompt from a file (overrides --prompt).",
)
@click.option(
    "--work-type",
    "work_types",
    multiple=True,
    help="Work type this agent leases. Can be repeated; omit for any.",
)
@click.option(
    "--max-concurrency",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Declared concurrency limit.",
)
@click.option("--enabled/--disabled", default=True, show_default=True, help="Agent state.")
def agent_add(  # noqa: PLR0913
    db_path: Path | None,
    key: str,
    name: str,
    prompt: str | None,
    prompt_file: Path | None,
    work_types: tuple[str, ...],
    max_concurrency: int,
    enabled: bool,
) -> None:
    """Register an agent."""

    _run(
        CONTROLLER.add_agent,
        AgentAddCommand(
            db_path=db_path,
            key=key,
            name=name,
            prompt=prompt,
            prompt_file=prompt_file,
            work_types=work_types,
            max_concurrency=max_concurrency,
            enabled=enabled,
        ),
    )


@synorg.group()
def work() -> None:
    """Work queue commands."""


@work.command("enqueue")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--project", "project_slug", required=True, help="Project slug.")
@click.option("--work-type", required=True, help="Work type, for example `gtm` or `ci_setup`.")
@click.option("--payload", "payload_json", default="{}", show_default=True, help="JSON object.")
@click.option(
    "--priority",
    type=int,
    default=0,
    show_default=True,
    help="Higher values are leased first.",
)
@click.option("--agent-key", default=None, help="Optional agent to assign.")
def work_enqueue(  # noqa: PLR0913
    db_path: Path | None,
    project_slug: str,
    work_type: str,
    payload_json: str,
    priority: int,
    agent_key: str | None,
) -> None:
    """Queue one work item."""

    _run(
        CONTROLLER.enqueue,
        WorkEnqueueCommand(
            db_path=db_path,
            project_slug=project_slug,
            work_type=work_type,
            payload_json=payload_json,
            priority=priority,
            agent_key=agent_key,
        ),
    )


@work.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice(("pending", "in_progress", "completed", "failed")),
    default=None,
    help="Filter by status.",
)
@click.option("--project", "project_slug", default=None, help="Filter by project slug.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max rows to print.",
)
def work_list(
    db_path: Path | None,
    status: str | None,
    project_slug: str | None,
    limit: int,
) -> None:
    """List work items by priority."""

    _run(
        CONTROLLER.list_work,
        WorkListCommand(db_path=db_path, status=status, project_slug=project_slug, limit=limit),
    )


@work.command("trigger-orchestrator")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--project", "project_slug", required=True, help="Project slug.")
def work_trigger_orchestrator(db_path: Path | None, project_slug: str) -> None:
    """Queue an urgent `orchestrator` work item for a project."""

    _run(
        CONTROLLER.trigger_orchestrator,
        OrchestratorTriggerCommand(db_path=db_path, project_slug=project_slug),
    )


@synorg.group()
def worker() -> None:
    """Worker commands."""


@worker.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--agent-key",
    default=None,
    help="Agent to lease work for (defaults to `SYNORG_WORKER_AGENT_KEY`).",
)
@click.option(
    "--once/--loop",
    default=True,
    show_default=True,
    help="Run one lease-execute cycle or loop until idle.",
)
@click.option(
    "--max-items",
    type=click.IntRange(min=1),
    default=None,
    help="Optional cap for processed work items in loop mode.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Consecutive empty polls before the loop exits.",
)
def worker_run(
    db_path: Path | None,
    agent_key: str | None,
    once: bool,
    max_items: int | None,
    max_idle_polls: int,
) -> None:
    """Run the queue worker for one agent."""

    _run(
        CONTROLLER.run_worker,
        WorkerRunCommand(
            db_path=db_path,
            agent_key=agent_key,
            once=once,
            max_items=max_items,
            max_idle_polls=max_idle_polls,
        ),
    )


@synorg.group()
def runs() -> None:
    """Run history commands."""


@runs.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--work-item", "work_item_id", type=int, default=None, help="Filter by work item.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=20,
    show_default=True,
    help="Max rows to print.",
)
def runs_list(db_path: Path | None, work_item_id: int | None, limit: int) -> None:
    """List recent runs, newest first."""

    _run(
        CONTROLLER.list_runs,
        RunsListCommand(db_path=db_path, work_item_id=work_item_id, limit=limit),
    )


@synorg.group()
def webhook() -> None:
    """Webhook commands."""


@webhook.command("ingest")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument(
    "body_path",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
)
@click.option("--event", "event_type", required=True, help="`X-GitHub-Event` value.")
@click.option("--delivery", "delivery_id", default=None, help="`X-GitHub-Delivery` value.")
@click.option("--signature", default=None, help="`X-Hub-Signature-256` value.")
def webhook_ingest(
    db_path: Path | None,
    body_path: Path,
    event_type: str,
    delivery_id: str | None,
    signature: str | None,
) -> None:
    """Replay a captured webhook delivery body through verification and reconciliation."""

    _run(
        CONTROLLER.ingest_webhook,
        WebhookIngestCommand(
            db_path=db_path,
            body_path=body_path,
            event_type=event_type,
            delivery_id=delivery_id,
            signature=signature,
        ),
    )


def _run(handler: Callable[[CommandT], list[str]], command: CommandT) -> None:
    try:
        lines = handler(command)
    except (ValueError, SynorgError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    synorg()
