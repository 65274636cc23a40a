"""Subprocess LLM client for CLI agents that print a JSON answer to stdout."""

from __future__ import annotations

import logging
import shlex
import subprocess
import tempfile
from pathlib import Path
from typing import Any

from synorg.config import LlmSettings
from synorg.llm.base import LlmResponse, build_system_message, build_user_message
from synorg.orchestrator.sanitization import redact_secrets

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124


class CliAgentClient:
    """Render a command template with ``{prompt}``/``{prompt_file}``/``{model}`` and run it."""

    def __init__(self, settings: LlmSettings) -> None:
        self.settings = settings

    def chat(
        self,
        prompt: str,
        context: dict[str, Any],
        schema: dict[str, Any],
    ) -> LlmResponse:
        full_prompt = (
            f"{build_system_message(context, schema)}\n\n{build_user_message(prompt, context)}"
        )
        with tempfile.TemporaryDirectory(prefix="synorg-llm-") as scratch:
            prompt_file = Path(scratch) / "prompt.txt"
            prompt_file.write_text(full_prompt, "utf-8")
            try:
                argv = _build_run_args(
                    command_template=self.settings.command_template,
                    model=self.settings.model,
                    prompt=full_prompt,
                    prompt_file=prompt_file,
                )
            except ValueError as error:
                return LlmResponse(content=None, error=str(error))
            return self._run(argv)

    def _run(self, argv: list[str]) -> LlmResponse:
        try:
            process = subprocess.Popen(  # noqa: S603
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except FileNotFoundError:
            return LlmResponse(content=None, error=f"CLI agent command not found: {argv[0]}")
        except OSError as error:
            return LlmResponse(content=None, error=f"CLI agent failed to start: {error}")

        try:
            stdout, stderr = process.communicate(timeout=self.settings.command_timeout_seconds)
        except subprocess.TimeoutExpired:
            _terminate_process(process)
            process.communicate()
            return LlmResponse(
                content=None,
                error=(
                    f"CLI agent timed out after {self.settings.command_timeout_seconds}s "
                    f"(exit {TIMEOUT_EXIT_CODE})"
                ),
            )
        except BaseException:
            _terminate_process(process)
            raise

        if process.returncode != 0:
            detail = redact_secrets(stderr, max_chars=500) or "no stderr"
            logger.warning("CLI agent exited with %s: %s", process.returncode, detail)
            return LlmResponse(
                content=None,
                error=f"CLI agent exited with {process.returncode}: {detail}",
            )
        return LlmResponse(content=stdout, usage={"backend": "cli", "command": argv[0]})


def _build_run_args(
    *,
    command_template: str,
    model: str,
    prompt: str,
    prompt_file: Path,
) -> list[str]:
    stripped = command_template.strip()
    if not stripped:
        raise ValueError("CLI agent command template is empty.")
    if "{prompt" not in stripped:
        raise ValueError("CLI agent command template must include {prompt} or {prompt_file}.")
    try:
        rendered = stripped.format(
            model=shlex.quote(model),
            prompt=shlex.quote(prompt),
            prompt_file=shlex.quote(str(prompt_file)),
        )
    except KeyError as error:
        raise ValueError(f"Unsupported command template placeholder: {error}") from error
    argv = shlex.split(rendered)
    if not argv:
        raise ValueError("CLI agent command template rendered empty command.")
    return argv


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
