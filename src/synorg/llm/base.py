"""LLM collaborator interface used by the execution orchestrator."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Protocol

SYSTEM_PREAMBLE = "You are a helpful AI assistant working on a software project."


@dataclass(slots=True)
class LlmResponse:
    """Raw chat completion; ``error`` is set instead of raising."""

    content: str | None
    usage: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


class LlmClient(Protocol):
    """Protocol implemented by LLM backends."""

    def chat(
        self,
        prompt: str,
        context: dict[str, Any],
        schema: dict[str, Any],
    ) -> LlmResponse:
        """Send one prompt with its context and expected output schema."""


def build_system_message(context: dict[str, Any], schema: dict[str, Any]) -> str:
    """Describe the project, agent, work item and required output shape."""

    parts = [SYSTEM_PREAMBLE]
    project = context.get("project") or {}
    if project:
        parts.append("\nProject context:")
        for label, key in (("Name", "name"), ("Repository", "repo_full_name"), ("Brief", "brief")):
            if project.get(key):
                parts.append(f"- {label}: {project[key]}")
    agent = context.get("agent") or {}
    if agent.get("name"):
        parts.append("\nAgent context:")
        parts.append(f"- Agent: {agent['name']} ({agent.get('key', '')})")
    work_item = context.get("work_item") or {}
    if work_item.get("work_type"):
        parts.append("\nWork item context:")
        parts.append(f"- Type: {work_item['work_type']}")
        parts.append(f"- Priority: {work_item.get('priority')}")
    parts.append("\nContext JSON:")
    parts.append(json.dumps(context, indent=2, sort_keys=True, default=str))
    parts.append("\nRespond with a single JSON object matching this JSON schema:")
    parts.append(json.dumps(schema, indent=2, sort_keys=True))
    return "\n".join(parts)


def build_user_message(prompt: str, context: dict[str, Any]) -> str:
    payload = (context.get("work_item") or {}).get("payload")
    if not payload:
        return prompt
    return f"{prompt}\n\nAdditional context:\n{json.dumps(payload, indent=2, default=str)}"


def normalize_usage(raw: Any) -> dict[str, int]:
    usage = raw if isinstance(raw, dict) else {}
    return {
        "prompt_tokens": int(usage.get("prompt_tokens") or 0),
        "completion_tokens": int(usage.get("completion_tokens") or 0),
        "total_tokens": int(usage.get("total_tokens") or 0),
    }
