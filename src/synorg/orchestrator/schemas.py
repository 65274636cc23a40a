"""LLM output schemas, validation and the static work_type routing table."""

from __future__ import annotations

import copy
import json
import re
from enum import Enum
from typing import Any

from synorg.orchestrator.errors import OutputValidationError, UnknownWorkTypeError


class OutputKind(str, Enum):
    """Declared ``type`` of a structured LLM response; one strategy per kind."""

    WORK_ITEMS = "work_items"
    FILE_WRITES = "file_writes"
    GITHUB_OPERATIONS = "github_operations"
    WORKSPACE_CHANGES = "workspace_changes"


ERROR_RESPONSE_TYPE = "error"
GITHUB_OPERATION_NAMES = ("create_issue", "create_pr", "create_files_and_pr")
DEFAULT_WORK_ITEM_PRIORITY = 5
MIN_WORK_ITEM_PRIORITY = 1
MAX_WORK_ITEM_PRIORITY = 10
SETUP_WORK_TYPE_SUFFIX = "_setup"

WORK_TYPE_ROUTES: dict[str, OutputKind] = {
    "gtm": OutputKind.FILE_WRITES,
    "docs": OutputKind.FILE_WRITES,
    "product_manager": OutputKind.WORK_ITEMS,
    "orchestrator": OutputKind.WORK_ITEMS,
    "issue": OutputKind.GITHUB_OPERATIONS,
    "repo_bootstrap": OutputKind.WORKSPACE_CHANGES,
    "rails_setup": OutputKind.WORKSPACE_CHANGES,
    "ci_setup": OutputKind.WORKSPACE_CHANGES,
    "dependabot_setup": OutputKind.WORKSPACE_CHANGES,
    "rubocop_setup": OutputKind.WORKSPACE_CHANGES,
    "eslint_setup": OutputKind.WORKSPACE_CHANGES,
    "git_hooks_setup": OutputKind.WORKSPACE_CHANGES,
    "frontend_setup": OutputKind.WORKSPACE_CHANGES,
    "readme_setup": OutputKind.WORKSPACE_CHANGES,
}

_FILE_ENTRY = {
    "type": "object",
    "required": ["path", "content"],
    "properties": {
        "path": {"type": "string"},
        "content": {"type": "string"},
    },
}

OUTPUT_SCHEMAS: dict[OutputKind, dict[str, Any]] = {
    OutputKind.WORK_ITEMS: {
        "type": "object",
        "required": ["type", "work_items"],
        "properties": {
            "type": {"type": "string", "enum": ["work_items"]},
            "work_items": {
                "type": "array",
                "items": {
                    "type": "object",
                    "required": ["work_type", "agent_key"],
                    "properties": {
                        "work_type": {"type": "string"},
                        "agent_key": {"type": "string"},
                        "priority": {
                            "type": "integer",
                            "minimum": MIN_WORK_ITEM_PRIORITY,
                            "maximum": MAX_WORK_ITEM_PRIORITY,
                            "default": DEFAULT_WORK_ITEM_PRIORITY,
                        },
                        "payload": {"type": "object", "default": {}},
                    },
                },
            },
        },
    },
    OutputKind.FILE_WRITES: {
        "type": "object",
        "required": ["type", "files"],
        "properties": {
            "type": {"type": "string", "enum": ["file_writes"]},
            "files": {"type": "array", "items": _FILE_ENTRY},
        },
    },
    OutputKind.GITHUB_OPERATIONS: {
        "type": "object",
        "required": ["type", "operations"],
        "properties": {
            "type": {"type": "string", "enum": ["github_operations"]},
            "operations": {
                "type": "array",
                "items": {
                    "type": "object",
                    "required": ["operation"],
                    "properties": {
                        "operation": {"type": "string", "enum": list(GITHUB_OPERATION_NAMES)},
                        "title": {"type": "string"},
                        "body": {"type": "string", "default": ""},
                        "labels": {"type": "array", "items": {"type": "string"}},
                        "pr_title": {"type": "string"},
                        "pr_body": {"type": "string", "default": ""},
                        "head": {"type": "string"},
                        "base": {"type": "string"},
                        "branch": {"type": "string"},
                        "files": {"type": "array", "items": _FILE_ENTRY},
                    },
                },
            },
        },
    },
    OutputKind.WORKSPACE_CHANGES: {
        "type": "object",
        "required": ["type", "changes"],
        "properties": {
            "type": {"type": "string", "enum": ["workspace_changes"]},
            "changes": {
                "oneOf": [
                    {
                        "type": "object",
                        "required": ["files"],
                        "properties": {
                            "message": {"type": "string"},
                            "pr_title": {"type": "string"},
                            "pr_body": {"type": "string"},
                            "files": {"type": "array", "items": _FILE_ENTRY},
                        },
                    },
                    {"type": "array", "items": _FILE_ENTRY},
                ],
            },
        },
    },
}

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)


def output_kind_for(work_type: str) -> OutputKind:
    """Resolve the expected output kind; unknown work types are fatal."""

    kind = WORK_TYPE_ROUTES.get(work_type)
    if kind is not None:
        return kind
    if work_type.endswith(SETUP_WORK_TYPE_SUFFIX) and len(work_type) > len(SETUP_WORK_TYPE_SUFFIX):
        return OutputKind.WORKSPACE_CHANGES
    raise UnknownWorkTypeError(work_type)


def schema_for(kind: OutputKind) -> dict[str, Any]:
    return copy.deepcopy(OUTPUT_SCHEMAS[kind])


def parse_response_document(content: Any) -> dict[str, Any]:
    """Coerce LLM content (mapping or JSON text, optionally fenced) into a dict."""

    if isinstance(content, dict):
        return content
    if not isinstance(content, str):
        raise OutputValidationError("Response must be a JSON object or JSON string.")

    text = content.strip()
    for candidate in _json_candidates(text):
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    raise OutputValidationError("Response is not a valid JSON object.")


def declared_error(document: dict[str, Any]) -> str | None:
    """Return the message of an ``{"type": "error"}`` response, else ``None``."""

    if document.get("type") != ERROR_RESPONSE_TYPE:
        return None
    message = document.get("error")
    if isinstance(message, str) and message.strip():
        return message.strip()
    return "Agent reported an error without a message."


def validate_and_normalize(
    kind: OutputKind,
    content: Any,
    *,
    default_branch: str = "main",
) -> dict[str, Any]:
    """Validate ``content`` against ``kind`` and apply defaults.

    Raises:
        OutputValidationError: on any shape mismatch; the message is suitable
            for the run log verbatim.
    """

    document = copy.deepcopy(parse_response_document(content))
    declared = document.get("type")
    if declared != kind.value:
        raise OutputValidationError(f"Expected type '{kind.value}', got '{declared}'")

    required = OUTPUT_SCHEMAS[kind]["required"]
    missing = [name for name in required if name not in document]
    if missing:
        raise OutputValidationError(f"Missing required fields: {', '.join(missing)}")

    if kind == OutputKind.WORK_ITEMS:
        document["work_items"] = _normalize_work_items(document["work_items"])
    elif kind == OutputKind.FILE_WRITES:
        document["files"] = _normalize_files(document["files"], label="files")
    elif kind == OutputKind.GITHUB_OPERATIONS:
        document["operations"] = _normalize_operations(
            document["operations"],
            default_branch=default_branch,
        )
    else:
        document["changes"] = _normalize_changes(document["changes"])
    return document


def _json_candidates(text: str) -> list[str]:
    candidates = [text]
    fenced = _FENCED_JSON.search(text)
    if fenced is not None:
        candidates.append(fenced.group(1))
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start : end + 1])
    return candidates


def _require_list(value: Any, *, label: str) -> list[Any]:
    if not isinstance(value, list) or not value:
        raise OutputValidationError(f"{label} must be a non-empty array")
    return value


def _require_object(value: Any, *, label: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise OutputValidationError(f"{label} must be an object")
    return value


def _present(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _normalize_work_items(value: Any) -> list[dict[str, Any]]:
    normalized: list[dict[str, Any]] = []
    for index, raw in enumerate(_require_list(value, label="work_items")):
        item = _require_object(raw, label=f"work_items[{index}]")
        if not _present(item.get("work_type")):
            raise OutputValidationError(f"work_items[{index}]: work_type is required")
        if not _present(item.get("agent_key")):
            raise OutputValidationError(f"work_items[{index}]: agent_key is required")
        priority = item.get("priority")
        if priority is None:
            priority = DEFAULT_WORK_ITEM_PRIORITY
        if isinstance(priority, bool) or not isinstance(priority, int):
            raise OutputValidationError(f"work_items[{index}]: priority must be an integer")
        if not MIN_WORK_ITEM_PRIORITY <= priority <= MAX_WORK_ITEM_PRIORITY:
            raise OutputValidationError(
                f"work_items[{index}]: priority must be between "
                f"{MIN_WORK_ITEM_PRIORITY} and {MAX_WORK_ITEM_PRIORITY}",
            )
        payload = item.get("payload")
        if payload is None:
            payload = {}
        _require_object(payload, label=f"work_items[{index}].payload")
        normalized.append(
            {
                **item,
                "work_type": item["work_type"].strip(),
                "agent_key": item["agent_key"].strip(),
                "priority": priority,
                "payload": payload,
            },
        )
    return normalized


def _normalize_files(value: Any, *, label: str) -> list[dict[str, Any]]:
    normalized: list[dict[str, Any]] = []
    for index, raw in enumerate(_require_list(value, label=label)):
        entry = _require_object(raw, label=f"{label}[{index}]")
        if not _present(entry.get("path")):
            raise OutputValidationError(f"{label}[{index}]: path is required")
        if not _present(entry.get("content")):
            raise OutputValidationError(f"{label}[{index}]: content is required")
        normalized.append({"path": entry["path"].strip(), "content": entry["content"]})
    return normalized


def _normalize_operations(value: Any, *, default_branch: str) -> list[dict[str, Any]]:
    normalized: list[dict[str, Any]] = []
    for index, raw in enumerate(_require_list(value, label="operations")):
        operation = dict(_require_object(raw, label=f"operations[{index}]"))
        name = operation.get("operation")
        if not _present(name):
            raise OutputValidationError(f"operations[{index}]: operation is required")
        if name not in GITHUB_OPERATION_NAMES:
            raise OutputValidationError(
                f"operations[{index}]: operation must be "
                "'create_issue', 'create_pr', or 'create_files_and_pr'",
            )
        operation.setdefault("body", "")
        operation.setdefault("pr_body", "")
        if not _present(operation.get("base")):
            operation["base"] = default_branch

        if name == "create_issue":
            if not _present(operation.get("title")):
                raise OutputValidationError(
                    f"operations[{index}]: title is required for create_issue",
                )
            labels = operation.get("labels") or []
            if not isinstance(labels, list):
                raise OutputValidationError(f"operations[{index}]: labels must be an array")
            operation["labels"] = [str(label) for label in labels]
        elif name == "create_pr":
            if not (_present(operation.get("title")) or _present(operation.get("pr_title"))):
                raise OutputValidationError(
                    f"operations[{index}]: title or pr_title is required for create_pr",
                )
            if not _present(operation.get("head")):
                raise OutputValidationError(f"operations[{index}]: head is required for create_pr")
        else:
            operation["files"] = _normalize_files(
                operation.get("files"),
                label=f"operations[{index}].files",
            )
        normalized.append(operation)
    return normalized


def _normalize_changes(value: Any) -> dict[str, Any]:
    if isinstance(value, list):
        return {"files": _normalize_files(value, label="changes")}
    changes = _require_object(value, label="changes")
    normalized: dict[str, Any] = {"files": _normalize_files(changes.get("files"), label="files")}
    for name in ("message", "pr_title", "pr_body"):
        text = changes.get(name)
        if text is not None and not isinstance(text, str):
            raise OutputValidationError(f"changes.{name} must be a string")
        if _present(text):
            normalized[name] = text
    return normalized
