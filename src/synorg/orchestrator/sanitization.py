"""Secret redaction for run logs and error strings persisted in DB."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable

REDACTED = "[REDACTED]"
MAX_LOG_CHARS = 20_000

_Replacement = str | Callable[[re.Match[str]], str]

_REPLACEMENTS: tuple[tuple[re.Pattern[str], _Replacement], ...] = (
    (
        re.compile(r"(?i)\b(https?://)[^/\s:@]+:[^/\s@]+@"),
        lambda match: f"{match.group(1)}{REDACTED}@",
    ),
    (
        re.compile(r"(?i)\b(bearer|authorization:\s*token)\s+[a-z0-9._\-]{8,}\b"),
        rf"\1 {REDACTED}",
    ),
    (
        re.compile(r"\b(gh[pousr]_[A-Za-z0-9]{20,}|github_pat_[A-Za-z0-9_]{20,})\b"),
        REDACTED,
    ),
    (
        re.compile(r"(?i)\b(sk-[a-z0-9\-]{8,})\b"),
        REDACTED,
    ),
    (
        re.compile(
            r"(?i)\b(synorg|openai|github)[a-z0-9_]*_?(api_)?(key|token|secret)\b"
            r"\s*[:=]\s*['\"]?[^'\" \n\r\t]+['\"]?",
        ),
        "[redacted-secret]",
    ),
    (
        re.compile(r"(?i)([?&](?:token|key|signature|auth)=[^&\s]+)"),
        lambda match: match.group(1).split("=")[0] + "=[redacted]",
    ),
)


def redact_secrets(
    text: str | None,
    *,
    secrets: Iterable[str | None] = (),
    max_chars: int = MAX_LOG_CHARS,
) -> str:
    """Redact explicit secrets and common credential shapes, then clamp size."""

    if not text:
        return ""

    redacted = text
    # longest first so a secret containing another one is fully masked
    for secret in sorted({s for s in secrets if s}, key=len, reverse=True):
        redacted = redacted.replace(secret, REDACTED)
    for pattern, replacement in _REPLACEMENTS:
        redacted = pattern.sub(replacement, redacted)

    redacted = redacted.strip()
    if len(redacted) <= max_chars:
        return redacted
    return redacted[:max_chars]
