"""LLM collaborator implementations."""

from synorg.config import LlmSettings
from synorg.llm.base import LlmClient, LlmResponse
from synorg.llm.cli_client import CliAgentClient
from synorg.llm.openai_client import OpenAiChatClient


def build_llm_client(settings: LlmSettings) -> LlmClient:
    """Instantiate the backend selected by ``SYNORG_LLM_BACKEND``."""

    if settings.backend == "cli":
        return CliAgentClient(settings)
    if settings.backend == "openai":
        return OpenAiChatClient(settings)
    raise ValueError(f"Unsupported LLM backend: {settings.backend!r}")


__all__ = [
    "CliAgentClient",
    "LlmClient",
    "LlmResponse",
    "OpenAiChatClient",
    "build_llm_client",
]
