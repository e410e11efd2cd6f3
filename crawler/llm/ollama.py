"""Ollama local LLM provider (OpenAI-compatible API)."""

import os

from crawler.llm.openai import OpenAICompatibleProvider

_OLLAMA_BASE_URL = "http://localhost:11434/v1"


class OllamaProvider(OpenAICompatibleProvider):
    """A local Ollama server; ``OLLAMA_BASE_URL`` overrides the address."""

    display_name = "Ollama"
    # older Ollama builds reject response_format
    json_mode = False

    @property
    def provider_id(self) -> str:
        return "ollama"

    @property
    def default_model(self) -> str:
        return "llama3"

    @property
    def env_var(self) -> None:
        return None

    @property
    def base_url(self) -> str:
        return os.environ.get("OLLAMA_BASE_URL", _OLLAMA_BASE_URL)
