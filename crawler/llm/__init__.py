"""LLM provider registry with lazy loading.

Usage:
    from crawler.llm import get_provider, parse_json_object

    provider = get_provider("gemini")
    raw = provider.complete(notice_text)
    data = parse_json_object(raw)
"""

from __future__ import annotations

import importlib

from crawler.llm.base import EXTRACTION_SYSTEM_PROMPT, LLMProvider, parse_json_object

__all__ = [
    "EXTRACTION_SYSTEM_PROMPT",
    "LLMProvider",
    "available_providers",
    "get_provider",
    "parse_json_object",
]

# Lazy registry: maps provider name → (module_path, class_name)
_REGISTRY: dict[str, tuple[str, str]] = {
    "anthropic": ("crawler.llm.anthropic", "AnthropicProvider"),
    "openai": ("crawler.llm.openai", "OpenAIProvider"),
    "gemini": ("crawler.llm.gemini", "GeminiProvider"),
    "groq": ("crawler.llm.groq", "GroqProvider"),
    "ollama": ("crawler.llm.ollama", "OllamaProvider"),
}


def get_provider(name: str) -> LLMProvider:
    """Instantiate and return an LLM provider by name.

    Raises:
        ValueError: If the provider name is unknown.
    """
    if name not in _REGISTRY:
        valid = ", ".join(sorted(_REGISTRY))
        msg = f"Unknown LLM provider '{name}'. Available: {valid}"
        raise ValueError(msg)

    module_path, class_name = _REGISTRY[name]
    module = importlib.import_module(module_path)
    cls = getattr(module, class_name)
    return cls()  # type: ignore[no-any-return]


def available_providers() -> list[str]:
    """Return sorted list of registered provider names."""
    return sorted(_REGISTRY)
