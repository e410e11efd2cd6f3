"""Groq hosted models through the OpenAI-compatible endpoint."""

from crawler.llm.openai import OpenAICompatibleProvider

_GROQ_BASE_URL = "https://api.groq.com/openai/v1"


class GroqProvider(OpenAICompatibleProvider):
    display_name = "Groq"

    @property
    def provider_id(self) -> str:
        return "groq"

    @property
    def default_model(self) -> str:
        return "llama-3.3-70b-versatile"

    @property
    def env_var(self) -> str:
        return "GROQ_API_KEY"

    @property
    def base_url(self) -> str:
        return _GROQ_BASE_URL
