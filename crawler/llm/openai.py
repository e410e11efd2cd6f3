"""OpenAI provider, and the base for servers speaking the same protocol."""

import logging
from typing import Any

from crawler.llm.base import EXTRACTION_SYSTEM_PROMPT, MAX_RESPONSE_TOKENS, LLMProvider

logger = logging.getLogger(__name__)


class OpenAICompatibleProvider(LLMProvider):
    """Chat-completions provider over the ``openai`` client.

    Subclasses point it at another endpoint (Groq, a local Ollama) by
    overriding ``base_url``. Keyless endpoints get the provider id as a
    placeholder key, which the client requires.
    """

    display_name = "OpenAI"
    json_mode = True

    @property
    def base_url(self) -> str | None:
        return None

    def complete(
        self,
        text: str,
        model: str | None = None,
        *,
        system: str | None = None,
    ) -> str:
        api_key = self.require_api_key() or self.provider_id
        try:
            import openai
        except ImportError:
            msg = (
                f"openai is required for {self.display_name} (OpenAI-compatible API). "
                "Install with: pip install 'job-notice-crawler[openai]'"
            )
            raise ImportError(msg) from None

        use_model = model or self.default_model
        request: dict[str, Any] = {
            "model": use_model,
            "messages": [
                {"role": "system", "content": system if system is not None else EXTRACTION_SYSTEM_PROMPT},
                {"role": "user", "content": text},
            ],
            "temperature": 0,
            "max_tokens": MAX_RESPONSE_TOKENS,
        }
        if self.json_mode:
            request["response_format"] = {"type": "json_object"}

        logger.debug(
            "Completing notice fields with %s (%s, %d chars)", self.display_name, use_model, len(text),
        )
        client = openai.OpenAI(base_url=self.base_url, api_key=api_key)
        response = client.chat.completions.create(**request)
        return response.choices[0].message.content or ""


class OpenAIProvider(OpenAICompatibleProvider):
    @property
    def provider_id(self) -> str:
        return "openai"

    @property
    def default_model(self) -> str:
        return "gpt-4o-mini"

    @property
    def env_var(self) -> str:
        return "OPENAI_API_KEY"
