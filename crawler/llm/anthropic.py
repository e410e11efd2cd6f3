"""Anthropic Claude LLM provider."""

import base64
import logging
from typing import Any

from crawler.llm.base import (
    EXTRACTION_SYSTEM_PROMPT,
    MAX_RESPONSE_TOKENS,
    SCANNED_NOTICE_INSTRUCTION,
    SCANNED_NOTICE_SYSTEM_PROMPT,
    LLMProvider,
)

logger = logging.getLogger(__name__)


class AnthropicProvider(LLMProvider):
    @property
    def provider_id(self) -> str:
        return "anthropic"

    @property
    def default_model(self) -> str:
        return "claude-sonnet-4-20250514"

    @property
    def env_var(self) -> str:
        return "ANTHROPIC_API_KEY"

    def complete(
        self,
        text: str,
        model: str | None = None,
        *,
        system: str | None = None,
    ) -> str:
        use_model = model or self.default_model
        logger.debug("Completing notice fields with Anthropic (%s, %d chars)", use_model, len(text))
        return self._send(
            text, use_model, system if system is not None else EXTRACTION_SYSTEM_PROMPT,
        )

    def complete_pdf(
        self,
        content: bytes,
        model: str | None = None,
        *,
        system: str | None = None,
    ) -> str:
        use_model = model or self.default_model
        logger.debug("Reading scanned PDF with Anthropic (%s, %d bytes)", use_model, len(content))
        document = {
            "type": "document",
            "source": {
                "type": "base64",
                "media_type": "application/pdf",
                "data": base64.standard_b64encode(content).decode("ascii"),
            },
        }
        return self._send(
            [document, {"type": "text", "text": SCANNED_NOTICE_INSTRUCTION}],
            use_model,
            system if system is not None else SCANNED_NOTICE_SYSTEM_PROMPT,
        )

    def _send(self, content: Any, model: str, system: str) -> str:
        api_key = self.require_api_key()
        try:
            import anthropic
        except ImportError:
            msg = (
                "anthropic is required for AI field completion. "
                "Install with: pip install 'job-notice-crawler[anthropic]'"
            )
            raise ImportError(msg) from None

        message = anthropic.Anthropic(api_key=api_key).messages.create(
            model=model,
            max_tokens=MAX_RESPONSE_TOKENS,
            temperature=0,
            system=system,
            messages=[{"role": "user", "content": content}],
        )
        return message.content[0].text  # type: ignore[union-attr]
