"""Google Gemini LLM provider (google-genai SDK)."""

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


def _import_genai() -> tuple[Any, Any]:
    try:
        from google import genai
        from google.genai import types as genai_types
    except ImportError:
        msg = (
            "google-genai is required for AI field completion. "
            "Install with: pip install 'job-notice-crawler[gemini]'"
        )
        raise ImportError(msg) from None
    return genai, genai_types


class GeminiProvider(LLMProvider):
    """Gemini with JSON output enforced through the response MIME type."""

    @property
    def provider_id(self) -> str:
        return "gemini"

    @property
    def default_model(self) -> str:
        return "gemini-2.5-flash"

    @property
    def env_var(self) -> str:
        return "GOOGLE_API_KEY"

    def complete(
        self,
        text: str,
        model: str | None = None,
        *,
        system: str | None = None,
    ) -> str:
        use_model = model or self.default_model
        logger.debug("Completing notice fields with Gemini (%s, %d chars)", use_model, len(text))
        return self._generate(
            text, use_model, system if system is not None else EXTRACTION_SYSTEM_PROMPT,
        )

    def complete_pdf(
        self,
        content: bytes,
        model: str | None = None,
        *,
        system: str | None = None,
    ) -> str:
        _, genai_types = _import_genai()
        use_model = model or self.default_model
        logger.debug("Reading scanned PDF with Gemini (%s, %d bytes)", use_model, len(content))
        return self._generate(
            [
                genai_types.Part.from_bytes(data=content, mime_type="application/pdf"),
                SCANNED_NOTICE_INSTRUCTION,
            ],
            use_model,
            system if system is not None else SCANNED_NOTICE_SYSTEM_PROMPT,
        )

    def _generate(self, contents: Any, model: str, system: str) -> str:
        api_key = self.require_api_key()
        genai, genai_types = _import_genai()
        response = genai.Client(api_key=api_key).models.generate_content(
            model=model,
            contents=contents,
            config=genai_types.GenerateContentConfig(
                system_instruction=system,
                response_mime_type="application/json",
                temperature=0,
                max_output_tokens=MAX_RESPONSE_TOKENS,
            ),
        )
        return response.text or ""
