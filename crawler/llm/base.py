"""Abstract base class for LLM providers and shared logic."""

import json
import os
import re
from abc import ABC, abstractmethod
from typing import Any

EXTRACTION_SYSTEM_PROMPT = (
    "You read government job notices. Extract structured data from the notice "
    "text provided.\n\n"
    "Return ONLY a JSON object (no markdown, no explanation) with these fields:\n"
    "- eligibility (object or null): criterion name -> requirement text, e.g. "
    '{"Age Limit": "18-27 years", "Educational Qualification": "Graduate"}\n'
    "- fees (object or null): candidate category -> fee text, e.g. "
    '{"General / OBC": "₹100", "SC / ST": "Nil"}\n'
    "- application_process (list[str] or null): ordered steps to apply\n\n"
    "Use null when the notice does not state a field. Use an empty object or "
    "list only when the notice explicitly says there is none. Do not invent "
    "values that are not in the text."
)

SCANNED_NOTICE_SYSTEM_PROMPT = (
    "You read government job notices. The attached PDF is a scanned notice "
    "with no text layer.\n\n"
    "Return ONLY a JSON object (no markdown, no explanation) with these fields:\n"
    "- title (string or null): the post or examination the notice is about\n"
    "- eligibility (object or null): criterion name -> requirement text\n"
    "- fees (object or null): candidate category -> fee text\n"
    "- application_process (list[str] or null): ordered steps to apply\n\n"
    "Use null when the notice does not state a field, and a null title when the "
    "document is not a job notice. Do not invent values that are not in the document."
)

SCANNED_NOTICE_INSTRUCTION = "Extract the job notice fields from this scanned notice."

# the answer is a handful of short fields
MAX_RESPONSE_TOKENS = 1024


def parse_json_object(raw_text: str) -> dict[str, Any]:
    """Parse an LLM response into a JSON object.

    Handles markdown-wrapped JSON (```json ... ```) and plain JSON.
    """
    cleaned = re.sub(r"^```(?:json)?\s*\n?", "", raw_text.strip())
    cleaned = re.sub(r"\n?```\s*$", "", cleaned)

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        msg = f"Failed to parse LLM response as JSON: {e}"
        raise ValueError(msg) from e

    if not isinstance(data, dict):
        msg = f"Expected a JSON object from LLM, got {type(data).__name__}"
        raise ValueError(msg)
    return data


class LLMProvider(ABC):
    """Base class that every LLM provider must implement.

    ``complete`` is a blocking SDK call; the field completer runs it in a
    worker thread. A missing key raises ValueError and a missing SDK raises
    ImportError; the completer does not retry either.
    """

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Unique identifier for this provider (e.g. 'anthropic')."""

    @abstractmethod
    def complete(
        self,
        text: str,
        model: str | None = None,
        *,
        system: str | None = None,
    ) -> str:
        """Send notice text to the LLM and return raw response text.

        Args:
            text: Plain text of one job notice.
            model: Override the provider's default model. None uses default.
            system: Override the system prompt. None falls back to
                EXTRACTION_SYSTEM_PROMPT.

        Returns:
            Raw text response from the LLM (expected to be JSON).
        """

    def complete_pdf(
        self,
        content: bytes,
        model: str | None = None,
        *,
        system: str | None = None,
    ) -> str:
        """Send a PDF document to the LLM and return raw response text.

        Only providers whose API accepts documents override this. ``system``
        falls back to SCANNED_NOTICE_SYSTEM_PROMPT.

        Raises:
            NotImplementedError: If the provider cannot read PDFs.
        """
        msg = f"the {self.provider_id} provider cannot read PDF documents"
        raise NotImplementedError(msg)

    @property
    @abstractmethod
    def default_model(self) -> str:
        """The default model ID used when no override is specified."""

    @property
    @abstractmethod
    def env_var(self) -> str | None:
        """Environment variable name for the API key, or None if not needed."""

    def require_api_key(self) -> str:
        """Return the API key from ``env_var``, or "" for keyless providers.

        Raises:
            ValueError: If the variable is unset or blank.
        """
        name = self.env_var
        if name is None:
            return ""
        key = os.environ.get(name, "").strip()
        if not key:
            msg = f"{name} environment variable is required for the {self.provider_id} provider"
            raise ValueError(msg)
        return key
