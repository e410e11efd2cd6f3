"""Model-assisted completion of fields the deterministic pass left unknown.

Only unknown fields are ever filled; known values (including an explicit
"none") are never overwritten. The identity key of the candidate is kept,
so a model's answer cannot split one posting into two records.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from crawler.core.config import AIExtractionConfig
from crawler.core.errors import AIExtractionError
from crawler.core.schemas import (
    CriteriaField,
    JobCandidate,
    LinkRole,
    RawDocument,
    SourceLink,
    StepsField,
)
from crawler.llm import get_provider, parse_json_object
from crawler.llm.base import LLMProvider

logger = logging.getLogger(__name__)


def _as_criteria(value: Any) -> dict[str, str] | None:
    if not isinstance(value, dict):
        return None
    criteria: dict[str, str] = {}
    for key, text in value.items():
        name = " ".join(str(key).split())
        if name and text is not None and str(text).strip():
            criteria[name] = " ".join(str(text).split())
    return criteria


def _as_steps(value: Any) -> list[str] | None:
    if not isinstance(value, list):
        return None
    return [" ".join(str(step).split()) for step in value if step is not None and str(step).strip()]


def merge_unknown_fields(candidate: JobCandidate, data: dict[str, Any]) -> JobCandidate:
    """Fill the candidate's unknown fields from a model response."""
    updates: dict[str, Any] = {}
    if candidate.eligibility.is_unknown:
        eligibility = _as_criteria(data.get("eligibility"))
        if eligibility is not None:
            updates["eligibility"] = CriteriaField.known(eligibility)
    if candidate.fees.is_unknown:
        fees = _as_criteria(data.get("fees"))
        if fees is not None:
            updates["fees"] = CriteriaField.known(fees)
    if candidate.application_process.is_unknown:
        steps = _as_steps(data.get("application_process"))
        if steps is not None:
            updates["application_process"] = StepsField.known(steps)

    if not updates:
        return candidate
    logger.debug("Model filled %s for '%s'", sorted(updates), candidate.title)
    return candidate.with_completed_fields(**updates)


class AIFieldCompleter:
    """Calls an LLM provider for candidates with unknown fields.

    Provider calls are blocking SDK calls, so each runs in a worker thread
    under ``timeout_seconds``. Missing credentials, missing SDKs and
    unparseable responses are not retried.
    """

    def __init__(
        self,
        config: AIExtractionConfig,
        provider: LLMProvider | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._provider = provider
        self._sleep = sleep

    @property
    def provider(self) -> LLMProvider:
        if self._provider is None:
            self._provider = get_provider(self._config.provider)
        return self._provider

    def _prompt(self, candidate: JobCandidate) -> str:
        body = candidate.block_text[: self._config.max_input_chars]
        return f"Notice title: {candidate.title}\n\n{body}"

    async def _ask(self, call: Callable[..., str], payload: Any) -> dict[str, Any]:
        raw = await asyncio.wait_for(
            asyncio.to_thread(call, payload, self._config.model),
            timeout=self._config.timeout_seconds,
        )
        return parse_json_object(raw or "")

    async def _ask_with_retries(self, call: Callable[..., str], payload: Any) -> dict[str, Any]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._config.max_retries + 1),
            wait=wait_exponential(multiplier=1, max=10),
            retry=(
                retry_if_exception_type(Exception)
                & retry_if_not_exception_type((ValueError, ImportError, NotImplementedError))
            ),
            sleep=self._sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._ask(call, payload)
        msg = "retry loop exited without a result"
        raise RuntimeError(msg)

    async def complete(self, candidate: JobCandidate) -> JobCandidate:
        """Return candidate with unknown fields filled where the model could.

        Raises:
            AIExtractionError: If the provider fails after all retries.
        """
        if not candidate.unknown_fields or not candidate.block_text.strip():
            return candidate

        try:
            data = await self._ask_with_retries(self.provider.complete, self._prompt(candidate))
        except Exception as e:
            msg = f"AI completion failed for '{candidate.title}': {e}"
            raise AIExtractionError(msg) from e

        return merge_unknown_fields(candidate, data)

    async def read_scanned_pdf(self, doc: RawDocument) -> JobCandidate | None:
        """Ask the model to read a PDF notice that has no text layer.

        The PDF's own URL becomes the official notification link. Returns
        None when the model finds no notice title in the document.

        Raises:
            AIExtractionError: If the provider cannot read PDFs or fails
                after all retries.
        """
        try:
            data = await self._ask_with_retries(self.provider.complete_pdf, doc.content)
        except Exception as e:
            msg = f"AI reading of scanned PDF {doc.url} failed: {e}"
            raise AIExtractionError(msg) from e

        title = data.get("title")
        if not isinstance(title, str) or not title.strip():
            logger.info("Model found no notice in scanned PDF %s", doc.url)
            return None

        unread = "not read from the scanned notice"
        blank = JobCandidate(
            source_id=doc.source_id,
            title=title,
            eligibility=CriteriaField.unknown(unread),
            fees=CriteriaField.unknown(unread),
            application_process=StepsField.unknown(unread),
            links=[
                SourceLink(
                    role=LinkRole.OFFICIAL_NOTIFICATION, label="Official Notification", url=doc.url,
                ),
            ],
        )
        return merge_unknown_fields(blank, data)
