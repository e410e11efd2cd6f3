"""Tests for model-assisted completion of unknown fields."""

import time

import pytest

from crawler.core.config import AIExtractionConfig
from crawler.core.errors import AIExtractionError
from crawler.core.schemas import CriteriaField, JobCandidate, LinkRole, RawDocument, StepsField
from crawler.extract.ai import AIFieldCompleter, merge_unknown_fields
from crawler.llm.base import LLMProvider


class _FakeProvider(LLMProvider):
    """Replays scripted responses; exceptions in the script are raised."""

    def __init__(self, *responses: object, delay: float = 0.0) -> None:
        self._responses = list(responses)
        self._delay = delay
        self.prompts: list[str] = []

    @property
    def provider_id(self) -> str:
        return "fake"

    @property
    def default_model(self) -> str:
        return "fake-1"

    @property
    def env_var(self) -> None:
        return None

    def complete(self, text: str, model: str | None = None, *, system: str | None = None) -> str:
        self.prompts.append(text)
        if self._delay:
            time.sleep(self._delay)
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return str(response)


class _Sleeps:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _candidate(**kw: object) -> JobCandidate:
    defaults: dict[str, object] = {
        "source_id": "ssc",
        "title": "Junior Engineer 2026",
        "eligibility": CriteriaField.known({"Age Limit": "18-27 years"}),
        "fees": CriteriaField.unknown("no fee information found"),
        "application_process": StepsField.unknown("no application process found"),
        "block_text": "Junior Engineer 2026\nFee: Rs 100 for all\nApply online at the portal.",
    }
    defaults.update(kw)
    return JobCandidate(**defaults)  # type: ignore[arg-type]


RESPONSE = (
    '{"eligibility": {"Age Limit": "21-30 years"}, "fees": {"All": "Rs 100"}, '
    '"application_process": ["Apply online at the portal."]}'
)


# ---------------------------------------------------------------------------
# merge_unknown_fields
# ---------------------------------------------------------------------------


class TestMergeUnknownFields:
    def test_only_unknown_fields_filled(self) -> None:
        merged = merge_unknown_fields(_candidate(), {
            "eligibility": {"Age Limit": "21-30 years"},
            "fees": {"All": "Rs 100"},
            "application_process": ["Apply online"],
        })
        assert merged.eligibility.value == {"Age Limit": "18-27 years"}
        assert merged.fees.value == {"All": "Rs 100"}
        assert merged.application_process.value == ["Apply online"]

    def test_stated_none_not_overwritten(self) -> None:
        candidate = _candidate(fees=CriteriaField.known({}))
        merged = merge_unknown_fields(candidate, {"fees": {"General": "₹500"}})
        assert merged.fees.value == {}

    def test_null_keeps_unknown(self) -> None:
        merged = merge_unknown_fields(_candidate(), {"fees": None, "application_process": None})
        assert merged.unknown_fields == ["fees", "application_process"]

    def test_blank_entries_dropped(self) -> None:
        merged = merge_unknown_fields(_candidate(), {
            "fees": {"General": "  ", "OBC": " ₹50 "},
            "application_process": ["Register", "", None],
        })
        assert merged.fees.value == {"OBC": "₹50"}
        assert merged.application_process.value == ["Register"]

    def test_wrong_shapes_ignored(self) -> None:
        merged = merge_unknown_fields(_candidate(), {"fees": "Rs 100", "application_process": "Apply"})
        assert merged.unknown_fields == ["fees", "application_process"]

    def test_identity_key_kept(self) -> None:
        candidate = _candidate()
        merged = merge_unknown_fields(candidate, {"fees": {"All": "Rs 100"}})
        assert merged.identity_key == candidate.identity_key
        assert merged.content_digest != candidate.content_digest


# ---------------------------------------------------------------------------
# AIFieldCompleter
# ---------------------------------------------------------------------------


class TestAIFieldCompleter:
    async def test_fills_unknown_fields(self) -> None:
        provider = _FakeProvider(RESPONSE)
        completer = AIFieldCompleter(AIExtractionConfig(enabled=True), provider)
        candidate = _candidate()
        completed = await completer.complete(candidate)
        assert completed.fees.value == {"All": "Rs 100"}
        assert completed.application_process.value == ["Apply online at the portal."]
        assert completed.eligibility.value == {"Age Limit": "18-27 years"}
        assert completed.identity_key == candidate.identity_key
        assert provider.prompts[0].startswith("Notice title: Junior Engineer 2026\n\n")

    async def test_complete_candidate_not_sent(self) -> None:
        provider = _FakeProvider()
        completer = AIFieldCompleter(AIExtractionConfig(enabled=True), provider)
        candidate = _candidate(
            fees=CriteriaField.known({}), application_process=StepsField.known(["Apply"]),
        )
        assert await completer.complete(candidate) is candidate
        assert provider.prompts == []

    async def test_empty_block_not_sent(self) -> None:
        provider = _FakeProvider()
        completer = AIFieldCompleter(AIExtractionConfig(enabled=True), provider)
        candidate = _candidate(block_text="   ")
        assert await completer.complete(candidate) is candidate
        assert provider.prompts == []

    async def test_input_capped(self) -> None:
        provider = _FakeProvider("{}")
        completer = AIFieldCompleter(AIExtractionConfig(enabled=True, max_input_chars=500), provider)
        await completer.complete(_candidate(block_text="x" * 2000))
        assert provider.prompts[0].count("x") == 500

    async def test_transient_failure_retried(self) -> None:
        provider = _FakeProvider(RuntimeError("503 overloaded"), RESPONSE)
        sleeps = _Sleeps()
        completer = AIFieldCompleter(
            AIExtractionConfig(enabled=True, max_retries=1), provider, sleep=sleeps,
        )
        completed = await completer.complete(_candidate())
        assert completed.fees.value == {"All": "Rs 100"}
        assert len(provider.prompts) == 2
        assert len(sleeps.delays) == 1

    async def test_retries_exhausted(self) -> None:
        provider = _FakeProvider(RuntimeError("down"), RuntimeError("still down"))
        completer = AIFieldCompleter(
            AIExtractionConfig(enabled=True, max_retries=1), provider, sleep=_Sleeps(),
        )
        with pytest.raises(AIExtractionError, match="AI completion failed for 'Junior Engineer 2026'"):
            await completer.complete(_candidate())
        assert len(provider.prompts) == 2

    async def test_unparseable_response_not_retried(self) -> None:
        provider = _FakeProvider("I could not find any fees.")
        completer = AIFieldCompleter(
            AIExtractionConfig(enabled=True, max_retries=2), provider, sleep=_Sleeps(),
        )
        with pytest.raises(AIExtractionError, match="Failed to parse LLM response"):
            await completer.complete(_candidate())
        assert len(provider.prompts) == 1

    async def test_timeout(self) -> None:
        provider = _FakeProvider("{}", delay=0.3)
        completer = AIFieldCompleter(
            AIExtractionConfig(enabled=True, max_retries=0, timeout_seconds=0.01), provider,
        )
        with pytest.raises(AIExtractionError):
            await completer.complete(_candidate())

    async def test_unknown_provider_name(self) -> None:
        completer = AIFieldCompleter(AIExtractionConfig(enabled=True, provider="nope"))
        with pytest.raises(AIExtractionError, match="Unknown LLM provider 'nope'"):
            await completer.complete(_candidate())


# ---------------------------------------------------------------------------
# Scanned PDFs
# ---------------------------------------------------------------------------


class _PdfReadingProvider(_FakeProvider):
    def __init__(self, *responses: object) -> None:
        super().__init__(*responses)
        self.documents: list[bytes] = []

    def complete_pdf(
        self, content: bytes, model: str | None = None, *, system: str | None = None,
    ) -> str:
        self.documents.append(content)
        return self.complete("<pdf>", model)


def _scan() -> RawDocument:
    return RawDocument(source_id="rrb", url="https://rrb.example.gov.in/cen-05.pdf",
                       status=200, content=b"%PDF-1.7 image", content_type="application/pdf")


class TestReadScannedPdf:
    async def test_builds_candidate_from_document(self) -> None:
        provider = _PdfReadingProvider(
            '{"title": "Junior Clerk Recruitment", "fees": {"All": "Rs 50"}, '
            '"eligibility": null, "application_process": null}'
        )
        completer = AIFieldCompleter(AIExtractionConfig(enabled=True), provider)

        candidate = await completer.read_scanned_pdf(_scan())

        assert candidate is not None
        assert provider.documents == [b"%PDF-1.7 image"]
        assert candidate.source_id == "rrb"
        assert candidate.title == "Junior Clerk Recruitment"
        assert candidate.fees.value == {"All": "Rs 50"}
        assert candidate.unknown_fields == ["eligibility", "application_process"]
        assert candidate.links[0].role is LinkRole.OFFICIAL_NOTIFICATION
        assert candidate.links[0].url == "https://rrb.example.gov.in/cen-05.pdf"

    async def test_no_title_means_no_notice(self) -> None:
        provider = _PdfReadingProvider('{"title": null}')
        completer = AIFieldCompleter(AIExtractionConfig(enabled=True), provider)
        assert await completer.read_scanned_pdf(_scan()) is None

    async def test_text_only_provider_not_retried(self) -> None:
        provider = _FakeProvider()
        completer = AIFieldCompleter(
            AIExtractionConfig(enabled=True, max_retries=2), provider, sleep=_Sleeps(),
        )
        with pytest.raises(AIExtractionError, match="the fake provider cannot read PDF documents"):
            await completer.read_scanned_pdf(_scan())
