"""Tests for core data models."""

from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from crawler.core.schemas import (
    CriteriaField,
    Decision,
    DecisionKind,
    FailureStage,
    FetchError,
    FetchErrorKind,
    FieldStatus,
    JobCandidate,
    LinkRole,
    RawDocument,
    ScanOutcome,
    ScanReport,
    SourceLink,
    SourceStatus,
    StepsField,
)


def _candidate(**kw: object) -> JobCandidate:
    defaults: dict[str, object] = {
        "source_id": "ssc",
        "title": "Junior Engineer 2026",
        "eligibility": CriteriaField.known({"Age Limit": "18-27"}),
        "fees": CriteriaField.known({"General": "₹100"}),
        "application_process": StepsField.known(["Register", "Pay"]),
    }
    defaults.update(kw)
    return JobCandidate(**defaults)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# ExtractedField
# ---------------------------------------------------------------------------


class TestExtractedField:
    def test_known(self) -> None:
        f = CriteriaField.known({"Age": "18"})
        assert f.status is FieldStatus.KNOWN
        assert f.value == {"Age": "18"}
        assert f.is_unknown is False

    def test_known_empty_means_stated_none(self) -> None:
        f = CriteriaField.known({})
        assert f.is_unknown is False
        assert f.value == {}

    def test_unknown(self) -> None:
        f = StepsField.unknown("no section")
        assert f.is_unknown is True
        assert f.value is None
        assert f.reason == "no section"

    def test_unknown_with_value_rejected(self) -> None:
        with pytest.raises(ValidationError, match="unknown field cannot carry a value"):
            CriteriaField(status=FieldStatus.UNKNOWN, value={"a": "b"})

    def test_known_without_value_rejected(self) -> None:
        with pytest.raises(ValidationError, match="known field must carry a value"):
            StepsField(status=FieldStatus.KNOWN)

    def test_value_type_checked(self) -> None:
        with pytest.raises(ValidationError):
            StepsField.known({"not": "a list"})


# ---------------------------------------------------------------------------
# SourceLink
# ---------------------------------------------------------------------------


class TestSourceLink:
    def test_url_sanitized(self) -> None:
        link = SourceLink(role=LinkRole.OFFICIAL_WEBSITE, url="www.ssc.gov.in")
        assert link.url == "https://www.ssc.gov.in"

    @pytest.mark.parametrize("url", ["javascript:alert(1)", "data:text/html,x", ""])
    def test_unsafe_url_rejected(self, url: str) -> None:
        with pytest.raises(ValidationError, match="unsafe or empty URL"):
            SourceLink(url=url)

    def test_default_role(self) -> None:
        assert SourceLink(url="https://a.gov.in").role is LinkRole.OTHER


# ---------------------------------------------------------------------------
# RawDocument / FetchError
# ---------------------------------------------------------------------------


class TestRawDocument:
    def test_pdf_by_content_type(self) -> None:
        doc = RawDocument(source_id="a", url="https://a.gov.in/x", status=200,
                          content=b"...", content_type="application/pdf")
        assert doc.is_pdf is True

    def test_pdf_by_magic_bytes(self) -> None:
        doc = RawDocument(source_id="a", url="https://a.gov.in/x", status=200,
                          content=b"%PDF-1.7\n...", content_type="application/octet-stream")
        assert doc.is_pdf is True

    def test_html_is_not_pdf(self) -> None:
        doc = RawDocument(source_id="a", url="https://a.gov.in/x", status=200,
                          content=b"<html></html>", content_type="text/html")
        assert doc.is_pdf is False

    def test_text_uses_declared_encoding(self) -> None:
        doc = RawDocument(source_id="a", url="https://a.gov.in", status=200,
                          content="शुल्क".encode("utf-16"), encoding="utf-16")
        assert doc.text == "शुल्क"

    def test_text_falls_back_to_utf8(self) -> None:
        doc = RawDocument(source_id="a", url="https://a.gov.in", status=200,
                          content="₹100".encode(), encoding="no-such-codec")
        assert doc.text == "₹100"

    def test_text_replaces_undecodable_bytes(self) -> None:
        doc = RawDocument(source_id="a", url="https://a.gov.in", status=200, content=b"ok \xff")
        assert doc.text.startswith("ok ")


class TestFetchError:
    def test_describe(self) -> None:
        err = FetchError(source_id="a", url="https://a.gov.in", kind=FetchErrorKind.HTTP_STATUS,
                         message="server error 503", status=503, attempts=3, retryable=True)
        assert err.describe() == "http-status (HTTP 503): server error 503 after 3 attempt(s)"

    def test_describe_without_status(self) -> None:
        err = FetchError(source_id="a", url="https://a.gov.in", kind=FetchErrorKind.TIMEOUT,
                         message="timed out after 8.0s")
        assert err.describe() == "timeout: timed out after 8.0s after 1 attempt(s)"


# ---------------------------------------------------------------------------
# JobCandidate
# ---------------------------------------------------------------------------


class TestJobCandidate:
    def test_title_collapsed(self) -> None:
        c = _candidate(title="  Junior   Engineer\n2026 ")
        assert c.title == "Junior Engineer 2026"

    def test_blank_title_rejected(self) -> None:
        with pytest.raises(ValidationError, match="title must not be empty"):
            _candidate(title="   ")

    def test_frozen(self) -> None:
        c = _candidate()
        with pytest.raises(ValidationError):
            c.title = "other"  # type: ignore[misc]

    def test_unknown_fields(self) -> None:
        c = _candidate(eligibility=CriteriaField.unknown(), application_process=StepsField.unknown())
        assert c.unknown_fields == ["eligibility", "application_process"]

    def test_identity_key_ignores_title_case(self) -> None:
        assert _candidate(title="JE 2026").identity_key == _candidate(title="je  2026").identity_key

    def test_digest_changes_with_links(self) -> None:
        plain = _candidate()
        linked = _candidate(links=[SourceLink(role=LinkRole.APPLY_ONLINE, url="https://a.gov.in/apply")])
        assert plain.identity_key == linked.identity_key
        assert plain.content_digest != linked.content_digest

    def test_block_text_not_serialized(self) -> None:
        c = _candidate(block_text="raw block")
        assert "block_text" not in c.model_dump()
        assert c.block_text == "raw block"

    def test_completed_fields_keep_identity(self) -> None:
        c = _candidate(eligibility=CriteriaField.unknown(), block_text="raw")
        completed = c.with_completed_fields(eligibility=CriteriaField.known({"Age": "18-30"}))
        assert completed.eligibility.value == {"Age": "18-30"}
        assert completed.identity_key == c.identity_key
        assert completed.content_digest != c.content_digest
        assert completed.block_text == "raw"


# ---------------------------------------------------------------------------
# ScanOutcome / ScanReport
# ---------------------------------------------------------------------------


class TestScanOutcome:
    def test_record_failure(self) -> None:
        o = ScanOutcome(source_id="a")
        o.record_failure(FailureStage.FETCH, "timeout", url="https://a.gov.in")
        assert o.failed == 1
        assert o.failures[0].source_id == "a"
        assert o.failures[0].stage is FailureStage.FETCH
        assert o.failures[0].url == "https://a.gov.in"

    def test_record_decision(self) -> None:
        o = ScanOutcome(source_id="a")
        for kind in (DecisionKind.CREATE, DecisionKind.CREATE, DecisionKind.UPDATE,
                     DecisionKind.SKIP_DUPLICATE):
            o.record_decision(Decision(kind=kind, identity_key="a:1", content_digest="d"))
        assert (o.created, o.updated, o.skipped_duplicate) == (2, 1, 1)

    def test_decision_warnings_collected(self) -> None:
        o = ScanOutcome(source_id="a")
        o.record_decision(Decision(kind=DecisionKind.UPDATE, identity_key="a:1",
                                   content_digest="d", existing_id=3, warnings=["integrity: x"]))
        assert o.warnings == ["integrity: x"]

    def test_default_status_pending(self) -> None:
        assert ScanOutcome(source_id="a").status is SourceStatus.PENDING


class TestScanReport:
    def test_totals_and_duration(self) -> None:
        start = datetime(2026, 1, 1, 10, 0, 0)
        a = ScanOutcome(source_id="a", status=SourceStatus.OK, fetched=1, extracted=2, created=2)
        b = ScanOutcome(source_id="b", status=SourceStatus.SKIPPED)
        c = ScanOutcome(source_id="c", status=SourceStatus.FAILED, failed=1)
        report = ScanReport(outcomes={"a": a, "b": b, "c": c}, started_at=start,
                            finished_at=start + timedelta(seconds=2.5))
        assert report.duration_seconds == 2.5
        totals = report.totals
        assert totals.sources == 3
        assert totals.created == 2
        assert totals.failed == 1
        assert totals.skipped_sources == 1

    def test_empty_report(self) -> None:
        now = datetime.now()
        report = ScanReport(started_at=now, finished_at=now)
        assert report.totals.sources == 0
        assert report.deadline_exceeded is False

    def test_serializes_computed_fields(self) -> None:
        now = datetime.now()
        data = ScanReport(started_at=now, finished_at=now).model_dump(mode="json")
        assert "totals" in data
        assert "duration_seconds" in data
