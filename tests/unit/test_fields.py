"""Tests for the field pass: sections, criteria, fees, steps and links."""

from unittest.mock import patch

import pytest

from crawler.core.schemas import CriteriaField, LinkRole, StepsField
from crawler.extract.fields import (
    PostingBlock,
    SectionKind,
    build_candidate,
    classify_link,
    extract_application_process,
    extract_eligibility,
    extract_fees,
    extract_links,
    extract_title,
    section_kind,
    split_sections,
)

BASE_URL = "https://ssc.gov.in/jobs"

# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


class TestSectionKind:
    @pytest.mark.parametrize(
        ("text", "kind"),
        [
            ("Eligibility Criteria", SectionKind.ELIGIBILITY),
            ("Age Limit", SectionKind.ELIGIBILITY),
            ("Educational Qualification", SectionKind.ELIGIBILITY),
            ("Application Fee", SectionKind.FEES),
            ("Examination Fees", SectionKind.FEES),
            ("How to Apply", SectionKind.PROCESS),
            ("Application Procedure", SectionKind.PROCESS),
            ("Important Dates", None),
        ],
    )
    def test_keywords(self, text: str, kind: SectionKind | None) -> None:
        assert section_kind(text) is kind


class TestSplitSections:
    def test_marked_headings(self) -> None:
        sections = split_sections(
            ["## Eligibility", "• Age Limit: 21-30", "## How to Apply", "Step 1: Register"],
        )
        assert [s.heading for s in sections] == ["", "Eligibility", "How to Apply"]
        assert sections[1].kind is SectionKind.ELIGIBILITY
        assert sections[1].lines == ["• Age Limit: 21-30"]
        assert sections[2].lines == ["Step 1: Register"]

    def test_heading_with_inline_value(self) -> None:
        sections = split_sections(["## Age Limit: 18-27 Years"])
        assert sections[1].heading == "Age Limit"
        assert sections[1].lines == ["18-27 Years"]

    def test_colon_line_without_keyword_stays_in_section(self) -> None:
        sections = split_sections(["## Eligibility", "Post Code 101:", "B.Tech"])
        assert len(sections) == 2
        assert sections[1].lines == ["Post Code 101:", "B.Tech"]

    def test_short_unmarked_keyword_line_is_heading(self) -> None:
        sections = split_sections(["Clerk 2026", "Application Fee", "General: ₹100"])
        assert [s.kind for s in sections] == [None, SectionKind.FEES]

    @pytest.mark.parametrize(
        "line",
        [
            "Fee once paid will not be refunded.",
            "Age limit relaxation as per government rules",
            "No fee",
        ],
    )
    def test_sentences_are_not_headings(self, line: str) -> None:
        sections = split_sections([line])
        assert len(sections) == 1
        assert sections[0].lines == [line]


# ---------------------------------------------------------------------------
# Title
# ---------------------------------------------------------------------------


class TestExtractTitle:
    def test_hint_preferred(self) -> None:
        block = PostingBlock(lines=["Other"], base_url=BASE_URL, title_hint="  Clerk   2026 ")
        assert extract_title(block) == "Clerk 2026"

    def test_first_non_section_line(self) -> None:
        block = PostingBlock(lines=["## Eligibility", "• Clerk Recruitment 2026"], base_url=BASE_URL)
        assert extract_title(block) == "Clerk Recruitment 2026"

    def test_capped(self) -> None:
        block = PostingBlock(lines=[], base_url=BASE_URL, title_hint="x" * 500)
        assert len(extract_title(block)) == 300

    def test_none(self) -> None:
        assert extract_title(PostingBlock(lines=[], base_url=BASE_URL)) == ""


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------


class TestExtractEligibility:
    def test_criteria_pairs(self) -> None:
        field = extract_eligibility(split_sections(
            ["## Eligibility Criteria", "• Age Limit: 18-27 years", "• Nationality: Indian"],
        ))
        assert field.value == {"Age Limit": "18-27 years", "Nationality": "Indian"}

    def test_key_line_takes_next_line(self) -> None:
        field = extract_eligibility(split_sections(["## Eligibility", "Post Code 101:", "B.Tech"]))
        assert field.value == {"Post Code 101": "B.Tech"}

    def test_generic_section_free_text(self) -> None:
        field = extract_eligibility(
            split_sections(["## Eligibility", "Graduate from a recognized university."]),
        )
        assert field.value == {"General": "Graduate from a recognized university."}

    def test_named_section_free_text(self) -> None:
        field = extract_eligibility(split_sections(["## Age Limit", "21 to 30 years as on 01.01.2026"]))
        assert field.value == {"Age Limit": "21 to 30 years as on 01.01.2026"}

    def test_inline_pairs_outside_sections(self) -> None:
        field = extract_eligibility(split_sections(["Age Limit: 18-27 years", "Pay Level: 4"]))
        assert field.value == {"Age Limit": "18-27 years"}

    def test_stated_none(self) -> None:
        field = extract_eligibility(split_sections(["## Eligibility", "Not applicable"]))
        assert field.is_unknown is False
        assert field.value == {}

    def test_empty_section_unknown(self) -> None:
        field = extract_eligibility(split_sections(["## Eligibility"]))
        assert field.is_unknown
        assert field.reason == "eligibility section has no readable criteria"

    def test_missing_unknown(self) -> None:
        field = extract_eligibility(split_sections(["Clerk 2026"]))
        assert field.is_unknown
        assert field.reason == "no eligibility information found"


# ---------------------------------------------------------------------------
# Fees
# ---------------------------------------------------------------------------


class TestExtractFees:
    def test_table_rows(self) -> None:
        field = extract_fees(split_sections(["## Application Fee", "General / OBC: ₹100", "SC / ST: Nil"]))
        assert field.value == {"General / OBC": "₹100", "SC / ST": "Nil"}

    def test_inline_fee_without_category(self) -> None:
        field = extract_fees(split_sections(["Application Fee: ₹500"]))
        assert field.value == {"All": "₹500"}

    def test_category_taken_from_label(self) -> None:
        field = extract_fees(split_sections(["Fee for General candidates: Rs 750"]))
        assert field.value == {"General candidates": "Rs 750"}

    def test_amount_line_in_section(self) -> None:
        field = extract_fees(split_sections(["## Examination Fee", "₹ 250 (non-refundable)"]))
        assert field.value == {"All": "₹ 250 (non-refundable)"}

    def test_stated_none(self) -> None:
        field = extract_fees(split_sections(["## Application Fee", "Nil"]))
        assert field.is_unknown is False
        assert field.value == {}

    def test_section_without_amounts_unknown(self) -> None:
        field = extract_fees(split_sections(["## Application Fee", "Pay through the online portal only."]))
        assert field.is_unknown
        assert field.reason == "fee section has no recognizable amounts"

    def test_non_amount_pair_ignored(self) -> None:
        field = extract_fees(split_sections(["Fee Payment Mode: Online"]))
        assert field.is_unknown
        assert field.reason == "no fee information found"


# ---------------------------------------------------------------------------
# Application process
# ---------------------------------------------------------------------------


class TestExtractApplicationProcess:
    def test_numbering_stripped(self) -> None:
        field = extract_application_process(split_sections(
            ["## How to Apply", "1. Visit the portal.", "2) Fill the form.", "• Submit."],
        ))
        assert field.value == ["Visit the portal.", "Fill the form.", "Submit."]

    def test_step_prefix_stripped(self) -> None:
        field = extract_application_process(split_sections(["## How to Apply", "Step 1: Register"]))
        assert field.value == ["Register"]

    def test_stated_none(self) -> None:
        field = extract_application_process(split_sections(["## How to Apply", "Not applicable"]))
        assert field.value == []

    def test_empty_section_unknown(self) -> None:
        field = extract_application_process(split_sections(["## How to Apply"]))
        assert field.reason == "application process section is empty"

    def test_missing_unknown(self) -> None:
        field = extract_application_process(split_sections(["Clerk 2026"]))
        assert field.reason == "no application process found"


# ---------------------------------------------------------------------------
# Links
# ---------------------------------------------------------------------------


class TestClassifyLink:
    @pytest.mark.parametrize(
        ("label", "url", "role"),
        [
            ("Download Admit Card", "https://ssc.gov.in/x", LinkRole.ADMIT_CARD),
            ("Answer Key", "https://ssc.gov.in/x", LinkRole.ANSWER_KEY),
            ("Result", "https://ssc.gov.in/x", LinkRole.RESULT),
            ("Syllabus", "https://ssc.gov.in/x", LinkRole.SYLLABUS),
            ("Apply Online", "https://ssc.gov.in/x", LinkRole.APPLY_ONLINE),
            ("Click Here", "https://ssc.gov.in/notice.pdf", LinkRole.OFFICIAL_NOTIFICATION),
            ("Official Website", "https://ssc.gov.in", LinkRole.OFFICIAL_WEBSITE),
            ("Click Here", "https://ssc.gov.in/page", LinkRole.OTHER),
        ],
    )
    def test_roles(self, label: str, url: str, role: LinkRole) -> None:
        assert classify_link(label, url) is role


class TestExtractLinks:
    def test_resolved_deduplicated_and_filtered(self) -> None:
        block = PostingBlock(
            lines=[],
            base_url=BASE_URL,
            anchors=[
                ("Apply", "/apply"),
                ("Apply again", "/apply"),
                ("Print", "javascript:print()"),
                ("Top", "#top"),
                ("Mail", "mailto:help@ssc.gov.in"),
                ("", "https://ssc.gov.in/notice.pdf"),
            ],
        )
        links = extract_links(block)
        assert [(link.role, link.url) for link in links] == [
            (LinkRole.APPLY_ONLINE, "https://ssc.gov.in/apply"),
            (LinkRole.OFFICIAL_NOTIFICATION, "https://ssc.gov.in/notice.pdf"),
        ]


# ---------------------------------------------------------------------------
# build_candidate
# ---------------------------------------------------------------------------


class TestBuildCandidate:
    def test_full_block(self) -> None:
        block = PostingBlock(
            lines=["## Eligibility", "Age Limit: 18-30 years", "## Application Fee", "Nil"],
            base_url=BASE_URL,
            title_hint="Clerk Recruitment 2026",
            anchors=[("Notification", "/clerk.pdf")],
        )
        candidate = build_candidate(block, "ssc")
        assert candidate is not None
        assert candidate.source_id == "ssc"
        assert candidate.eligibility.value == {"Age Limit": "18-30 years"}
        assert candidate.fees.value == {}
        assert candidate.unknown_fields == ["application_process"]
        assert candidate.links[0].url == "https://ssc.gov.in/clerk.pdf"
        assert candidate.block_text == block.text

    def test_untitled_block_is_not_a_posting(self) -> None:
        assert build_candidate(PostingBlock(lines=["## Eligibility"], base_url=BASE_URL), "ssc") is None

    def test_field_failure_degrades_to_unknown(self) -> None:
        block = PostingBlock(lines=["Application Fee: ₹500"], base_url=BASE_URL, title_hint="Clerk")
        with patch("crawler.extract.fields.extract_fees", side_effect=RuntimeError("boom")):
            candidate = build_candidate(block, "ssc")
        assert candidate is not None
        assert candidate.fees.is_unknown
        assert candidate.fees.reason == "fees extraction failed: boom"

    def test_degraded_field_keeps_its_type(self) -> None:
        block = PostingBlock(lines=["How to Apply", "1. Register"], base_url=BASE_URL, title_hint="Clerk")
        with patch(
            "crawler.extract.fields.extract_application_process",
            side_effect=ValueError("bad list"),
        ):
            candidate = build_candidate(block, "ssc")
        assert candidate is not None
        assert isinstance(candidate.application_process, StepsField)
        assert isinstance(candidate.eligibility, CriteriaField)
        assert candidate.application_process.reason == "application_process extraction failed: bad list"
