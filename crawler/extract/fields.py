"""Field pass: turn a neutral posting block into a JobCandidate.

A block is a list of text lines produced by the structural pass. Section
headings are marked with ``HEADING_MARK`` (or detected from short keyword
lines) and list items with ``ITEM_MARK``. Every field is best-effort: a
field the block does not state, or that fails to parse, is returned as
unknown instead of empty, and never aborts the block.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TypeVar

from pydantic import ValidationError

from crawler.core.schemas import (
    CriteriaField,
    ExtractedField,
    JobCandidate,
    LinkRole,
    SourceLink,
    StepsField,
)
from crawler.core.urls import is_navigable, resolve_link
from crawler.extract.selectors import HEADING_MARK, ITEM_MARK

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=ExtractedField)

_MAX_TITLE_CHARS = 300
_MAX_HEADING_WORDS = 8
_MAX_KEYWORD_HEADING_WORDS = 4

_PROCESS_RE = re.compile(
    r"how to apply|application (?:process|procedure)|steps? to apply"
    r"|procedure (?:to|for) apply|mode of (?:application|applying)",
    re.IGNORECASE,
)
_FEES_RE = re.compile(r"\bfees?\b|application charges?|exam(?:ination)? charges?", re.IGNORECASE)
_ELIGIBILITY_RE = re.compile(
    r"eligib|qualification|age limit|age criteria|nationality|experience"
    r"|physical standard|domicile",
    re.IGNORECASE,
)
_GENERIC_ELIGIBILITY_RE = re.compile(r"eligib", re.IGNORECASE)

_PAIR_RE = re.compile(r"^(?P<key>[^:：]{2,60}?)\s*[:：]\s*(?P<value>\S.*)$")
_NONE_RE = re.compile(
    r"^(?:nil|none|no\b.*|not applicable|n\.?\s?a\.?|free(?: of cost)?|exempted)[.!]?$",
    re.IGNORECASE,
)
_AMOUNT_RE = re.compile(
    r"(?:₹|rs\.?|inr|\$|usd|€|£)\s*\d"
    r"|\d[\d,]*(?:\.\d+)?\s*(?:/-|rs\b|rupees|inr|usd)"
    r"|^\s*\d[\d,]*(?:\.\d+)?\s*$"
    r"|\b(?:nil|free|exempted|no fee)\b",
    re.IGNORECASE,
)
_AMOUNT_FIRST_RE = re.compile(r"^(?:₹|rs\.?|inr|\$|usd|€|£)\s*\d", re.IGNORECASE)
_FEE_LABEL_RE = re.compile(
    r"\b(?:application|exam(?:ination)?)?\s*fees?\b|\bfor\b|[()]", re.IGNORECASE,
)
_STEP_PREFIX_RE = re.compile(
    r"^(?:[•\-*–·]\s*|\(?\d{1,2}[.)]\s*|\(?[a-z][.)]\s+|step\s*\d+\s*[:.)-]?\s*)",
    re.IGNORECASE,
)

# Checked in order; the first match wins.
_LINK_ROLE_PATTERNS: tuple[tuple[re.Pattern[str], LinkRole], ...] = (
    (re.compile(r"admit\s*card|hall\s*ticket|call\s*letter", re.IGNORECASE), LinkRole.ADMIT_CARD),
    (re.compile(r"answer\s*key", re.IGNORECASE), LinkRole.ANSWER_KEY),
    (re.compile(r"\bresults?\b|merit\s*list", re.IGNORECASE), LinkRole.RESULT),
    (re.compile(r"syllabus|exam\s*pattern", re.IGNORECASE), LinkRole.SYLLABUS),
    (re.compile(r"apply|registration|register", re.IGNORECASE), LinkRole.APPLY_ONLINE),
    (
        re.compile(r"notification|advertisement|notice|\badvt\b|\.pdf\b", re.IGNORECASE),
        LinkRole.OFFICIAL_NOTIFICATION,
    ),
    (re.compile(r"official\s*(?:web)?site|home\s*page", re.IGNORECASE), LinkRole.OFFICIAL_WEBSITE),
)


@dataclass
class PostingBlock:
    """One posting's worth of text, as located by an extraction strategy."""

    lines: list[str]
    base_url: str
    title_hint: str = ""
    anchors: list[tuple[str, str]] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(self.lines)


class SectionKind(Enum):
    ELIGIBILITY = "eligibility"
    FEES = "fees"
    PROCESS = "process"


@dataclass
class Section:
    heading: str
    kind: SectionKind | None
    lines: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


def _clean(text: str) -> str:
    return " ".join(text.split())


def _strip_marker(line: str) -> str:
    for marker in (HEADING_MARK, ITEM_MARK):
        if line.startswith(marker):
            return line[len(marker):].strip()
    return line.strip()


def section_kind(text: str) -> SectionKind | None:
    """Classify a heading (or criterion name) by keyword."""
    if _PROCESS_RE.search(text):
        return SectionKind.PROCESS
    if _FEES_RE.search(text):
        return SectionKind.FEES
    if _ELIGIBILITY_RE.search(text):
        return SectionKind.ELIGIBILITY
    return None


def _is_heading(line: str) -> bool:
    if line.startswith(HEADING_MARK):
        return True
    if line.startswith(ITEM_MARK):
        return False
    text = line.rstrip(":：").strip()
    if not text or len(text.split()) > _MAX_HEADING_WORDS:
        return False
    if _PAIR_RE.match(line):
        return False
    if line.endswith((":", "：")):
        return True
    if _NONE_RE.match(text):
        return False
    if text.endswith(".") or len(text.split()) > _MAX_KEYWORD_HEADING_WORDS:
        return False
    return section_kind(text) is not None


def split_sections(lines: list[str]) -> list[Section]:
    """Group lines under their headings.

    The first section (heading "") holds the lines before any heading. A
    heading that carries its own value ("Age Limit: 18-27 Years") opens a
    section whose first line is that value. Inside a keyword section, a
    colon-terminated line without a keyword is treated as a criterion name,
    not a new section.
    """
    sections = [Section(heading="", kind=None)]
    for raw in lines:
        line = _clean(raw)
        if not line:
            continue
        current = sections[-1]
        if not _is_heading(line):
            current.lines.append(line)
            continue

        text = _strip_marker(line).rstrip(":：").strip()
        pair = _PAIR_RE.match(text)
        heading, first_line = (pair["key"].strip(), pair["value"].strip()) if pair else (text, "")
        kind = section_kind(heading)

        if (
            kind is None
            and current.kind is not None
            and not line.startswith(HEADING_MARK)
        ):
            current.lines.append(line)
            continue

        section = Section(heading=heading, kind=kind)
        if first_line:
            section.lines.append(first_line)
        sections.append(section)
    return sections


def _pairs(lines: list[str]) -> tuple[list[tuple[str, str]], list[str]]:
    """Split lines into "key: value" pairs and the remaining free text.

    A bare "Key:" line takes the following free-text line as its value.
    """
    pairs: list[tuple[str, str]] = []
    rest: list[str] = []
    pending_key: str | None = None
    for raw in lines:
        line = _strip_marker(raw)
        if not line:
            continue
        if line.endswith((":", "：")) and len(line) > 2:
            if pending_key:
                rest.append(pending_key)
            pending_key = line.rstrip(":：").strip()
            continue
        match = _PAIR_RE.match(line)
        if match:
            if pending_key:
                rest.append(pending_key)
                pending_key = None
            pairs.append((match["key"].strip(), match["value"].strip()))
        elif pending_key:
            pairs.append((pending_key, line))
            pending_key = None
        else:
            rest.append(line)
    if pending_key:
        rest.append(pending_key)
    return pairs, rest


def _states_none(lines: list[str]) -> bool:
    """True if the section body is a single explicit "none" statement."""
    body = [_strip_marker(line) for line in lines if _strip_marker(line)]
    return len(body) == 1 and bool(_NONE_RE.match(body[0]))


# ---------------------------------------------------------------------------
# Fields
# ---------------------------------------------------------------------------


def extract_title(block: PostingBlock) -> str:
    """Return the posting title, or "" when the block has none."""
    if block.title_hint.strip():
        return _clean(block.title_hint)[:_MAX_TITLE_CHARS]
    for line in block.lines:
        text = _strip_marker(line)
        if not text or section_kind(text) is not None:
            continue
        return _clean(text)[:_MAX_TITLE_CHARS]
    return ""


def extract_eligibility(sections: list[Section]) -> CriteriaField:
    criteria: dict[str, str] = {}
    found_section = False
    stated_none = False

    for section in sections:
        if section.kind is SectionKind.ELIGIBILITY:
            found_section = True
            if _states_none(section.lines):
                stated_none = True
                continue
            pairs, rest = _pairs(section.lines)
            for key, value in pairs:
                criteria.setdefault(key, value)
            if rest:
                name = "General" if _GENERIC_ELIGIBILITY_RE.search(section.heading) else section.heading
                text = " ".join(rest)
                criteria[name] = f"{criteria[name]} {text}" if name in criteria else text
        elif section.kind is None:
            pairs, _ = _pairs(section.lines)
            for key, value in pairs:
                if section_kind(key) is SectionKind.ELIGIBILITY:
                    criteria.setdefault(key, value)

    if criteria:
        return CriteriaField.known(criteria)
    if stated_none:
        return CriteriaField.known({})
    if found_section:
        return CriteriaField.unknown("eligibility section has no readable criteria")
    return CriteriaField.unknown("no eligibility information found")


def _fee_category(label: str) -> str:
    category = _FEE_LABEL_RE.sub(" ", label)
    category = _clean(category).strip(" -:/,")
    return category or "All"


def _looks_like_amount(value: str) -> bool:
    return bool(_AMOUNT_RE.search(value))


def extract_fees(sections: list[Section]) -> CriteriaField:
    fees: dict[str, str] = {}
    found_section = False
    stated_none = False

    for section in sections:
        if section.kind is SectionKind.FEES:
            found_section = True
            if _states_none(section.lines):
                stated_none = True
                continue
            pairs, rest = _pairs(section.lines)
            for key, value in pairs:
                if _looks_like_amount(value):
                    fees[_fee_category(key)] = value
            for line in rest:
                if _AMOUNT_FIRST_RE.match(line):
                    fees.setdefault("All", line)
        elif section.kind is None:
            pairs, _ = _pairs(section.lines)
            for key, value in pairs:
                if section_kind(key) is SectionKind.FEES and _looks_like_amount(value):
                    fees[_fee_category(key)] = value

    if fees:
        return CriteriaField.known(fees)
    if stated_none:
        return CriteriaField.known({})
    if found_section:
        return CriteriaField.unknown("fee section has no recognizable amounts")
    return CriteriaField.unknown("no fee information found")


def extract_application_process(sections: list[Section]) -> StepsField:
    steps: list[str] = []
    found_section = False
    stated_none = False

    for section in sections:
        if section.kind is not SectionKind.PROCESS:
            continue
        found_section = True
        if _states_none(section.lines):
            stated_none = True
            continue
        for line in section.lines:
            step = _STEP_PREFIX_RE.sub("", _strip_marker(line)).strip()
            if step:
                steps.append(step)

    if steps:
        return StepsField.known(steps)
    if stated_none:
        return StepsField.known([])
    if found_section:
        return StepsField.unknown("application process section is empty")
    return StepsField.unknown("no application process found")


def classify_link(label: str, url: str) -> LinkRole:
    """Tag a link by its label first, then its URL."""
    for text in (label, url):
        for pattern, role in _LINK_ROLE_PATTERNS:
            if pattern.search(text):
                return role
    return LinkRole.OTHER


def extract_links(block: PostingBlock) -> list[SourceLink]:
    """Resolve, sanitize and tag the block's anchors, dropping unusable ones."""
    links: list[SourceLink] = []
    seen: set[str] = set()
    for label, href in block.anchors:
        url = resolve_link(href, block.base_url)
        if not is_navigable(url) or url in seen:
            continue
        clean_label = _clean(label)[:200]
        try:
            links.append(SourceLink(role=classify_link(clean_label, url), label=clean_label, url=url))
        except ValidationError:
            logger.debug("Dropping unusable link %r", href)
            continue
        seen.add(url)
    return links


def _extract_or_unknown(
    extract_fn: Callable[[list[Section]], F],
    sections: list[Section],
    field_cls: type[F],
    name: str,
) -> F:
    try:
        return extract_fn(sections)
    except Exception as e:
        logger.debug("Field '%s' extraction failed", name, exc_info=True)
        return field_cls.unknown(f"{name} extraction failed: {e}")


def build_candidate(block: PostingBlock, source_id: str) -> JobCandidate | None:
    """Run the field pass over one block.

    Returns None when the block has no title (not a posting). Every other
    field degrades to unknown on failure.
    """
    title = extract_title(block)
    if not title:
        logger.debug("Skipping block without a title from '%s'", source_id)
        return None

    sections = split_sections(block.lines)
    eligibility = _extract_or_unknown(extract_eligibility, sections, CriteriaField, "eligibility")
    fees = _extract_or_unknown(extract_fees, sections, CriteriaField, "fees")
    process = _extract_or_unknown(
        extract_application_process, sections, StepsField, "application_process",
    )
    try:
        links = extract_links(block)
    except Exception:
        logger.debug("Link extraction failed for '%s'", title, exc_info=True)
        links = []

    return JobCandidate(
        source_id=source_id,
        title=title,
        eligibility=eligibility,
        fees=fees,
        application_process=process,
        links=links,
        block_text=block.text,
    )
