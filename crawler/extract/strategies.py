"""Structural pass: locate posting blocks in a fetched document.

One strategy per ``FetchStrategy`` tag. Strategies only know about page
structure (where the blocks are, where the next page is); everything they
produce is a neutral ``PostingBlock`` handed to the field pass.
"""

import logging
import re
from abc import ABC, abstractmethod

from bs4 import BeautifulSoup, Comment, NavigableString, Tag
from bs4.element import PreformattedString

from crawler.core.config import FetchStrategy, Source
from crawler.core.errors import ExtractionError, ScannedPdfError
from crawler.core.schemas import RawDocument
from crawler.core.urls import is_web_url, resolve_link, sanitize_url
from crawler.extract.fields import PostingBlock, section_kind
from crawler.extract.pdf import extract_text_from_pdf_bytes
from crawler.extract.selectors import (
    BLOCK_TAGS,
    DETAIL_TITLE_SELECTORS,
    HEADING_MARK,
    HEADING_TAGS,
    ITEM_MARK,
    LISTING_BLOCK_SELECTORS,
    LISTING_TITLE_SELECTORS,
    NEXT_PAGE_LABELS,
    NEXT_PAGE_SELECTORS,
    SKIP_TAGS,
)

logger = logging.getLogger(__name__)

_URL_IN_TEXT_RE = re.compile(r"(?:https?://|www\.)[^\s<>\"')]+", re.IGNORECASE)
_WORD_CHARS_RE = re.compile(r"[\W_]+")
_MAX_EMPHASIS_HEADING_CHARS = 80
# below this much text a PDF is an image scan
_MIN_PDF_TEXT_CHARS = 50


# ---------------------------------------------------------------------------
# HTML helpers
# ---------------------------------------------------------------------------


def parse_html(doc: RawDocument) -> BeautifulSoup:
    return BeautifulSoup(doc.text, "lxml")


def _clean(text: str) -> str:
    return " ".join(text.split())


def _text_of(tag: Tag) -> str:
    return _clean(tag.get_text(" ", strip=True))


def _select(root: Tag, selector: str) -> list[Tag]:
    """CSS select that tolerates a malformed selector."""
    try:
        return root.select(selector)
    except Exception:
        logger.debug("Selector '%s' raised, trying next", selector)
        return []


def _find_first(root: Tag, selectors: tuple[str, ...]) -> Tag | None:
    for selector in selectors:
        found = _select(root, selector)
        if found:
            return found[0]
    return None


def _row_line(row: Tag) -> str:
    cells = row.find_all(["td", "th"], recursive=False)
    texts = [_text_of(cell) for cell in cells]
    texts = [text for text in texts if text]
    if not texts:
        return ""
    if all(cell.name == "th" for cell in cells):
        # single header cell is a section title, several are column labels
        return f"{HEADING_MARK}{texts[0]}" if len(texts) == 1 else ""
    if len(texts) == 1:
        return texts[0]
    return f"{texts[0]}: {' | '.join(texts[1:])}"


def _is_emphasis_heading(tag: Tag) -> bool:
    """A paragraph whose whole text is one bold run reads as a heading."""
    text = _text_of(tag)
    if not text or len(text) > _MAX_EMPHASIS_HEADING_CHARS or tag.find("a"):
        return False
    bold = tag.find_all(["strong", "b"])
    return len(bold) == 1 and _text_of(bold[0]) == text


def _is_link_bar(tag: Tag) -> bool:
    """A block holding nothing but anchors (and separators)."""
    anchors = tag.find_all("a")
    if not anchors:
        return False
    own = _WORD_CHARS_RE.sub("", tag.get_text())
    linked = _WORD_CHARS_RE.sub("", "".join(a.get_text() for a in anchors))
    return bool(own) and own == linked


def linearize(element: Tag) -> list[str]:
    """Flatten an element into text lines with heading and item markers."""
    lines: list[str] = []
    buffer: list[str] = []

    def flush() -> None:
        text = _clean(" ".join(buffer))
        buffer.clear()
        if text:
            lines.append(text)

    def emit(text: str) -> None:
        flush()
        if text:
            lines.append(text)

    def visit(node: Tag) -> None:
        name = node.name
        if name in SKIP_TAGS:
            return
        if name == "br":
            flush()
        elif name in HEADING_TAGS:
            text = _text_of(node)
            emit(f"{HEADING_MARK}{text}" if text else "")
        elif name == "tr":
            emit(_row_line(node))
        elif name == "li":
            text = _text_of(node)
            emit(f"{ITEM_MARK}{text}" if text else "")
        elif name == "dt":
            text = _text_of(node)
            emit(f"{text}:" if text else "")
        elif name == "dd":
            flush()
            text = _text_of(node)
            if text and lines and lines[-1].endswith(":"):
                lines[-1] = f"{lines[-1]} {text}"
            elif text:
                lines.append(text)
        elif name in BLOCK_TAGS:
            flush()
            if node is not element and _is_link_bar(node):
                # anchors are collected separately by anchors_of
                return
            if name == "p" and _is_emphasis_heading(node):
                lines.append(f"{HEADING_MARK}{_text_of(node)}")
            else:
                walk(node)
                flush()
        else:
            walk(node)

    def walk(node: Tag) -> None:
        for child in node.children:
            if isinstance(child, Tag):
                visit(child)
            elif isinstance(child, NavigableString) and not isinstance(
                child, (Comment, PreformattedString),
            ):
                buffer.append(str(child))

    if isinstance(element, BeautifulSoup):
        walk(element)
    else:
        visit(element)
    flush()
    return lines


def _inside_chrome(tag: Tag, root: Tag) -> bool:
    for parent in tag.parents:
        if parent is root:
            return False
        if parent.name in SKIP_TAGS:
            return True
    return False


def anchors_of(element: Tag) -> list[tuple[str, str]]:
    """(label, href) pairs for every anchor in (or being) the element."""
    anchors: list[tuple[str, str]] = []
    if element.name == "a" and element.get("href"):
        anchors.append((_text_of(element), str(element["href"])))
    for a in element.find_all("a", href=True):
        if _inside_chrome(a, element):
            continue
        anchors.append((_text_of(a) or str(a.get("title", "")), str(a["href"])))
    return anchors


def _title_within(element: Tag, hint: str | None) -> str:
    if element.name == "a":
        return _text_of(element)
    selectors = ((hint,) if hint else ()) + LISTING_TITLE_SELECTORS
    for selector in selectors:
        for candidate in _select(element, selector):
            text = _text_of(candidate)
            if text:
                return text
    return ""


def _matches_keywords(block: PostingBlock, keywords: list[str]) -> bool:
    """Keep a listing entry if it names a keyword or links a PDF notice."""
    if not keywords:
        return True
    haystack = " ".join([block.title_hint, *block.lines, *(label for label, _ in block.anchors)])
    haystack = haystack.casefold()
    if any(keyword.casefold() in haystack for keyword in keywords):
        return True
    return any(href.lower().split("?")[0].endswith(".pdf") for _, href in block.anchors)


# ---------------------------------------------------------------------------
# PDF helpers
# ---------------------------------------------------------------------------


def pdf_blocks(doc: RawDocument) -> list[PostingBlock]:
    """A PDF notice is one posting; its own URL is the official notification.

    Raises:
        ScannedPdfError: If the PDF has no usable text layer.
    """
    text = extract_text_from_pdf_bytes(doc.content)
    if len(text.strip()) < _MIN_PDF_TEXT_CHARS:
        raise ScannedPdfError(doc.url, len(text.strip()))
    lines = [_clean(line) for line in text.splitlines()]
    lines = [line for line in lines if line]

    anchors: list[tuple[str, str]] = [("Official Notification", doc.url)]
    for line in lines:
        for match in _URL_IN_TEXT_RE.findall(line):
            url = sanitize_url(match.rstrip(".,;:"))
            if url:
                anchors.append((line, url))

    title = next(
        (line for line in lines if len(line) >= 10 and section_kind(line) is None),
        lines[0],
    )
    return [PostingBlock(lines=lines, base_url=doc.url, title_hint=title, anchors=anchors)]


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class ExtractionStrategy(ABC):
    """Locates posting blocks for one fetch strategy."""

    tag: FetchStrategy
    paginates: bool = False

    def locate_blocks(self, doc: RawDocument, source: Source) -> list[PostingBlock]:
        if doc.is_pdf:
            return pdf_blocks(doc)
        return self._html_blocks(parse_html(doc), doc, source)

    @abstractmethod
    def _html_blocks(
        self, soup: BeautifulSoup, doc: RawDocument, source: Source,
    ) -> list[PostingBlock]: ...

    def next_page_url(self, doc: RawDocument, source: Source) -> str | None:
        return None

    # --- Shared block builders ---

    def _listing_blocks(
        self, elements: list[Tag], doc: RawDocument, source: Source,
    ) -> list[PostingBlock]:
        blocks: list[PostingBlock] = []
        for element in elements:
            block = PostingBlock(
                lines=linearize(element),
                base_url=doc.url,
                title_hint=_title_within(element, source.selectors.title),
                anchors=anchors_of(element),
            )
            if not block.lines and not block.title_hint:
                continue
            if _matches_keywords(block, source.keywords):
                blocks.append(block)
        logger.debug(
            "Listing on %s: %d entries, %d kept", doc.url, len(elements), len(blocks),
        )
        return blocks

    def _detail_block(self, soup: BeautifulSoup, doc: RawDocument, source: Source) -> PostingBlock:
        root = soup.body or soup
        hint = source.selectors.title
        title_tag = _find_first(root, ((hint,) if hint else ()) + DETAIL_TITLE_SELECTORS)
        title = _text_of(title_tag) if title_tag else ""
        if not title and soup.title:
            title = _text_of(soup.title)
        return PostingBlock(
            lines=linearize(root), base_url=doc.url, title_hint=title, anchors=anchors_of(root),
        )


class StaticPageStrategy(ExtractionStrategy):
    """A single page: either a listing (block selector given) or one notice."""

    tag = FetchStrategy.STATIC_PAGE

    def _html_blocks(
        self, soup: BeautifulSoup, doc: RawDocument, source: Source,
    ) -> list[PostingBlock]:
        block_selector = source.selectors.block
        if not block_selector:
            return [self._detail_block(soup, doc, source)]
        try:
            elements = soup.select(block_selector)
        except Exception as e:
            msg = f"invalid block selector '{block_selector}': {e}"
            raise ExtractionError(msg) from e
        if not elements:
            logger.warning(
                "Block selector '%s' matched nothing on %s", block_selector, doc.url,
            )
        return self._listing_blocks(elements, doc, source)


class RenderedPageStrategy(StaticPageStrategy):
    """Same structure as a static page; the fetcher renders it first."""

    tag = FetchStrategy.RENDERED_PAGE


class PaginatedListingStrategy(ExtractionStrategy):
    """A listing spread over several pages linked by a "next" control."""

    tag = FetchStrategy.PAGINATED_LISTING
    paginates = True

    def _html_blocks(
        self, soup: BeautifulSoup, doc: RawDocument, source: Source,
    ) -> list[PostingBlock]:
        hint = source.selectors.block
        selectors = ((hint,) if hint else ()) + LISTING_BLOCK_SELECTORS
        for selector in selectors:
            elements = _select(soup, selector)
            if elements:
                logger.debug("Listing selector '%s' matched %d entries", selector, len(elements))
                return self._listing_blocks(elements, doc, source)
        logger.warning("No listing entries found on %s", doc.url)
        return []

    def next_page_url(self, doc: RawDocument, source: Source) -> str | None:
        if doc.is_pdf:
            return None
        soup = parse_html(doc)
        hint = source.selectors.next_page
        candidates = [
            tag
            for selector in ((hint,) if hint else ()) + NEXT_PAGE_SELECTORS
            for tag in _select(soup, selector)
        ]
        candidates.extend(
            a for a in soup.find_all("a", href=True)
            if _text_of(a).casefold() in NEXT_PAGE_LABELS
        )
        for tag in candidates:
            url = resolve_link(str(tag.get("href", "")), doc.url)
            if is_web_url(url) and url.split("#")[0] != doc.url.split("#")[0]:
                return url
        return None


class PdfNoticeStrategy(ExtractionStrategy):
    """A source whose URL is the notice PDF itself."""

    tag = FetchStrategy.PDF_NOTICE

    def locate_blocks(self, doc: RawDocument, source: Source) -> list[PostingBlock]:
        return pdf_blocks(doc)

    def _html_blocks(
        self, soup: BeautifulSoup, doc: RawDocument, source: Source,
    ) -> list[PostingBlock]:
        return []


_STRATEGIES: dict[FetchStrategy, ExtractionStrategy] = {
    strategy.tag: strategy
    for strategy in (
        StaticPageStrategy(),
        PaginatedListingStrategy(),
        RenderedPageStrategy(),
        PdfNoticeStrategy(),
    )
}


def get_strategy(tag: FetchStrategy) -> ExtractionStrategy:
    """Return the strategy for a tag. Raises ValueError for unknown tags."""
    try:
        return _STRATEGIES[FetchStrategy(tag)]
    except (KeyError, ValueError):
        msg = f"Unknown fetch strategy: '{tag}'. Available: {[s.value for s in _STRATEGIES]}"
        raise ValueError(msg) from None
