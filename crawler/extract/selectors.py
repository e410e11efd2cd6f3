"""Structural selector constants with fallbacks.

Each constant is a tuple so callers iterate until a match is found. A source's
own ``selectors`` hints are always tried first.
"""

# --- Repeated posting entries on a listing page ---
LISTING_BLOCK_SELECTORS: tuple[str, ...] = (
    "[itemtype*='JobPosting']",
    "article[class*='job']",
    "li[class*='job']",
    "div[class*='job-item']",
    ".views-row",
    ".latest_new_box ul li",
    ".news_links li",
    "table tbody tr",
    "ul li",
)

# --- Title inside a posting entry ---
LISTING_TITLE_SELECTORS: tuple[str, ...] = (
    "h1",
    "h2",
    "h3",
    "h4",
    ".title",
    "[class*='title']",
    "td",
    "a",
)

# --- Title of a single detail page ---
DETAIL_TITLE_SELECTORS: tuple[str, ...] = (
    "h1",
    ".post-title",
    "[class*='title'] h2",
    "h2",
)

# --- Pagination ---
NEXT_PAGE_SELECTORS: tuple[str, ...] = (
    "a[rel~='next']",
    "link[rel~='next']",
    "li.next a",
    "li.pager-next a",
    ".pagination a.next",
    "a.next",
)

NEXT_PAGE_LABELS: frozenset[str] = frozenset({"next", "next page", "next »", "»", "›", ">"})

# --- Elements dropped before text extraction ---
SKIP_TAGS: frozenset[str] = frozenset(
    {"script", "style", "noscript", "template", "svg", "head", "nav", "footer"},
)

HEADING_TAGS: frozenset[str] = frozenset({"h1", "h2", "h3", "h4", "h5", "h6", "caption"})

BLOCK_TAGS: frozenset[str] = frozenset(
    {
        "p", "div", "section", "article", "header", "main", "aside", "ul", "ol",
        "table", "thead", "tbody", "tfoot", "dl", "blockquote", "pre", "address",
        "figure", "center", "form", "fieldset",
    },
)

# --- Line markers produced by the structural pass ---
HEADING_MARK = "## "
ITEM_MARK = "• "
