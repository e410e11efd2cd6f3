"""URL sanitizing and link resolution.

Pure functions, no I/O. Every URL the pipeline fetches or stores goes through
``sanitize_url``:

  - ``javascript:`` and ``data:`` inputs are rejected (empty result).
  - Inputs with an explicit scheme, site-relative paths and anchors are kept.
  - Bare domains ("www.example.com") get an ``https://`` prefix.
  - Plain text without a dot ("Click Here") is returned unchanged; callers
    treat it as a label, not a link (see ``is_navigable``).
"""

import re
from urllib.parse import urljoin

_SCHEME_RE = re.compile(r"^[a-z]+://", re.IGNORECASE)
_REJECTED_PREFIXES = ("javascript:", "data:")
# scheme followed by ":" but not "://" (mailto:, tel:, sms:, ...)
_NON_WEB_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*:(?!//)(?!\d)", re.IGNORECASE)
_WEB_URL_RE = re.compile(r"^https?://[^/\s]+", re.IGNORECASE)


def sanitize_url(value: str | None) -> str:
    """Normalize a URL-ish string, returning "" when it is unsafe.

    Idempotent: ``sanitize_url(sanitize_url(x)) == sanitize_url(x)``.
    """
    if not value or not isinstance(value, str):
        return ""
    sanitized = value.strip()

    if sanitized.lower().startswith(_REJECTED_PREFIXES):
        return ""

    if _SCHEME_RE.match(sanitized) or sanitized.startswith(("/", "#")):
        return sanitized

    if "." in sanitized:
        return f"https://{sanitized}"

    return sanitized


def is_navigable(url: str) -> bool:
    """Return True if a sanitized value can be followed as a link."""
    if not url:
        return False
    if url.startswith("#"):
        return False
    return bool(_SCHEME_RE.match(url)) or url.startswith("/")


def is_web_url(url: str) -> bool:
    """Return True for an absolute http(s) URL with a host."""
    return bool(_WEB_URL_RE.match(url or ""))


def resolve_link(href: str | None, base_url: str) -> str:
    """Resolve an ``href`` found in a document against the document URL.

    Returns the sanitized absolute URL, an anchor unchanged, or "" for
    rejected and non-web schemes (mailto:, tel:, javascript:, data:).
    """
    candidate = (href or "").strip()
    if not candidate:
        return ""
    if candidate.lower().startswith(_REJECTED_PREFIXES):
        return ""
    if _SCHEME_RE.match(candidate) or candidate.startswith("#"):
        return sanitize_url(candidate)
    if _NON_WEB_SCHEME_RE.match(candidate):
        return ""
    return sanitize_url(urljoin(base_url, candidate))
