"""Exception taxonomy for the ingestion pipeline.

Fetch failures are not exceptions: the fetcher returns a typed ``FetchError``
result (see ``crawler.core.schemas``). Extraction degradation is not an error
either: fields are marked unknown.
"""


class CrawlerError(Exception):
    """Base class for every error raised by the crawler package."""


class ConfigurationError(CrawlerError):
    """Configuration is missing, unreadable, or invalid."""


class UnknownSourceError(CrawlerError):
    """A source identifier does not match any configured source."""

    def __init__(self, source_id: str) -> None:
        self.source_id = source_id
        super().__init__(f"Unknown source '{source_id}'")


class StorageError(CrawlerError):
    """A storage call failed, timed out, or lost connectivity."""


class ExtractionError(CrawlerError):
    """A fetched document could not be read at all (e.g. a corrupt PDF)."""


class ScannedPdfError(ExtractionError):
    """A PDF has (almost) no text layer, so only a model could read it."""

    def __init__(self, url: str, text_chars: int) -> None:
        self.url = url
        self.text_chars = text_chars
        super().__init__(f"scanned PDF: no text layer ({text_chars} characters of text)")


class AIExtractionError(CrawlerError):
    """The language model returned nothing usable for field completion."""


class RenderError(CrawlerError):
    """The headless browser could not render a page."""


class RenderTimeout(RenderError):
    """The headless browser gave up waiting for a page."""
