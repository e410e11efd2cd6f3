"""Content extractor: RawDocument -> JobCandidates.

Structural pass (strategy, per fetch-strategy tag) then field pass
(strategy-agnostic). Pure given its input; the document is not retained.
"""

import logging
from collections.abc import Iterator

from crawler.core.config import Source
from crawler.core.schemas import JobCandidate, RawDocument
from crawler.extract.fields import build_candidate
from crawler.extract.strategies import get_strategy

logger = logging.getLogger(__name__)


def extract(doc: RawDocument, source: Source) -> Iterator[JobCandidate]:
    """Yield candidates for every well-formed posting block in doc.

    Zero candidates is a valid result. A block that cannot become a candidate
    is logged and skipped; it never aborts the document. Errors locating the
    blocks themselves (unreadable PDF, invalid block selector) propagate.
    """
    strategy = get_strategy(source.strategy)
    blocks = strategy.locate_blocks(doc, source)
    logger.debug("%s: %d posting block(s) on %s", source.id, len(blocks), doc.url)

    for index, block in enumerate(blocks):
        try:
            candidate = build_candidate(block, source.id)
        except Exception as e:
            logger.warning("Skipping block %d from '%s': %s", index, source.id, e)
            continue
        if candidate is not None:
            yield candidate
