"""PDF text extraction using pymupdf."""

from crawler.core.errors import ExtractionError


def extract_text_from_pdf_bytes(content: bytes) -> str:
    """Extract plain text from an in-memory PDF.

    Returns:
        Concatenated text from all pages.

    Raises:
        ExtractionError: If the bytes are not a readable PDF.
        ImportError: If pymupdf is not installed.
    """
    try:
        import pymupdf
    except ImportError:
        msg = (
            "pymupdf is required for PDF notices. "
            "Install with: pip install job-notice-crawler"
        )
        raise ImportError(msg) from None

    try:
        doc = pymupdf.open(stream=content, filetype="pdf")
    except Exception as e:
        msg = f"Could not open PDF document: {e}"
        raise ExtractionError(msg) from e

    try:
        text_parts = [page.get_text() for page in doc]
    finally:
        doc.close()

    return "\n".join(text_parts)
