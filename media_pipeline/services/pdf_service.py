"""PDF opening and page-range extraction with PyMuPDF."""

import fitz

from media_pipeline.errors import InvalidInputError


def file_has_pdf_signature(data):
    return bytes(data[:5]) == b'%PDF-'


def open_pdf(pdf_bytes):
    """Open ``pdf_bytes`` as a document; unreadable files are an input error, not a transient one."""
    try:
        document = fitz.open(stream=pdf_bytes, filetype='pdf')
    except Exception as exc:
        raise InvalidInputError(f'The PDF could not be read ({str(exc)[:200]}).') from exc
    return document


def extract_page_range(document, start_page, end_page):
    """Return ``[start_page, end_page)`` of ``document`` as a standalone PDF."""
    if start_page < 0 or end_page > document.page_count or start_page >= end_page:
        raise ValueError(f'Invalid page range {start_page}-{end_page} for {document.page_count} pages.')
    with fitz.open() as excerpt:
        excerpt.insert_pdf(document, from_page=start_page, to_page=end_page - 1)
        return excerpt.tobytes(garbage=3, deflate=True)
