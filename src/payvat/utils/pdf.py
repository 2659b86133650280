"""PDF processing utilities using PyMuPDF and pdfplumber."""

from __future__ import annotations

import io

import fitz  # PyMuPDF
import pdfplumber


class EncryptedPDFError(ValueError):
    pass


def render_pdf_to_images(file_bytes: bytes, dpi: int = 150, max_pages: int | None = None) -> list[bytes]:
    """Render PDF pages to PNG image bytes at the given DPI.

    Raises ``EncryptedPDFError`` for password-protected documents.
    """
    doc = fitz.open(stream=file_bytes, filetype="pdf")
    try:
        if doc.needs_pass:
            raise EncryptedPDFError("PDF is encrypted or password-protected")
        images: list[bytes] = []
        zoom = dpi / 72
        matrix = fitz.Matrix(zoom, zoom)
        for index, page in enumerate(doc):
            if max_pages is not None and index >= max_pages:
                break
            pix = page.get_pixmap(matrix=matrix)
            images.append(pix.tobytes("png"))
        return images
    finally:
        doc.close()


def extract_text_pdfplumber(file_bytes: bytes) -> list[str]:
    """Extract text with layout preservation using pdfplumber.

    Returns a list of text strings, one per page.
    """
    texts: list[str] = []
    with pdfplumber.open(io.BytesIO(file_bytes)) as pdf:
        for page in pdf.pages:
            texts.append(page.extract_text() or "")
    return texts

