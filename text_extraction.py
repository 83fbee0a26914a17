# text_extraction.py

from dataclasses import dataclass
from email import policy
from email.parser import BytesParser
from io import BytesIO

import pandas as pd
import pdfplumber

from config import SCANNED_TEXT_THRESHOLD
from exceptions import InputError
from utils import log

EXCEL_MIME_TYPES = {
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-excel",
}


@dataclass
class TextExtractionResult:
    text: str
    page_count: int = 1
    is_scanned: bool = False


def _unreadable(filename: str, kind: str, error: Exception) -> InputError:
    log.error(f"Failed to read {kind} '{filename}': {error}")
    return InputError(f"Could not read {kind} file '{filename}': {error}", code="EXTRACTION_FAILED")


def _extract_pdf(data: bytes, filename: str) -> TextExtractionResult:
    try:
        with pdfplumber.open(BytesIO(data)) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages]
    except Exception as e:
        raise _unreadable(filename, "PDF", e) from e
    text = "\n".join(pages).strip()
    # Image-only PDFs yield little or no text layer.
    is_scanned = len(text) < SCANNED_TEXT_THRESHOLD
    if is_scanned:
        log.info(f"'{filename}' has {len(text)} text characters over {len(pages)} page(s); treating as scanned.")
    return TextExtractionResult(text=text, page_count=len(pages), is_scanned=is_scanned)


def _extract_excel(data: bytes, filename: str) -> TextExtractionResult:
    try:
        sheets = pd.read_excel(BytesIO(data), sheet_name=None, header=None, dtype=str)
    except Exception as e:
        raise _unreadable(filename, "Excel", e) from e
    blocks = []
    for sheet_name, df in sheets.items():
        rows = ["  ".join(cell for cell in row if cell) for row in df.fillna("").values.tolist()]
        blocks.append(f"Sheet: {sheet_name}\n" + "\n".join(row for row in rows if row))
    return TextExtractionResult(text="\n\n".join(blocks).strip(), page_count=len(sheets))


def _extract_email(data: bytes, filename: str) -> TextExtractionResult:
    try:
        message = BytesParser(policy=policy.default).parsebytes(data)
        body = message.get_body(preferencelist=("plain", "html"))
        content = body.get_content() if body is not None else ""
    except Exception as e:
        raise _unreadable(filename, "email", e) from e
    header = f"Subject: {message.get('subject', '')}\nFrom: {message.get('from', '')}"
    return TextExtractionResult(text=f"{header}\n\n{content}".strip())


def extract_text(data: bytes, filename: str, mime_type: str) -> TextExtractionResult:
    """Turns an uploaded file into plain text; images are passed through as scanned documents."""
    if mime_type == "application/pdf":
        return _extract_pdf(data, filename)
    if mime_type in EXCEL_MIME_TYPES:
        return _extract_excel(data, filename)
    if mime_type.startswith("image/"):
        return TextExtractionResult(text="", is_scanned=True)
    if mime_type == "message/rfc822":
        return _extract_email(data, filename)
    if mime_type == "text/plain":
        return TextExtractionResult(text=data.decode("utf-8", errors="replace").strip())
    raise InputError(f"Unsupported file type '{mime_type}' for '{filename}'", code="EXTRACTION_FAILED")
