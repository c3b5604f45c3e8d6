"""Byte-to-text extractors, one per ``FormatKind``."""

from __future__ import annotations

import asyncio
import datetime as dt
import io
import logging
import zipfile
from typing import Any, Callable
from xml.etree import ElementTree as ET

import openpyxl
from pypdf import PdfReader

from docuchat.errors import ExtractionError
from docuchat.formats import FormatKind, detect_format, normalize_extension
from docuchat.model_provider import ModelProvider

logger = logging.getLogger(__name__)

OCR_EMPTY_SENTINEL = "[OCR: no text found or the image is empty]"
OCR_PROMPT = (
    "Transcribe ALL text visible in this image verbatim. "
    "If the text is handwritten, do your best to decipher it. "
    "Render any tables as markdown tables. "
    "Return only the transcribed text without commentary."
)
WORD_NAMESPACE = "{http://schemas.openxmlformats.org/wordprocessingml/2006/main}"
IMAGE_MIME_BY_EXTENSION = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".heic": "image/heic",
}
CSV_SPECIAL_CHARACTERS = (",", '"', "\n", "\r")

Extractor = Callable[[str, str | None, bytes, ModelProvider | None], str]


def _pdf_page_text(page: Any) -> str:
    items: list[str] = []

    def _collect(text: str, *_args: Any) -> None:
        if text and text.strip():
            items.append(text.strip())

    page.extract_text(visitor_text=_collect)
    return " ".join(items)


def extract_pdf_text(filename: str, content_type: str | None, content: bytes, provider: ModelProvider | None = None) -> str:
    reader = PdfReader(io.BytesIO(content))
    rendered: list[str] = []
    for page_number, page in enumerate(reader.pages, start=1):
        rendered.append(f"--- Page {page_number} ---\n{_pdf_page_text(page)}\n\n")
    return "".join(rendered)


def _docx_paragraph_text(paragraph: ET.Element) -> str:
    parts: list[str] = []
    for node in paragraph.iter():
        if node.tag == f"{WORD_NAMESPACE}t":
            parts.append(node.text or "")
        elif node.tag == f"{WORD_NAMESPACE}tab":
            parts.append("\t")
        elif node.tag in {f"{WORD_NAMESPACE}br", f"{WORD_NAMESPACE}cr"}:
            parts.append("\n")
    return "".join(parts)


def _outer_paragraphs(element: ET.Element):
    # Text-box paragraphs sit inside an outer w:p whose text already includes them.
    for child in element:
        if child.tag == f"{WORD_NAMESPACE}p":
            yield child
        else:
            yield from _outer_paragraphs(child)


def extract_docx_text(filename: str, content_type: str | None, content: bytes, provider: ModelProvider | None = None) -> str:
    with zipfile.ZipFile(io.BytesIO(content)) as archive:
        with archive.open("word/document.xml") as document_xml:
            xml_content = document_xml.read()

    root = ET.fromstring(xml_content)
    paragraphs: list[str] = []
    for paragraph in _outer_paragraphs(root):
        text = _docx_paragraph_text(paragraph)
        if text.strip():
            paragraphs.append(text)

    return "\n\n".join(paragraphs)


def format_csv_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        text = str(int(value))
    elif isinstance(value, (dt.datetime, dt.date, dt.time)):
        text = value.isoformat()
    else:
        text = str(value)

    if any(character in text for character in CSV_SPECIAL_CHARACTERS):
        return '"' + text.replace('"', '""') + '"'
    return text


def rows_to_csv(rows: Any) -> str:
    return "\n".join(",".join(format_csv_cell(cell) for cell in row) for row in rows)


def extract_xlsx_text(filename: str, content_type: str | None, content: bytes, provider: ModelProvider | None = None) -> str:
    workbook = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    try:
        if not workbook.worksheets:
            return ""
        sheet = workbook.worksheets[0]
        return rows_to_csv(sheet.iter_rows(values_only=True))
    finally:
        workbook.close()


def _image_mime_type(filename: str, content_type: str | None) -> str | None:
    mime = (content_type or "").strip().lower()
    if mime.startswith("image/"):
        return mime
    return IMAGE_MIME_BY_EXTENSION.get(normalize_extension(filename))


def extract_image_text(filename: str, content_type: str | None, content: bytes, provider: ModelProvider | None = None) -> str:
    if provider is None:
        raise ExtractionError(filename, "no model provider is configured for image transcription")

    result = provider.transcribe(content, _image_mime_type(filename, content_type), OCR_PROMPT)
    if result.status != "success":
        raise ExtractionError(filename, result.error_message())

    text = (result.raw_response or "").strip()
    return text or OCR_EMPTY_SENTINEL


def extract_plain_text(filename: str, content_type: str | None, content: bytes, provider: ModelProvider | None = None) -> str:
    return content.decode("utf-8", errors="replace")


EXTRACTORS: dict[FormatKind, Extractor] = {
    FormatKind.PDF: extract_pdf_text,
    FormatKind.OFFICE: extract_docx_text,
    FormatKind.SPREADSHEET: extract_xlsx_text,
    FormatKind.IMAGE: extract_image_text,
    FormatKind.PLAIN_TEXT: extract_plain_text,
}

_missing_extractors = set(FormatKind) - set(EXTRACTORS)
if _missing_extractors:
    raise RuntimeError(f"No extractor registered for: {sorted(kind.value for kind in _missing_extractors)}")


def extract_sync(
    filename: str,
    content_type: str | None,
    content: bytes,
    provider: ModelProvider | None = None,
) -> str:
    kind = detect_format(filename, content_type)
    try:
        return EXTRACTORS[kind](filename, content_type, content, provider)
    except ExtractionError:
        raise
    except Exception as exc:
        raise ExtractionError(filename, exc) from exc


async def extract_text(
    filename: str,
    content_type: str | None,
    content: bytes,
    provider: ModelProvider | None = None,
) -> str:
    """Detect the format of one upload and return its plain text.

    Parsing and OCR calls block, so they run in a worker thread.
    Every failure surfaces as ``ExtractionError`` naming the file.
    """

    logger.debug("Extracting %s (%s, %d bytes)", filename, content_type or "no content type", len(content))
    return await asyncio.to_thread(extract_sync, filename, content_type, content, provider)
