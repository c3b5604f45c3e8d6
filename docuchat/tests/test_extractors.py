import asyncio
import csv
import io
import re
import unittest
import zipfile
from unittest.mock import patch

import openpyxl
import pytest

from docuchat import extractors
from docuchat.errors import ExtractionError
from docuchat.formats import DOCX_MIME, XLSX_MIME, FormatKind
from docuchat.llm_provider import LlmTextResult


class FakePdfPage:
    def __init__(self, items):
        self.items = items

    def extract_text(self, visitor_text=None):
        for item in self.items:
            if visitor_text is not None:
                visitor_text(item, None, None, None, 12)
        return "\n".join(self.items)


class FakePdfReader:
    def __init__(self, pages):
        self.pages = [FakePdfPage(items) for items in pages]


class FakeOcrProvider:
    name = "fake"

    def __init__(self, result):
        self.result = result
        self.calls = []

    def transcribe(self, image_bytes, mime_type, prompt):
        self.calls.append({"image_bytes": image_bytes, "mime_type": mime_type, "prompt": prompt})
        return self.result


def _docx_bytes(body_xml: str) -> bytes:
    document_xml = (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
        '<w:document xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main">'
        f"<w:body>{body_xml}</w:body></w:document>"
    )
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("[Content_Types].xml", "<Types/>")
        archive.writestr("word/document.xml", document_xml)
    return buffer.getvalue()


def _xlsx_bytes(*sheets) -> bytes:
    workbook = openpyxl.Workbook()
    first = workbook.active
    for index, rows in enumerate(sheets):
        sheet = first if index == 0 else workbook.create_sheet(f"Sheet{index + 1}")
        for row in rows:
            sheet.append(list(row))
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


class TestPdfExtraction(unittest.TestCase):
    def test_each_page_gets_a_marker_in_order(self):
        reader = FakePdfReader([["Intro", "text"], ["Second", "page"], ["Third"]])

        with patch("docuchat.extractors.PdfReader", return_value=reader):
            text = extractors.extract_pdf_text("paper.pdf", "application/pdf", b"%PDF-1.7")

        markers = [int(value) for value in re.findall(r"--- Page (\d+) ---", text)]
        self.assertEqual(markers, [1, 2, 3])
        self.assertTrue(text.startswith("--- Page 1 ---\nIntro text\n\n"))
        self.assertIn("--- Page 2 ---\nSecond page\n\n", text)

    def test_empty_page_keeps_its_marker(self):
        reader = FakePdfReader([[], ["Only text"]])

        with patch("docuchat.extractors.PdfReader", return_value=reader):
            text = extractors.extract_pdf_text("blank.pdf", None, b"%PDF")

        self.assertEqual(text, "--- Page 1 ---\n\n\n--- Page 2 ---\nOnly text\n\n")

    def test_corrupt_pdf_raises_extraction_error_naming_file(self):
        with patch("docuchat.extractors.PdfReader", side_effect=ValueError("EOF marker not found")):
            with self.assertRaises(ExtractionError) as ctx:
                extractors.extract_sync("broken.pdf", "application/pdf", b"not a pdf")

        self.assertEqual(ctx.exception.filename, "broken.pdf")
        self.assertIn("broken.pdf", str(ctx.exception))


class TestDocxExtraction(unittest.TestCase):
    def test_paragraphs_are_separated_by_blank_line(self):
        content = _docx_bytes(
            "<w:p><w:r><w:t>First</w:t></w:r><w:r><w:t xml:space=\"preserve\"> paragraph</w:t></w:r></w:p>"
            "<w:p><w:r><w:t>Second</w:t></w:r></w:p>"
        )

        text = extractors.extract_docx_text("letter.docx", DOCX_MIME, content)

        self.assertEqual(text, "First paragraph\n\nSecond")

    def test_tabs_and_line_breaks_are_preserved(self):
        content = _docx_bytes(
            "<w:p><w:r><w:t>Name</w:t><w:tab/><w:t>Value</w:t><w:br/><w:t>Next line</w:t></w:r></w:p>"
        )

        text = extractors.extract_docx_text("table.docx", DOCX_MIME, content)

        self.assertEqual(text, "Name\tValue\nNext line")

    def test_text_box_paragraphs_are_extracted_once(self):
        content = _docx_bytes(
            "<w:p><w:r><w:t>Outer</w:t></w:r><w:r><w:pict><w:txbxContent>"
            "<w:p><w:r><w:t>Boxed</w:t></w:r></w:p>"
            "</w:txbxContent></w:pict></w:r></w:p>"
            "<w:tbl><w:tr><w:tc><w:p><w:r><w:t>Cell</w:t></w:r></w:p></w:tc></w:tr></w:tbl>"
        )

        text = extractors.extract_docx_text("boxed.docx", DOCX_MIME, content)

        self.assertEqual(text, "OuterBoxed\n\nCell")

    def test_invalid_archive_raises_extraction_error(self):
        with self.assertRaises(ExtractionError) as ctx:
            extractors.extract_sync("fake.docx", DOCX_MIME, b"plain bytes")

        self.assertIn("fake.docx", str(ctx.exception))


def test_csv_cell_with_comma_is_quoted():
    assert extractors.format_csv_cell("Smith, John") == '"Smith, John"'


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, ""),
        (True, "true"),
        (False, "false"),
        (3.0, "3"),
        (2.5, "2.5"),
        (42, "42"),
        ('say "hi"', '"say ""hi"""'),
        ("line1\nline2", '"line1\nline2"'),
        ("plain", "plain"),
    ],
)
def test_format_csv_cell(value, expected):
    assert extractors.format_csv_cell(value) == expected


def test_rows_to_csv_round_trips_through_csv_reader():
    rows = [
        ["Name", "Note", "Count"],
        ["Smith, John", 'He said "yes"', 3.0],
        ["Multi\nline", None, True],
    ]

    text = extractors.rows_to_csv(rows)
    parsed = list(csv.reader(io.StringIO(text)))

    assert parsed == [
        ["Name", "Note", "Count"],
        ["Smith, John", 'He said "yes"', "3"],
        ["Multi\nline", "", "true"],
    ]


def test_xlsx_extraction_reads_first_sheet_only():
    content = _xlsx_bytes(
        [("Customer", "Total"), ("Smith, John", 12), ('ACME "Inc"', 7.5)],
        [("Ignored", "sheet")],
    )

    text = extractors.extract_xlsx_text("sales.xlsx", XLSX_MIME, content)

    assert text.splitlines()[0] == "Customer,Total"
    assert '"Smith, John",12' in text
    assert '"ACME ""Inc""",7.5' in text
    assert "Ignored" not in text
    assert list(csv.reader(io.StringIO(text)))[1] == ["Smith, John", "12"]


def test_image_extraction_sends_mime_type_and_prompt():
    provider = FakeOcrProvider(LlmTextResult(status="success", raw_response="Invoice 42", warnings=[]))

    text = extractors.extract_image_text("scan.png", "image/png", b"\x89PNG", provider)

    assert text == "Invoice 42"
    assert provider.calls[0]["mime_type"] == "image/png"
    assert "verbatim" in provider.calls[0]["prompt"]


def test_image_extraction_uses_extension_when_content_type_missing():
    provider = FakeOcrProvider(LlmTextResult(status="success", raw_response="Hello", warnings=[]))

    extractors.extract_image_text("photo.HEIC", None, b"data", provider)

    assert provider.calls[0]["mime_type"] == "image/heic"


def test_image_extraction_empty_answer_returns_sentinel():
    provider = FakeOcrProvider(LlmTextResult(status="success", raw_response="", warnings=[]))

    text = extractors.extract_image_text("blank.jpg", "image/jpeg", b"\xff\xd8\xff", provider)

    assert text == extractors.OCR_EMPTY_SENTINEL


def test_image_extraction_failure_raises_extraction_error():
    provider = FakeOcrProvider(
        LlmTextResult(status="error", raw_response=None, warnings=["Gemini request failed with HTTP 429."])
    )

    with pytest.raises(ExtractionError) as excinfo:
        extractors.extract_image_text("scan.png", "image/png", b"\x89PNG", provider)

    assert "scan.png" in str(excinfo.value)
    assert "HTTP 429" in str(excinfo.value)


def test_plain_text_replaces_invalid_utf8():
    text = extractors.extract_plain_text("notes.txt", "text/plain", "Grüße".encode("utf-8") + b"\xff")

    assert text.startswith("Grüße")
    assert text.endswith("�")


def test_every_format_kind_has_an_extractor():
    assert set(extractors.EXTRACTORS) == set(FormatKind)


def test_extract_text_is_awaitable_and_routes_by_format():
    text = asyncio.run(extractors.extract_text("a.txt", "text/plain", b"Paris is the capital of France."))

    assert text == "Paris is the capital of France."
