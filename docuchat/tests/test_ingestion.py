import asyncio
import unittest
from unittest.mock import patch

from docuchat import ingestion
from docuchat.errors import ExtractionError
from docuchat.ingestion import IngestionFailure, UploadedFile, ingest_files


class TestIngestFiles(unittest.TestCase):
    def test_successful_batch_keeps_source_order(self):
        uploads = [
            UploadedFile("b.txt", "text/plain", b"second"),
            UploadedFile("a.txt", "text/plain", b"first"),
            UploadedFile("c.md", None, b"third"),
        ]

        report = asyncio.run(ingest_files(uploads))

        self.assertEqual([document.name for document in report.documents], ["b.txt", "a.txt", "c.md"])
        self.assertEqual([document.content for document in report.documents], ["second", "first", "third"])
        self.assertEqual(report.failures, [])
        self.assertEqual(report.status, "success")

    def test_order_holds_when_earlier_files_finish_last(self):
        delays = {"slow.txt": 0.05, "medium.txt": 0.02, "fast.txt": 0.0}
        finished = []

        async def delayed_extract(filename, content_type, content, provider=None):
            await asyncio.sleep(delays[filename])
            finished.append(filename)
            return content.decode("utf-8")

        uploads = [UploadedFile(name, "text/plain", name.encode("utf-8")) for name in delays]

        with patch("docuchat.ingestion.extract_text", side_effect=delayed_extract):
            report = asyncio.run(ingest_files(uploads))

        self.assertEqual(finished, ["fast.txt", "medium.txt", "slow.txt"])
        self.assertEqual([document.name for document in report.documents], ["slow.txt", "medium.txt", "fast.txt"])
        self.assertEqual([document.content for document in report.documents], ["slow.txt", "medium.txt", "fast.txt"])

    def test_documents_get_unique_ids_and_metadata(self):
        uploads = [UploadedFile("a.txt", "text/plain", b"one"), UploadedFile("a.txt", "text/plain", b"one")]

        report = asyncio.run(ingest_files(uploads))

        ids = {document.id for document in report.documents}
        self.assertEqual(len(ids), 2)
        self.assertEqual(report.documents[0].source_type, "text/plain")
        self.assertEqual(report.documents[0].size_bytes, 3)

    def test_partial_failure_does_not_abort_batch(self):
        uploads = [
            UploadedFile("ok-1.txt", "text/plain", b"alpha"),
            UploadedFile("broken.docx", None, b"not a zip"),
            UploadedFile("ok-2.txt", "text/plain", b"beta"),
        ]

        report = asyncio.run(ingest_files(uploads))

        self.assertEqual([document.name for document in report.documents], ["ok-1.txt", "ok-2.txt"])
        self.assertEqual(len(report.failures), 1)
        self.assertEqual(report.failures[0].filename, "broken.docx")
        self.assertIn("broken.docx", report.failures[0].message)
        self.assertEqual(report.status, "partial")

    def test_oversized_file_is_reported_as_failure(self):
        uploads = [UploadedFile("big.txt", "text/plain", b"x" * 11), UploadedFile("small.txt", "text/plain", b"x")]

        report = asyncio.run(ingest_files(uploads, max_bytes=10))

        self.assertEqual([document.name for document in report.documents], ["small.txt"])
        self.assertEqual(report.failures[0].filename, "big.txt")
        self.assertIn("upload limit", report.failures[0].message)

    def test_all_failures_report_error_status(self):
        async def always_fail(filename, content_type, content, provider=None):
            raise ExtractionError(filename, "boom")

        with patch("docuchat.ingestion.extract_text", side_effect=always_fail):
            report = asyncio.run(ingest_files([UploadedFile("a.pdf", "application/pdf", b"%PDF")]))

        self.assertEqual(report.documents, [])
        self.assertEqual(report.failures, [IngestionFailure("a.pdf", "Could not read file a.pdf: boom")])
        self.assertEqual(report.status, "error")

    def test_empty_batch_returns_empty_report(self):
        report = asyncio.run(ingest_files([]))

        self.assertEqual(report.documents, [])
        self.assertEqual(report.failures, [])


def test_report_to_dict_uses_camel_case_documents():
    report = asyncio.run(ingestion.ingest_files([UploadedFile("a.txt", "text/plain", b"hello")]))

    payload = report.to_dict()

    assert payload["status"] == "success"
    assert payload["documents"][0]["name"] == "a.txt"
    assert payload["documents"][0]["sizeBytes"] == 5
    assert payload["documents"][0]["sourceType"] == "text/plain"
    assert payload["failures"] == []
