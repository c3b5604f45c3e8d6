from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Sequence

from docuchat.errors import ExtractionError
from docuchat.extractors import extract_text
from docuchat.model_provider import ModelProvider
from docuchat.schema_models import Document

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadedFile:
    filename: str
    content_type: str | None
    content: bytes

    @property
    def size_bytes(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class IngestionFailure:
    filename: str
    message: str

    def to_dict(self) -> dict:
        return {"filename": self.filename, "message": self.message}


@dataclass(frozen=True)
class IngestionReport:
    documents: list[Document] = field(default_factory=list)
    failures: list[IngestionFailure] = field(default_factory=list)

    @property
    def status(self) -> str:
        if not self.failures:
            return "success"
        if self.documents:
            return "partial"
        return "error"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "documents": [document.to_json_dict() for document in self.documents],
            "failures": [failure.to_dict() for failure in self.failures],
        }


def _size_limit_message(upload: UploadedFile, max_bytes: int) -> str:
    limit_mb = max_bytes / (1024 * 1024)
    return f"File {upload.filename} exceeds the upload limit of {limit_mb:g} MB."


async def _ingest_one(
    upload: UploadedFile,
    provider: ModelProvider | None,
    max_bytes: int | None,
) -> Document | IngestionFailure:
    if max_bytes is not None and upload.size_bytes > max_bytes:
        return IngestionFailure(filename=upload.filename, message=_size_limit_message(upload, max_bytes))

    try:
        content = await extract_text(upload.filename, upload.content_type, upload.content, provider)
    except ExtractionError as exc:
        return IngestionFailure(filename=upload.filename, message=str(exc))

    return Document(
        name=upload.filename,
        content=content,
        source_type=upload.content_type or "",
        size_bytes=upload.size_bytes,
    )


async def ingest_files(
    uploads: Sequence[UploadedFile],
    provider: ModelProvider | None = None,
    *,
    max_bytes: int | None = None,
) -> IngestionReport:
    """Extract every upload concurrently and keep the batch order.

    A failing file never aborts the batch; it is reported in ``failures``.
    """

    outcomes = await asyncio.gather(*(_ingest_one(upload, provider, max_bytes) for upload in uploads))

    documents: list[Document] = []
    failures: list[IngestionFailure] = []
    for outcome in outcomes:
        if isinstance(outcome, IngestionFailure):
            logger.warning("Ingestion failed for %s: %s", outcome.filename, outcome.message)
            failures.append(outcome)
        else:
            documents.append(outcome)

    logger.info("Ingested %d of %d files", len(documents), len(uploads))
    return IngestionReport(documents=documents, failures=failures)
