from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
IMAGE_MIME_PREFIX = "image/"


class FormatKind(str, Enum):
    PDF = "pdf"
    OFFICE = "office"
    SPREADSHEET = "spreadsheet"
    IMAGE = "image"
    PLAIN_TEXT = "text"


@dataclass(frozen=True)
class FormatRoute:
    kind: FormatKind
    mime_types: frozenset[str] = frozenset()
    mime_prefixes: tuple[str, ...] = ()
    extensions: frozenset[str] = frozenset()

    def matches_mime(self, mime: str) -> bool:
        return mime in self.mime_types or any(mime.startswith(prefix) for prefix in self.mime_prefixes)

    def matches_extension(self, extension: str) -> bool:
        return extension in self.extensions


FORMAT_ROUTES: tuple[FormatRoute, ...] = (
    FormatRoute(
        kind=FormatKind.PDF,
        mime_types=frozenset({PDF_MIME}),
        extensions=frozenset({".pdf"}),
    ),
    FormatRoute(
        kind=FormatKind.OFFICE,
        mime_types=frozenset({DOCX_MIME}),
        extensions=frozenset({".docx"}),
    ),
    FormatRoute(
        kind=FormatKind.SPREADSHEET,
        mime_types=frozenset({XLSX_MIME}),
        extensions=frozenset({".xlsx"}),
    ),
    FormatRoute(
        kind=FormatKind.IMAGE,
        mime_prefixes=(IMAGE_MIME_PREFIX,),
        extensions=frozenset({".jpg", ".jpeg", ".png", ".webp", ".bmp", ".heic"}),
    ),
)

SUPPORTED_EXTENSIONS = sorted(
    extension for route in FORMAT_ROUTES for extension in route.extensions
)


def normalize_extension(filename: str) -> str:
    return Path(filename or "").suffix.lower().strip()


def detect_format(filename: str, content_type: str | None) -> FormatKind:
    """Classify an upload; anything unrecognized is read as plain text."""
    mime = (content_type or "").strip().lower()
    if mime:
        for route in FORMAT_ROUTES:
            if route.matches_mime(mime):
                return route.kind

    extension = normalize_extension(filename)
    for route in FORMAT_ROUTES:
        if route.matches_extension(extension):
            return route.kind

    return FormatKind.PLAIN_TEXT
