from __future__ import annotations

import json
from typing import Sequence

from pydantic import ValidationError

from docuchat.errors import BackupFormatError
from docuchat.schema_models import WORKSPACE_LIST_ADAPTER, Workspace

BACKUP_FILENAME_PREFIX = "docuchat_backup"


def export_workspaces(workspaces: Sequence[Workspace]) -> str:
    return json.dumps([workspace.to_json_dict() for workspace in workspaces], indent=2, ensure_ascii=False)


def backup_filename(date_label: str) -> str:
    return f"{BACKUP_FILENAME_PREFIX}_{date_label}.json"


def import_workspaces(raw: str | bytes) -> list[Workspace]:
    """Parse a backup produced by ``export_workspaces`` or the browser app."""

    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise BackupFormatError(f"Backup is not valid JSON: {exc}") from exc

    if not isinstance(payload, list):
        raise BackupFormatError("Backup must be a JSON array of workspaces.")

    try:
        return WORKSPACE_LIST_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise BackupFormatError(f"Backup contains invalid workspace records: {exc.error_count()} error(s).") from exc
