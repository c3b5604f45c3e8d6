from __future__ import annotations

import json
import logging
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol, Sequence

import httpx
from pydantic import ValidationError
from supabase import Client, PostgrestAPIError, create_client

from docuchat.config import Settings
from docuchat.errors import StorageError
from docuchat.schema_models import (
    QUIZ_RESULT_LIST_ADAPTER,
    WORKSPACE_LIST_ADAPTER,
    Document,
    Message,
    QuizResult,
    UserProfile,
    Workspace,
    validate_workspace_payload,
)

logger = logging.getLogger(__name__)

DEFAULT_OWNER = "local"
_OWNER_UNSAFE_CHARACTERS = re.compile(r"[^A-Za-z0-9_.-]")


class WorkspaceStore(Protocol):
    name: str

    def load_workspaces(self, owner: str) -> list[Workspace]:
        ...

    def save_workspaces(self, owner: str, workspaces: Sequence[Workspace]) -> None:
        ...

    def load_quiz_history(self, owner: str) -> list[QuizResult]:
        ...

    def append_quiz_result(self, owner: str, result: QuizResult) -> None:
        ...

    def load_profile(self, owner: str) -> UserProfile | None:
        ...

    def save_profile(self, owner: str, profile: UserProfile) -> None:
        ...


def _atomic_write_json(path: Path, payload: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    ) as handle:
        json.dump(payload, handle, indent=2, ensure_ascii=False)
        handle.flush()
        temp_path = Path(handle.name)
    temp_path.replace(path)


def _owner_filename(owner: str) -> str:
    safe = _OWNER_UNSAFE_CHARACTERS.sub("_", owner.strip()) or DEFAULT_OWNER
    return f"{safe}.json"


class LocalJsonStore:
    """One JSON document per owner: ``{"workspaces": [...], "quizHistory": [...], "profile": {...}}``."""

    name = "local"

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)

    def _path(self, owner: str) -> Path:
        return self.data_dir / "owners" / _owner_filename(owner)

    def _read(self, owner: str) -> dict:
        path = self._path(owner)
        if not path.exists():
            return {"workspaces": [], "quizHistory": []}
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise StorageError(f"Stored data for owner '{owner}' is not valid JSON: {exc.msg}.") from exc
        if not isinstance(payload, dict):
            raise StorageError(f"Stored data for owner '{owner}' has an unexpected shape.")
        return payload

    def _write(self, owner: str, payload: dict) -> None:
        _atomic_write_json(self._path(owner), payload)

    def load_workspaces(self, owner: str) -> list[Workspace]:
        payload = self._read(owner)
        try:
            return WORKSPACE_LIST_ADAPTER.validate_python(payload.get("workspaces") or [])
        except ValidationError as exc:
            raise StorageError(f"Stored workspaces for owner '{owner}' are invalid.") from exc

    def save_workspaces(self, owner: str, workspaces: Sequence[Workspace]) -> None:
        payload = self._read(owner)
        payload["workspaces"] = [workspace.to_json_dict() for workspace in workspaces]
        self._write(owner, payload)
        logger.debug("Saved %d workspaces for owner %s", len(workspaces), owner)

    def load_quiz_history(self, owner: str) -> list[QuizResult]:
        payload = self._read(owner)
        try:
            return QUIZ_RESULT_LIST_ADAPTER.validate_python(payload.get("quizHistory") or [])
        except ValidationError as exc:
            raise StorageError(f"Stored quiz history for owner '{owner}' is invalid.") from exc

    def append_quiz_result(self, owner: str, result: QuizResult) -> None:
        payload = self._read(owner)
        history = list(payload.get("quizHistory") or [])
        history.append(result.to_json_dict())
        payload["quizHistory"] = history
        self._write(owner, payload)

    def load_profile(self, owner: str) -> UserProfile | None:
        raw = self._read(owner).get("profile")
        if raw is None:
            return None
        try:
            return UserProfile.model_validate(raw)
        except ValidationError as exc:
            raise StorageError(f"Stored profile for owner '{owner}' is invalid.") from exc

    def save_profile(self, owner: str, profile: UserProfile) -> None:
        payload = self._read(owner)
        payload["profile"] = profile.to_json_dict()
        self._write(owner, payload)


def _iso_from_ms(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).isoformat()


def _ms_from_value(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return int(datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp() * 1000)
        except ValueError:
            return value
    return value


def _folder_row(owner: str, workspace: Workspace) -> dict:
    return {
        "id": workspace.id,
        "user_id": owner,
        "name": workspace.name,
        "description": workspace.description,
        "created_at": workspace.created_at,
        "updated_at": workspace.updated_at,
    }


def _file_row(owner: str, workspace_id: str, document: Document) -> dict:
    return {
        "id": document.id,
        "user_id": owner,
        "folder_id": workspace_id,
        "name": document.name,
        "content": document.content,
        "type": document.source_type,
        "size": document.size_bytes,
    }


def _message_row(owner: str, workspace_id: str, message: Message) -> dict:
    return {
        "id": message.id,
        "user_id": owner,
        "folder_id": workspace_id,
        "role": "model" if message.role == "assistant" else "user",
        "text": message.text,
        "timestamp": message.timestamp,
        "is_error": message.is_error,
        "is_pinned": message.pinned,
        "is_favorite": message.favorited,
        "reactions": dict(message.reactions),
        "reply_to_id": message.reply_to_id,
    }


def _profile_row(profile: UserProfile) -> dict:
    payload = profile.to_json_dict()
    return {
        "id": profile.id,
        "email": profile.email,
        "name": profile.name,
        "role": profile.role,
        "avatar": profile.avatar,
        "bio": profile.bio,
        "joined_at": profile.joined_at,
        "social_links": payload["socialLinks"],
        "preferences": payload["preferences"],
    }


def _workspace_from_row(row: dict) -> Workspace:
    messages = sorted(row.get("messages") or [], key=lambda item: item.get("timestamp") or 0)
    return validate_workspace_payload(
        {
            "id": row["id"],
            "name": row.get("name") or "",
            "description": row.get("description"),
            "createdAt": _ms_from_value(row.get("created_at")),
            "updatedAt": _ms_from_value(row.get("updated_at")),
            "documents": row.get("files") or [],
            "messages": messages,
        }
    )


def _quiz_result_from_row(row: dict) -> QuizResult:
    return QuizResult.model_validate(
        {
            "id": row["id"],
            "workspaceId": row.get("folder_id"),
            "topic": row.get("topic") or "",
            "score": row.get("score") or 0,
            "totalQuestions": row.get("total_questions") or 0,
            "difficulty": row.get("difficulty") or "",
            "completedAt": _ms_from_value(row.get("created_at")),
        }
    )


def _profile_from_row(row: dict) -> UserProfile:
    payload = {
        "id": row["id"],
        "email": row.get("email") or "",
        "name": row.get("name"),
        "role": row.get("role"),
        "avatar": row.get("avatar"),
        "bio": row.get("bio"),
        "socialLinks": row.get("social_links"),
        "preferences": row.get("preferences"),
    }
    joined_at = _ms_from_value(row.get("joined_at"))
    if joined_at is not None:
        payload["joinedAt"] = joined_at
    return UserProfile.model_validate(payload)


class RestTableStore:
    """Supabase tables ``folders``, ``files``, ``messages``, ``quiz_history`` and ``profiles``."""

    name = "remote"

    def __init__(self, url: str, key: str, client: Client | None = None):
        if not url or not key:
            raise StorageError("Remote storage requires SUPABASE_URL and SUPABASE_SERVICE_KEY.")
        self.url = url
        self.key = key
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = create_client(self.url, self.key)
        return self._client

    def _execute(self, query, action: str) -> list[dict]:
        try:
            response = query.execute()
        except (PostgrestAPIError, httpx.HTTPError) as exc:
            raise StorageError(f"Remote storage {action} failed: {exc}") from exc
        return response.data or []

    def _upsert(self, table: str, rows: list[dict]) -> None:
        if rows:
            self._execute(self.client.table(table).upsert(rows), f"upsert into {table}")

    def _delete_missing(self, table: str, owner: str, keep_ids: Sequence[str]) -> None:
        query = self.client.table(table).delete().eq("user_id", owner)
        if keep_ids:
            query = query.not_.in_("id", list(keep_ids))
        self._execute(query, f"delete from {table}")

    def load_workspaces(self, owner: str) -> list[Workspace]:
        query = (
            self.client.table("folders")
            .select("*, files(*), messages(*)")
            .eq("user_id", owner)
            .order("created_at", desc=True)
        )
        rows = self._execute(query, "select from folders")
        try:
            return [_workspace_from_row(row) for row in rows]
        except ValidationError as exc:
            raise StorageError(f"Remote workspaces for owner '{owner}' are invalid.") from exc

    def save_workspaces(self, owner: str, workspaces: Sequence[Workspace]) -> None:
        folder_rows = [_folder_row(owner, workspace) for workspace in workspaces]
        file_rows = [
            _file_row(owner, workspace.id, document)
            for workspace in workspaces
            for document in workspace.documents
        ]
        message_rows = [
            _message_row(owner, workspace.id, message)
            for workspace in workspaces
            for message in workspace.messages
        ]

        self._upsert("folders", folder_rows)
        self._upsert("files", file_rows)
        self._upsert("messages", message_rows)

        self._delete_missing("messages", owner, [row["id"] for row in message_rows])
        self._delete_missing("files", owner, [row["id"] for row in file_rows])
        self._delete_missing("folders", owner, [row["id"] for row in folder_rows])
        logger.debug(
            "Synced %d folders, %d files, %d messages for owner %s",
            len(folder_rows),
            len(file_rows),
            len(message_rows),
            owner,
        )

    def load_quiz_history(self, owner: str) -> list[QuizResult]:
        query = self.client.table("quiz_history").select("*").eq("user_id", owner).order("created_at")
        rows = self._execute(query, "select from quiz_history")
        try:
            return [_quiz_result_from_row(row) for row in rows]
        except (ValidationError, KeyError) as exc:
            raise StorageError(f"Remote quiz history for owner '{owner}' is invalid.") from exc

    def append_quiz_result(self, owner: str, result: QuizResult) -> None:
        row = {
            "id": result.id,
            "user_id": owner,
            "folder_id": result.workspace_id,
            "topic": result.topic,
            "score": result.score,
            "total_questions": result.total_questions,
            "difficulty": result.difficulty,
            "created_at": _iso_from_ms(result.completed_at),
        }
        self._execute(self.client.table("quiz_history").insert(row), "insert into quiz_history")

    def load_profile(self, owner: str) -> UserProfile | None:
        query = self.client.table("profiles").select("*").eq("id", owner).limit(1)
        rows = self._execute(query, "select from profiles")
        if not rows:
            return None
        try:
            return _profile_from_row(rows[0])
        except (ValidationError, KeyError) as exc:
            raise StorageError(f"Remote profile for owner '{owner}' is invalid.") from exc

    def save_profile(self, owner: str, profile: UserProfile) -> None:
        self._execute(self.client.table("profiles").upsert(_profile_row(profile)), "upsert into profiles")


def build_store(settings: Settings) -> WorkspaceStore:
    backend = (settings.storage_backend or "local").lower()
    if backend == "local":
        return LocalJsonStore(settings.data_dir)
    if backend == "remote":
        return RestTableStore(settings.supabase_url, settings.supabase_key)
    raise ValueError(f"Unknown storage backend '{backend}'. Available backends: local, remote.")
