from __future__ import annotations

import time
from typing import Any, Literal
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

Role = Literal["user", "assistant"]
DEFAULT_PROFILE_NAME = "User"
DEFAULT_PROFILE_ROLE = "Researcher"


def new_id() -> str:
    return str(uuid4())


def now_ms() -> int:
    return int(time.time() * 1000)


class RecordModel(BaseModel):
    """Immutable record serialized with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Document(RecordModel):
    id: str = Field(default_factory=new_id)
    name: str
    content: str = ""
    source_type: str = Field(
        default="",
        validation_alias=AliasChoices("sourceType", "source_type", "type"),
        serialization_alias="sourceType",
    )
    size_bytes: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("sizeBytes", "size_bytes", "size"),
        serialization_alias="sizeBytes",
    )

    @field_validator("source_type", mode="before")
    @classmethod
    def _none_source_type(cls, value: Any) -> Any:
        return "" if value is None else value


class Message(RecordModel):
    id: str = Field(default_factory=new_id)
    role: Role
    text: str
    timestamp: int = Field(default_factory=now_ms)
    is_error: bool = False
    reply_to_id: str | None = None
    reply_to_text: str | None = None
    pinned: bool = Field(
        default=False,
        validation_alias=AliasChoices("pinned", "isPinned", "is_pinned"),
        serialization_alias="pinned",
    )
    favorited: bool = Field(
        default=False,
        validation_alias=AliasChoices("favorited", "isFavorite", "is_favorite"),
        serialization_alias="favorited",
    )
    reactions: dict[str, int] = Field(default_factory=dict)
    user_reactions: list[str] = Field(default_factory=list)

    @field_validator("role", mode="before")
    @classmethod
    def _legacy_model_role(cls, value: Any) -> Any:
        # Older exports and the remote tables name the assistant "model".
        if value == "model":
            return "assistant"
        return value

    @field_validator("is_error", "pinned", "favorited", mode="before")
    @classmethod
    def _none_flag(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator("reactions", mode="before")
    @classmethod
    def _none_reactions(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("user_reactions", mode="before")
    @classmethod
    def _none_user_reactions(cls, value: Any) -> Any:
        return [] if value is None else value


class Workspace(RecordModel):
    id: str = Field(default_factory=new_id)
    name: str
    description: str = ""
    created_at: int = Field(default_factory=now_ms)
    updated_at: int | None = None
    documents: list[Document] = Field(
        default_factory=list,
        validation_alias=AliasChoices("documents", "files"),
        serialization_alias="documents",
    )
    messages: list[Message] = Field(default_factory=list)

    @field_validator("description", mode="before")
    @classmethod
    def _none_description(cls, value: Any) -> Any:
        return "" if value is None else value


class QuizQuestion(RecordModel):
    question: str = Field(min_length=1)
    options: list[str] = Field(min_length=4, max_length=4)
    correct_index: int = Field(ge=0, le=3)


class QuizResult(RecordModel):
    id: str = Field(default_factory=new_id)
    workspace_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("workspaceId", "workspace_id", "folderId"),
        serialization_alias="workspaceId",
    )
    topic: str
    score: int = Field(ge=0)
    total_questions: int = Field(ge=0)
    difficulty: str
    completed_at: int = Field(
        default_factory=now_ms,
        validation_alias=AliasChoices("completedAt", "completed_at", "date"),
        serialization_alias="completedAt",
    )


def _text_or_default(value: Any, default: str) -> Any:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip() or default
    return value


class UserPreferences(RecordModel):
    theme_accent: str = "indigo"
    email_notifications: bool = True
    push_notifications: bool = False
    timezone: str = "UTC"
    date_format: str = "YYYY-MM-DD"
    ui_density: Literal["compact", "comfortable"] = "comfortable"
    font_size: Literal["small", "medium", "large"] = "medium"
    custom_color: str | None = None


class UserProfile(RecordModel):
    """Editable profile of one owner. Gamification is derived, never stored."""

    id: str
    email: str = ""
    name: str = DEFAULT_PROFILE_NAME
    role: str = DEFAULT_PROFILE_ROLE
    avatar: str | None = None
    bio: str = ""
    joined_at: int = Field(default_factory=now_ms)
    social_links: dict[str, str] = Field(default_factory=dict)
    preferences: UserPreferences = Field(default_factory=UserPreferences)

    @field_validator("name", mode="before")
    @classmethod
    def _default_name(cls, value: Any) -> Any:
        return _text_or_default(value, DEFAULT_PROFILE_NAME)

    @field_validator("role", mode="before")
    @classmethod
    def _default_role(cls, value: Any) -> Any:
        return _text_or_default(value, DEFAULT_PROFILE_ROLE)

    @field_validator("bio", mode="before")
    @classmethod
    def _none_bio(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("social_links", mode="before")
    @classmethod
    def _none_social_links(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("preferences", mode="before")
    @classmethod
    def _none_preferences(cls, value: Any) -> Any:
        return {} if value is None else value


WORKSPACE_LIST_ADAPTER = TypeAdapter(list[Workspace])
QUIZ_QUESTION_LIST_ADAPTER = TypeAdapter(list[QuizQuestion])
QUIZ_RESULT_LIST_ADAPTER = TypeAdapter(list[QuizResult])


def validate_workspace_payload(payload: dict[str, Any]) -> Workspace:
    """Validate one workspace record, accepting legacy browser-export keys."""

    return Workspace.model_validate(payload)
