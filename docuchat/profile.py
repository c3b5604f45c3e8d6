from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from docuchat.schema_models import UserProfile, Workspace

XP_PER_WORKSPACE = 10
XP_PER_DOCUMENT = 5
XP_PER_MESSAGE = 1
XP_PER_LEVEL = 100
EXPERT_LEVEL_THRESHOLD = 5
BASE_BADGE = "Newcomer"
EXPERT_BADGE = "Expert"
ACTIVITY_LIMIT = 10
PROTECTED_PROFILE_FIELDS = frozenset({"id", "joinedAt"})


@dataclass(frozen=True)
class ActivityItem:
    id: str
    type: str
    title: str
    timestamp: int
    subtitle: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "subtitle": self.subtitle,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class ProfileStats:
    total_workspaces: int
    total_documents: int
    total_messages: int
    xp: int
    level: int
    next_level_xp: int
    progress: int
    badges: list[str] = field(default_factory=list)
    recent_activity: list[ActivityItem] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "totalWorkspaces": self.total_workspaces,
            "totalDocuments": self.total_documents,
            "totalMessages": self.total_messages,
            "xp": self.xp,
            "level": self.level,
            "nextLevelXp": self.next_level_xp,
            "progress": self.progress,
            "badges": list(self.badges),
            "recentActivity": [item.to_dict() for item in self.recent_activity],
        }


def level_for_xp(xp: int) -> int:
    return xp // XP_PER_LEVEL + 1


def badges_for_level(level: int) -> list[str]:
    badges = [BASE_BADGE]
    if level > EXPERT_LEVEL_THRESHOLD:
        badges.append(EXPERT_BADGE)
    return badges


def recent_activity(workspaces: Sequence[Workspace], limit: int = ACTIVITY_LIMIT) -> list[ActivityItem]:
    items: list[ActivityItem] = []
    for workspace in workspaces:
        items.append(
            ActivityItem(
                id=f"{workspace.id}_create",
                type="workspace_create",
                title=f'Created workspace "{workspace.name}"',
                timestamp=workspace.created_at,
            )
        )
        for document in workspace.documents:
            items.append(
                ActivityItem(
                    id=document.id,
                    type="document_upload",
                    title="Uploaded document",
                    subtitle=document.name,
                    timestamp=workspace.updated_at or workspace.created_at,
                )
            )
    items.sort(key=lambda item: item.timestamp, reverse=True)
    return items[:limit]


def compute_profile_stats(workspaces: Sequence[Workspace]) -> ProfileStats:
    total_workspaces = len(workspaces)
    total_documents = sum(len(workspace.documents) for workspace in workspaces)
    total_messages = sum(len(workspace.messages) for workspace in workspaces)
    xp = (
        total_workspaces * XP_PER_WORKSPACE
        + total_documents * XP_PER_DOCUMENT
        + total_messages * XP_PER_MESSAGE
    )
    level = level_for_xp(xp)
    return ProfileStats(
        total_workspaces=total_workspaces,
        total_documents=total_documents,
        total_messages=total_messages,
        xp=xp,
        level=level,
        next_level_xp=level * XP_PER_LEVEL,
        progress=xp % XP_PER_LEVEL,
        badges=badges_for_level(level),
        recent_activity=recent_activity(workspaces),
    )


def default_profile(owner: str) -> UserProfile:
    return UserProfile(id=owner)


def apply_profile_update(profile: UserProfile, changes: dict) -> UserProfile:
    """Merge camelCase ``changes`` into ``profile``.

    ``preferences`` is merged key by key so a client can change one setting
    at a time. ``id`` and ``joinedAt`` are never changed. Raises pydantic's
    ``ValidationError`` (a ``ValueError``) for invalid values.
    """

    payload = profile.to_json_dict()
    for key, value in changes.items():
        if key in PROTECTED_PROFILE_FIELDS:
            continue
        if key == "preferences" and isinstance(value, dict):
            payload["preferences"] = {**payload["preferences"], **value}
        else:
            payload[key] = value
    return UserProfile.model_validate(payload)


def profile_view(profile: UserProfile, stats: ProfileStats) -> dict:
    return {
        **profile.to_json_dict(),
        "gamification": {"xp": stats.xp, "level": stats.level, "badges": list(stats.badges)},
    }
