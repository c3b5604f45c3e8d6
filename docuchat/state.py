"""Per-owner application state and its pure transitions.

``reduce(state, action)`` never mutates its inputs; callers replace their
state with the returned value (last write wins).
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Callable, Sequence, Union

from docuchat.errors import DocumentNotFoundError, MessageNotFoundError, WorkspaceNotFoundError
from docuchat.schema_models import Document, Message, Workspace, now_ms


@dataclass(frozen=True)
class AppState:
    workspaces: tuple[Workspace, ...] = ()
    active_workspace_id: str | None = None

    def find_workspace(self, workspace_id: str) -> Workspace:
        for workspace in self.workspaces:
            if workspace.id == workspace_id:
                return workspace
        raise WorkspaceNotFoundError(workspace_id)

    @property
    def active_workspace(self) -> Workspace | None:
        if self.active_workspace_id is None:
            return None
        try:
            return self.find_workspace(self.active_workspace_id)
        except WorkspaceNotFoundError:
            return None


@dataclass(frozen=True)
class CreateWorkspace:
    workspace: Workspace
    select: bool = True


@dataclass(frozen=True)
class DeleteWorkspace:
    workspace_id: str


@dataclass(frozen=True)
class SelectWorkspace:
    workspace_id: str | None


@dataclass(frozen=True)
class AddDocuments:
    workspace_id: str
    documents: tuple[Document, ...]


@dataclass(frozen=True)
class RemoveDocument:
    workspace_id: str
    document_id: str


@dataclass(frozen=True)
class AppendMessage:
    workspace_id: str
    message: Message


@dataclass(frozen=True)
class UpdateMessage:
    workspace_id: str
    message: Message


@dataclass(frozen=True)
class ClearConversation:
    workspace_id: str


@dataclass(frozen=True)
class ReplaceWorkspaces:
    workspaces: tuple[Workspace, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ClearAll:
    pass


Action = Union[
    CreateWorkspace,
    DeleteWorkspace,
    SelectWorkspace,
    AddDocuments,
    RemoveDocument,
    AppendMessage,
    UpdateMessage,
    ClearConversation,
    ReplaceWorkspaces,
    ClearAll,
]


def _update_workspace(
    state: AppState,
    workspace_id: str,
    change: Callable[[Workspace], Workspace],
) -> AppState:
    target = state.find_workspace(workspace_id)
    updated = change(target).model_copy(update={"updated_at": now_ms()})
    return replace(
        state,
        workspaces=tuple(updated if workspace.id == workspace_id else workspace for workspace in state.workspaces),
    )


def _replace_message(messages: Sequence[Message], message: Message) -> list[Message]:
    if not any(existing.id == message.id for existing in messages):
        raise MessageNotFoundError(message.id)
    return [message if existing.id == message.id else existing for existing in messages]


def _remove_document(documents: Sequence[Document], document_id: str) -> list[Document]:
    remaining = [document for document in documents if document.id != document_id]
    if len(remaining) == len(documents):
        raise DocumentNotFoundError(document_id)
    return remaining


def reduce(state: AppState, action: Action) -> AppState:
    if isinstance(action, CreateWorkspace):
        return AppState(
            workspaces=(action.workspace, *state.workspaces),
            active_workspace_id=action.workspace.id if action.select else state.active_workspace_id,
        )

    if isinstance(action, DeleteWorkspace):
        state.find_workspace(action.workspace_id)
        remaining = tuple(workspace for workspace in state.workspaces if workspace.id != action.workspace_id)
        active = state.active_workspace_id
        if active == action.workspace_id:
            active = remaining[0].id if remaining else None
        return AppState(workspaces=remaining, active_workspace_id=active)

    if isinstance(action, SelectWorkspace):
        if action.workspace_id is not None:
            state.find_workspace(action.workspace_id)
        return replace(state, active_workspace_id=action.workspace_id)

    if isinstance(action, AddDocuments):
        return _update_workspace(
            state,
            action.workspace_id,
            lambda workspace: workspace.model_copy(
                update={"documents": [*workspace.documents, *action.documents]}
            ),
        )

    if isinstance(action, RemoveDocument):
        return _update_workspace(
            state,
            action.workspace_id,
            lambda workspace: workspace.model_copy(
                update={"documents": _remove_document(workspace.documents, action.document_id)}
            ),
        )

    if isinstance(action, AppendMessage):
        return _update_workspace(
            state,
            action.workspace_id,
            lambda workspace: workspace.model_copy(update={"messages": [*workspace.messages, action.message]}),
        )

    if isinstance(action, UpdateMessage):
        return _update_workspace(
            state,
            action.workspace_id,
            lambda workspace: workspace.model_copy(
                update={"messages": _replace_message(workspace.messages, action.message)}
            ),
        )

    if isinstance(action, ClearConversation):
        return _update_workspace(
            state,
            action.workspace_id,
            lambda workspace: workspace.model_copy(update={"messages": []}),
        )

    if isinstance(action, ReplaceWorkspaces):
        ids = {workspace.id for workspace in action.workspaces}
        active = state.active_workspace_id if state.active_workspace_id in ids else None
        if active is None and action.workspaces:
            active = action.workspaces[0].id
        return AppState(workspaces=tuple(action.workspaces), active_workspace_id=active)

    if isinstance(action, ClearAll):
        return AppState()

    raise TypeError(f"Unknown state action: {type(action).__name__}")
