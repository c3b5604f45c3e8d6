"""Application service: owns per-owner state, persistence and model calls."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Sequence

from docuchat import backup, chat, context, quiz
from docuchat.config import Settings
from docuchat.errors import (
    DocumentNotFoundError,
    QuizFormatError,
    QuizGenerationError,
    QuizSessionNotFoundError,
)
from docuchat.ingestion import IngestionReport, UploadedFile, ingest_files
from docuchat.model_provider import ModelProvider
from docuchat.profile import ProfileStats, apply_profile_update, compute_profile_stats, default_profile
from docuchat.schema_models import Document, Message, QuizResult, UserProfile, Workspace
from docuchat.state import (
    Action,
    AddDocuments,
    AppendMessage,
    AppState,
    ClearAll,
    ClearConversation,
    CreateWorkspace,
    DeleteWorkspace,
    RemoveDocument,
    ReplaceWorkspaces,
    SelectWorkspace,
    UpdateMessage,
    reduce,
)
from docuchat.storage import WorkspaceStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChatExchange:
    user_message: Message
    reply: Message

    def to_dict(self) -> dict:
        return {
            "userMessage": self.user_message.to_json_dict(),
            "reply": self.reply.to_json_dict(),
        }


class DocuChatService:
    def __init__(self, settings: Settings, store: WorkspaceStore, provider: ModelProvider):
        self.settings = settings
        self.store = store
        self.provider = provider
        self._states: dict[str, AppState] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._quiz_sessions: dict[str, tuple[str, quiz.QuizSession]] = {}

    def _lock(self, owner: str) -> asyncio.Lock:
        lock = self._locks.get(owner)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[owner] = lock
        return lock

    async def state(self, owner: str) -> AppState:
        if owner not in self._states:
            async with self._lock(owner):
                if owner not in self._states:
                    workspaces = await asyncio.to_thread(self.store.load_workspaces, owner)
                    self._states[owner] = AppState(
                        workspaces=tuple(workspaces),
                        active_workspace_id=workspaces[0].id if workspaces else None,
                    )
        return self._states[owner]

    async def _dispatch(self, owner: str, action: Action) -> AppState:
        """Reduce, save, then publish. A failed save leaves the cached state untouched."""

        await self.state(owner)
        async with self._lock(owner):
            updated = reduce(self._states[owner], action)
            await asyncio.to_thread(self.store.save_workspaces, owner, list(updated.workspaces))
            self._states[owner] = updated
        logger.debug("Persisted state for owner %s", owner)
        return updated

    # Workspaces

    async def list_workspaces(self, owner: str) -> list[Workspace]:
        return list((await self.state(owner)).workspaces)

    async def get_workspace(self, owner: str, workspace_id: str) -> Workspace:
        return (await self.state(owner)).find_workspace(workspace_id)

    async def create_workspace(self, owner: str, name: str, description: str = "") -> Workspace:
        workspace = Workspace(name=name.strip(), description=(description or "").strip())
        await self._dispatch(owner, CreateWorkspace(workspace=workspace))
        logger.info("Created workspace %s for owner %s", workspace.id, owner)
        return workspace

    async def delete_workspace(self, owner: str, workspace_id: str) -> None:
        await self._dispatch(owner, DeleteWorkspace(workspace_id=workspace_id))
        self._drop_quiz_sessions(owner, workspace_id)
        logger.info("Deleted workspace %s for owner %s", workspace_id, owner)

    async def select_workspace(self, owner: str, workspace_id: str | None) -> AppState:
        current = await self.state(owner)
        updated = reduce(current, SelectWorkspace(workspace_id=workspace_id))
        self._states[owner] = updated
        return updated

    # Documents

    async def upload_documents(
        self,
        owner: str,
        workspace_id: str,
        uploads: Sequence[UploadedFile],
    ) -> IngestionReport:
        (await self.state(owner)).find_workspace(workspace_id)
        report = await ingest_files(uploads, self.provider, max_bytes=self.settings.max_upload_bytes)
        if report.documents:
            await self._dispatch(owner, AddDocuments(workspace_id=workspace_id, documents=tuple(report.documents)))
        return report

    async def get_document(self, owner: str, workspace_id: str, document_id: str) -> Document:
        workspace = await self.get_workspace(owner, workspace_id)
        for document in workspace.documents:
            if document.id == document_id:
                return document
        raise DocumentNotFoundError(document_id)

    async def remove_document(self, owner: str, workspace_id: str, document_id: str) -> None:
        await self._dispatch(owner, RemoveDocument(workspace_id=workspace_id, document_id=document_id))

    # Conversation

    async def send_message(
        self,
        owner: str,
        workspace_id: str,
        text: str,
        reply_to_id: str | None = None,
    ) -> ChatExchange:
        """Record the user message, ask the model, and record its reply.

        Model failures are recorded as an error reply instead of raising.
        """

        workspace = await self.get_workspace(owner, workspace_id)
        reply_to = chat.find_message(workspace.messages, reply_to_id) if reply_to_id else None
        user_message = chat.build_user_message(text, reply_to=reply_to)
        history = list(workspace.messages)

        state = await self._dispatch(owner, AppendMessage(workspace_id=workspace_id, message=user_message))
        documents = state.find_workspace(workspace_id).documents

        request = context.build_chat_request(documents, history, text, model=self.settings.chat_model)
        result = await asyncio.to_thread(self.provider.chat, request)
        if not result.ok:
            logger.warning("Chat request failed for workspace %s: %s", workspace_id, result.error_message())

        reply = chat.build_reply_message(result)
        await self._dispatch(owner, AppendMessage(workspace_id=workspace_id, message=reply))
        return ChatExchange(user_message=user_message, reply=reply)

    async def clear_conversation(self, owner: str, workspace_id: str) -> None:
        await self._dispatch(owner, ClearConversation(workspace_id=workspace_id))

    async def pinned_messages(self, owner: str, workspace_id: str) -> list[Message]:
        workspace = await self.get_workspace(owner, workspace_id)
        return chat.pinned_messages(workspace.messages)

    async def _update_message(self, owner: str, workspace_id: str, message_id: str, change) -> Message:
        workspace = await self.get_workspace(owner, workspace_id)
        updated = change(chat.find_message(workspace.messages, message_id))
        await self._dispatch(owner, UpdateMessage(workspace_id=workspace_id, message=updated))
        return updated

    async def toggle_pin(self, owner: str, workspace_id: str, message_id: str) -> Message:
        return await self._update_message(owner, workspace_id, message_id, chat.toggle_pin)

    async def toggle_favorite(self, owner: str, workspace_id: str, message_id: str) -> Message:
        return await self._update_message(owner, workspace_id, message_id, chat.toggle_favorite)

    async def toggle_reaction(self, owner: str, workspace_id: str, message_id: str, emoji: str) -> Message:
        return await self._update_message(
            owner,
            workspace_id,
            message_id,
            lambda message: chat.toggle_reaction(message, emoji),
        )

    async def save_transcript(self, owner: str, workspace_id: str) -> Document:
        workspace = await self.get_workspace(owner, workspace_id)
        document = chat.transcript_document(workspace.messages)
        await self._dispatch(owner, AddDocuments(workspace_id=workspace_id, documents=(document,)))
        return document

    # Quiz

    async def generate_quiz(
        self,
        owner: str,
        workspace_id: str,
        topic: str | None = None,
        difficulty: str | None = None,
        question_count: int = quiz.DEFAULT_QUESTION_COUNT,
    ) -> quiz.QuizSession:
        workspace = await self.get_workspace(owner, workspace_id)
        normalized_topic = quiz.normalize_topic(topic)
        normalized_difficulty = quiz.normalize_difficulty(difficulty)
        count = quiz.validate_question_count(question_count)

        if not workspace.documents:
            raise QuizGenerationError("No documents available to build a quiz from.")

        request = context.build_quiz_request(
            workspace.documents,
            normalized_topic,
            normalized_difficulty,
            count,
            model=self.settings.chat_model,
        )
        result = await asyncio.to_thread(
            self.provider.generate,
            request.prompt,
            model=request.model,
            temperature=request.temperature,
            json_output=request.json_output,
        )
        if not result.ok:
            logger.warning("Quiz generation failed for workspace %s: %s", workspace_id, result.error_message())
            raise QuizGenerationError(result.error_message())

        try:
            questions = quiz.parse_quiz_response(result.raw_response or "", count)
        except QuizFormatError:
            logger.warning("Quiz response for workspace %s could not be parsed", workspace_id)
            raise

        session = quiz.QuizSession(
            workspace_id=workspace_id,
            topic=normalized_topic,
            difficulty=normalized_difficulty,
            questions=questions,
        )
        self._drop_quiz_sessions(owner, workspace_id)
        self._quiz_sessions[session.id] = (owner, session)
        return session

    def _drop_quiz_sessions(self, owner: str, workspace_id: str | None = None) -> None:
        # One live session per owner and workspace.
        stale = [
            session_id
            for session_id, (session_owner, session) in self._quiz_sessions.items()
            if session_owner == owner and (workspace_id is None or session.workspace_id == workspace_id)
        ]
        for session_id in stale:
            del self._quiz_sessions[session_id]

    def get_quiz_session(self, owner: str, session_id: str) -> quiz.QuizSession:
        entry = self._quiz_sessions.get(session_id)
        if entry is None or entry[0] != owner:
            raise QuizSessionNotFoundError(session_id)
        return entry[1]

    def answer_quiz(self, owner: str, session_id: str, answers: Sequence[int | None]) -> quiz.QuizSession:
        session = self.get_quiz_session(owner, session_id)
        session.record_answers(answers)
        return session

    async def finish_quiz(self, owner: str, session_id: str) -> QuizResult:
        session = self.get_quiz_session(owner, session_id)
        result = session.to_result()
        async with self._lock(owner):
            await asyncio.to_thread(self.store.append_quiz_result, owner, result)
        self._quiz_sessions.pop(session_id, None)
        logger.info("Quiz %s finished with score %d/%d", session_id, result.score, result.total_questions)
        return result

    def export_quiz(self, owner: str, session_id: str, with_answers: bool = False) -> str:
        return quiz.export_quiz_text(self.get_quiz_session(owner, session_id), with_answers=with_answers)

    async def quiz_history(self, owner: str) -> list[QuizResult]:
        return await asyncio.to_thread(self.store.load_quiz_history, owner)

    # Profile and backup

    async def profile_stats(self, owner: str) -> ProfileStats:
        return compute_profile_stats((await self.state(owner)).workspaces)

    async def _load_or_create_profile(self, owner: str) -> UserProfile:
        profile = await asyncio.to_thread(self.store.load_profile, owner)
        if profile is None:
            profile = default_profile(owner)
            await asyncio.to_thread(self.store.save_profile, owner, profile)
            logger.info("Created profile for owner %s", owner)
        return profile

    async def get_profile(self, owner: str) -> UserProfile:
        async with self._lock(owner):
            return await self._load_or_create_profile(owner)

    async def update_profile(self, owner: str, changes: dict) -> UserProfile:
        async with self._lock(owner):
            current = await self._load_or_create_profile(owner)
            updated = apply_profile_update(current, changes)
            await asyncio.to_thread(self.store.save_profile, owner, updated)
        logger.info("Updated profile for owner %s", owner)
        return updated

    async def export_backup(self, owner: str) -> str:
        return backup.export_workspaces((await self.state(owner)).workspaces)

    async def import_backup(self, owner: str, raw: str | bytes) -> list[Workspace]:
        workspaces = backup.import_workspaces(raw)
        await self._dispatch(owner, ReplaceWorkspaces(workspaces=tuple(workspaces)))
        self._drop_quiz_sessions(owner)
        logger.info("Imported %d workspaces for owner %s", len(workspaces), owner)
        return workspaces

    async def clear_all(self, owner: str) -> None:
        await self._dispatch(owner, ClearAll())
        self._drop_quiz_sessions(owner)
        logger.info("Cleared all workspaces for owner %s", owner)
