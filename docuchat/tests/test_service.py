import asyncio
import json

import pytest

from docuchat.config import Settings
from docuchat.context import NO_DOCUMENTS_NOTICE
from docuchat.errors import (
    MessageNotFoundError,
    QuizFormatError,
    QuizGenerationError,
    QuizSessionNotFoundError,
    StorageError,
    WorkspaceNotFoundError,
)
from docuchat.ingestion import UploadedFile
from docuchat.llm_provider import LlmTextResult
from docuchat.service import DocuChatService
from docuchat.storage import LocalJsonStore


class FakeProvider:
    name = "fake"

    def __init__(self, chat_text="Paris.", quiz_text=None, ok=True):
        self.chat_text = chat_text
        self.quiz_text = quiz_text
        self.ok = ok
        self.chat_requests = []
        self.prompts = []

    def _result(self, text):
        if not self.ok:
            return LlmTextResult(status="error", raw_response=None, warnings=["Gemini request failed with HTTP 503."])
        return LlmTextResult(status="success", raw_response=text, warnings=[])

    def chat(self, request):
        self.chat_requests.append(request)
        return self._result(self.chat_text)

    def generate(self, prompt, *, model=None, temperature=0.5, json_output=False):
        self.prompts.append({"prompt": prompt, "temperature": temperature, "json_output": json_output})
        return self._result(self.quiz_text)

    def transcribe(self, image_bytes, mime_type, prompt):
        return self._result("")


def _quiz_json(count):
    return json.dumps(
        [
            {"question": f"Q{index}?", "options": ["A", "B", "C", "D"], "correctIndex": 0}
            for index in range(count)
        ]
    )


@pytest.fixture
def make_service(tmp_path):
    def _make(provider=None):
        settings = Settings(data_dir=tmp_path, max_upload_bytes=1024)
        return DocuChatService(settings, LocalJsonStore(tmp_path), provider or FakeProvider())

    return _make


def test_upload_and_chat_flow(make_service):
    provider = FakeProvider(chat_text="Paris is the capital.")
    service = make_service(provider)

    async def scenario():
        workspace = await service.create_workspace("alice", "Geo")
        report = await service.upload_documents(
            "alice",
            workspace.id,
            [
                UploadedFile("a.txt", "text/plain", b"Paris is the capital of France."),
                UploadedFile("broken.docx", None, b"nope"),
            ],
        )
        exchange = await service.send_message("alice", workspace.id, "What is the capital?")
        return workspace, report, exchange, await service.get_workspace("alice", workspace.id)

    workspace, report, exchange, stored = asyncio.run(scenario())

    assert report.status == "partial"
    assert [document.name for document in stored.documents] == ["a.txt"]
    assert exchange.reply.text == "Paris is the capital."
    assert [message.role for message in stored.messages] == ["user", "assistant"]
    request = provider.chat_requests[0]
    assert "Paris is the capital of France." in request.system_instruction
    assert [turn.text for turn in request.turns] == ["What is the capital?"]


def test_chat_without_documents_sends_notice(make_service):
    provider = FakeProvider()
    service = make_service(provider)

    async def scenario():
        workspace = await service.create_workspace("alice", "Empty")
        await service.send_message("alice", workspace.id, "Hello?")

    asyncio.run(scenario())

    assert NO_DOCUMENTS_NOTICE in provider.chat_requests[0].system_instruction


def test_model_failure_becomes_error_message(make_service):
    service = make_service(FakeProvider(ok=False))

    async def scenario():
        workspace = await service.create_workspace("alice", "Geo")
        exchange = await service.send_message("alice", workspace.id, "Hi")
        return exchange, await service.get_workspace("alice", workspace.id)

    exchange, stored = asyncio.run(scenario())

    assert exchange.reply.is_error is True
    assert exchange.reply.text == "Error: Gemini request failed with HTTP 503."
    assert len(stored.messages) == 2


def test_history_precedes_new_utterance_and_replies_are_linked(make_service):
    provider = FakeProvider()
    service = make_service(provider)

    async def scenario():
        workspace = await service.create_workspace("alice", "Geo")
        first = await service.send_message("alice", workspace.id, "First")
        second = await service.send_message("alice", workspace.id, "Second", reply_to_id=first.reply.id)
        return first, second

    first, second = asyncio.run(scenario())

    assert [turn.text for turn in provider.chat_requests[1].turns] == ["First", "Paris.", "Second"]
    assert second.user_message.reply_to_id == first.reply.id
    assert second.user_message.reply_to_text == "Paris."


def test_unknown_reply_target_raises(make_service):
    service = make_service()

    async def scenario():
        workspace = await service.create_workspace("alice", "Geo")
        await service.send_message("alice", workspace.id, "Hi", reply_to_id="missing")

    with pytest.raises(MessageNotFoundError):
        asyncio.run(scenario())


def test_state_is_persisted_and_reloaded(make_service, tmp_path):
    service = make_service()

    async def create():
        workspace = await service.create_workspace("alice", "Saved")
        await service.send_message("alice", workspace.id, "Hi")
        return workspace

    workspace = asyncio.run(create())

    reloaded = make_service()
    stored = asyncio.run(reloaded.get_workspace("alice", workspace.id))
    assert [message.text for message in stored.messages] == ["Hi", "Paris."]
    assert asyncio.run(reloaded.list_workspaces("bob")) == []


def test_message_toggles_and_transcript(make_service):
    service = make_service()

    async def scenario():
        workspace = await service.create_workspace("alice", "Geo")
        exchange = await service.send_message("alice", workspace.id, "Hi")
        await service.toggle_pin("alice", workspace.id, exchange.reply.id)
        await service.toggle_favorite("alice", workspace.id, exchange.reply.id)
        await service.toggle_reaction("alice", workspace.id, exchange.reply.id, "👍")
        pinned = await service.pinned_messages("alice", workspace.id)
        transcript = await service.save_transcript("alice", workspace.id)
        await service.clear_conversation("alice", workspace.id)
        return pinned, transcript, await service.get_workspace("alice", workspace.id)

    pinned, transcript, stored = asyncio.run(scenario())

    assert len(pinned) == 1
    assert pinned[0].favorited is True
    assert pinned[0].reactions == {"👍": 1}
    assert "[User]" in transcript.content and "[AI]" in transcript.content
    assert stored.messages == []
    assert stored.documents[-1].id == transcript.id


def test_quiz_lifecycle(make_service):
    provider = FakeProvider(quiz_text="```json\n" + _quiz_json(3) + "\n```")
    service = make_service(provider)

    async def scenario():
        workspace = await service.create_workspace("alice", "Geo")
        await service.upload_documents("alice", workspace.id, [UploadedFile("a.txt", "text/plain", b"Facts")])
        session = await service.generate_quiz("alice", workspace.id, topic="", difficulty="easy", question_count=3)
        service.answer_quiz("alice", session.id, [0, 1, None])
        exported = service.export_quiz("alice", session.id, with_answers=True)
        result = await service.finish_quiz("alice", session.id)
        return session, exported, result, await service.quiz_history("alice")

    session, exported, result, history = asyncio.run(scenario())

    assert session.topic == "General"
    assert session.difficulty == "Easy"
    assert provider.prompts[0]["temperature"] == 0.5
    assert provider.prompts[0]["json_output"] is True
    assert "ANSWER KEY" in exported
    assert result.score == 1
    assert result.total_questions == 3
    assert history == [result]
    with pytest.raises(QuizSessionNotFoundError):
        service.get_quiz_session("alice", session.id)


def test_quiz_requires_documents(make_service):
    provider = FakeProvider(quiz_text=_quiz_json(5))
    service = make_service(provider)

    async def scenario():
        workspace = await service.create_workspace("alice", "Empty")
        await service.generate_quiz("alice", workspace.id)

    with pytest.raises(QuizGenerationError):
        asyncio.run(scenario())
    assert provider.prompts == []


def test_quiz_model_failure_and_malformed_output(make_service):
    failing = make_service(FakeProvider(ok=False))
    malformed = make_service(FakeProvider(quiz_text="[]"))

    async def scenario(service):
        workspace = await service.create_workspace("alice", "Geo")
        await service.upload_documents("alice", workspace.id, [UploadedFile("a.txt", "text/plain", b"Facts")])
        await service.generate_quiz("alice", workspace.id, question_count=2)

    with pytest.raises(QuizGenerationError):
        asyncio.run(scenario(failing))
    with pytest.raises(QuizFormatError):
        asyncio.run(scenario(malformed))


def test_quiz_sessions_are_scoped_to_owner(make_service):
    service = make_service(FakeProvider(quiz_text=_quiz_json(1)))

    async def scenario():
        workspace = await service.create_workspace("alice", "Geo")
        await service.upload_documents("alice", workspace.id, [UploadedFile("a.txt", "text/plain", b"Facts")])
        return await service.generate_quiz("alice", workspace.id, question_count=1)

    session = asyncio.run(scenario())

    with pytest.raises(QuizSessionNotFoundError):
        service.get_quiz_session("bob", session.id)


def test_backup_import_replaces_workspaces_and_clear_all(make_service):
    service = make_service()

    async def scenario():
        await service.create_workspace("alice", "Old")
        exported = await service.export_backup("alice")
        await service.create_workspace("alice", "Newer")
        imported = await service.import_backup("alice", exported)
        names = [workspace.name for workspace in await service.list_workspaces("alice")]
        stats = await service.profile_stats("alice")
        await service.clear_all("alice")
        return imported, names, stats, await service.list_workspaces("alice")

    imported, names, stats, after_clear = asyncio.run(scenario())

    assert len(imported) == 1
    assert names == ["Old"]
    assert stats.total_workspaces == 1
    assert after_clear == []


def test_delete_workspace_and_unknown_ids(make_service):
    service = make_service()

    async def scenario():
        workspace = await service.create_workspace("alice", "Temp")
        await service.delete_workspace("alice", workspace.id)
        await service.get_workspace("alice", workspace.id)

    with pytest.raises(WorkspaceNotFoundError):
        asyncio.run(scenario())


class FailingSaveStore(LocalJsonStore):
    def __init__(self, data_dir):
        super().__init__(data_dir)
        self.fail = True

    def save_workspaces(self, owner, workspaces):
        if self.fail:
            raise StorageError("database unavailable")
        super().save_workspaces(owner, workspaces)


def test_failed_save_leaves_state_unchanged(tmp_path):
    store = FailingSaveStore(tmp_path)
    service = DocuChatService(Settings(data_dir=tmp_path), store, FakeProvider())

    async def scenario():
        with pytest.raises(StorageError):
            await service.create_workspace("alice", "Lost")
        before_retry = await service.list_workspaces("alice")
        store.fail = False
        await service.create_workspace("alice", "Kept")
        return before_retry, await service.list_workspaces("alice")

    before_retry, after_retry = asyncio.run(scenario())

    assert before_retry == []
    assert [workspace.name for workspace in after_retry] == ["Kept"]
    assert [workspace.name for workspace in store.load_workspaces("alice")] == ["Kept"]


def test_new_quiz_replaces_unfinished_session_for_same_workspace(make_service):
    service = make_service(FakeProvider(quiz_text=_quiz_json(1)))

    async def scenario():
        first_ws = await service.create_workspace("alice", "Geo")
        second_ws = await service.create_workspace("alice", "History")
        for workspace in (first_ws, second_ws):
            await service.upload_documents("alice", workspace.id, [UploadedFile("a.txt", "text/plain", b"Facts")])
        abandoned = [await service.generate_quiz("alice", first_ws.id, question_count=1) for _ in range(50)]
        other = await service.generate_quiz("alice", second_ws.id, question_count=1)
        return first_ws, abandoned, other

    first_ws, abandoned, other = asyncio.run(scenario())

    assert len(service._quiz_sessions) == 2
    assert service.get_quiz_session("alice", abandoned[-1].id) is abandoned[-1]
    assert service.get_quiz_session("alice", other.id) is other
    with pytest.raises(QuizSessionNotFoundError):
        service.get_quiz_session("alice", abandoned[0].id)

    asyncio.run(service.delete_workspace("alice", first_ws.id))
    assert list(service._quiz_sessions) == [other.id]


def test_transcript_of_empty_conversation_adds_no_document(make_service):
    service = make_service()

    async def scenario():
        workspace = await service.create_workspace("alice", "Quiet")
        with pytest.raises(ValueError):
            await service.save_transcript("alice", workspace.id)
        return await service.get_workspace("alice", workspace.id)

    stored = asyncio.run(scenario())

    assert stored.documents == []


def test_profile_defaults_and_partial_update(make_service):
    service = make_service()

    async def scenario():
        default = await service.get_profile("alice")
        await service.update_profile("alice", {"name": "Alice", "preferences": {"fontSize": "large"}})
        await service.update_profile("alice", {"role": "Analyst", "id": "mallory"})
        return default, await service.get_profile("alice")

    default, updated = asyncio.run(scenario())

    assert default.id == "alice"
    assert default.name == "User"
    assert updated.id == "alice"
    assert updated.name == "Alice"
    assert updated.role == "Analyst"
    assert updated.preferences.font_size == "large"
    assert updated.preferences.theme_accent == "indigo"
    assert updated.joined_at == default.joined_at


def test_profile_survives_workspace_saves(make_service):
    service = make_service()

    async def scenario():
        await service.update_profile("alice", {"name": "Alice"})
        await service.create_workspace("alice", "Geo")

    asyncio.run(scenario())

    assert asyncio.run(make_service().get_profile("alice")).name == "Alice"
