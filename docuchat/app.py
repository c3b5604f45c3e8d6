from __future__ import annotations

from datetime import datetime, timezone

from fastapi import FastAPI, File, Header, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from docuchat import backup, quiz
from docuchat.config import configure_logging, load_settings
from docuchat.errors import (
    BackupFormatError,
    NotFoundError,
    QuizFormatError,
    QuizGenerationError,
    StorageError,
)
from docuchat.formats import SUPPORTED_EXTENSIONS
from docuchat.ingestion import UploadedFile
from docuchat.model_provider import get_model_provider, list_model_providers
from docuchat.profile import profile_view
from docuchat.service import DocuChatService
from docuchat.storage import DEFAULT_OWNER, build_store

settings = load_settings()
configure_logging(settings.log_level)

app = FastAPI(title="DocuChat API")

_service: DocuChatService | None = None


def get_service() -> DocuChatService:
    global _service
    if _service is None:
        _service = DocuChatService(settings, build_store(settings), get_model_provider(settings))
    return _service


@app.middleware("http")
async def api_prefix_alias(request, call_next):
    """Accept both `/path` and `/api/path` for frontend compatibility."""
    if request.scope.get("path", "").startswith("/api/"):
        request.scope["path"] = request.scope["path"][4:]
    return await call_next(request)


app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_allowed_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(status_code: int, message: str, status: str = "error", warnings: list[str] | None = None):
    return JSONResponse(
        status_code=status_code,
        content={"status": status, "message": message, "warnings": warnings or []},
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return _error_response(404, str(exc), status="warning")


@app.exception_handler(BackupFormatError)
async def backup_format_handler(request: Request, exc: BackupFormatError):
    return _error_response(400, str(exc))


@app.exception_handler(QuizGenerationError)
async def quiz_generation_handler(request: Request, exc: QuizGenerationError):
    return _error_response(502, f"Quiz generation failed: {exc}")


@app.exception_handler(QuizFormatError)
async def quiz_format_handler(request: Request, exc: QuizFormatError):
    return _error_response(422, str(exc))


@app.exception_handler(StorageError)
async def storage_handler(request: Request, exc: StorageError):
    return _error_response(503, str(exc))


class ApiRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateWorkspaceRequest(ApiRequest):
    name: str = Field(min_length=1)
    description: str = ""


class SendMessageRequest(ApiRequest):
    text: str = Field(min_length=1)
    reply_to_id: str | None = None


class ReactionRequest(ApiRequest):
    emoji: str = Field(min_length=1)


class QuizRequest(ApiRequest):
    topic: str = ""
    difficulty: str = quiz.DEFAULT_DIFFICULTY
    question_count: int = quiz.DEFAULT_QUESTION_COUNT


class QuizAnswersRequest(ApiRequest):
    answers: list[int | None]


class PreferencesUpdate(ApiRequest):
    theme_accent: str | None = None
    email_notifications: bool | None = None
    push_notifications: bool | None = None
    timezone: str | None = None
    date_format: str | None = None
    ui_density: str | None = None
    font_size: str | None = None
    custom_color: str | None = None


class ProfileUpdateRequest(ApiRequest):
    email: str | None = None
    name: str | None = None
    role: str | None = None
    avatar: str | None = None
    bio: str | None = None
    social_links: dict[str, str] | None = None
    preferences: PreferencesUpdate | None = None


def _owner(x_user_id: str | None) -> str:
    return (x_user_id or "").strip() or DEFAULT_OWNER


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/config/frontend")
def frontend_config():
    return {
        **settings.to_public_dict(),
        "available_providers": list_model_providers(),
        "supported_extensions": SUPPORTED_EXTENSIONS,
        "quiz_difficulties": list(quiz.DIFFICULTIES),
        "max_quiz_questions": quiz.MAX_QUESTION_COUNT,
    }


@app.get("/workspaces")
async def list_workspaces(x_user_id: str | None = Header(None)):
    owner = _owner(x_user_id)
    state = await get_service().state(owner)
    return {
        "activeWorkspaceId": state.active_workspace_id,
        "workspaces": [workspace.to_json_dict() for workspace in state.workspaces],
    }


@app.post("/workspaces", status_code=201)
async def create_workspace(request: CreateWorkspaceRequest, x_user_id: str | None = Header(None)):
    workspace = await get_service().create_workspace(_owner(x_user_id), request.name, request.description)
    return workspace.to_json_dict()


@app.get("/workspaces/{workspace_id}")
async def get_workspace(workspace_id: str, x_user_id: str | None = Header(None)):
    workspace = await get_service().get_workspace(_owner(x_user_id), workspace_id)
    return workspace.to_json_dict()


@app.delete("/workspaces/{workspace_id}")
async def delete_workspace(workspace_id: str, x_user_id: str | None = Header(None)):
    await get_service().delete_workspace(_owner(x_user_id), workspace_id)
    return {"status": "success", "message": "Workspace deleted."}


@app.post("/workspaces/{workspace_id}/select")
async def select_workspace(workspace_id: str, x_user_id: str | None = Header(None)):
    state = await get_service().select_workspace(_owner(x_user_id), workspace_id)
    return {"activeWorkspaceId": state.active_workspace_id}


@app.post("/workspaces/{workspace_id}/documents")
async def upload_documents(
    workspace_id: str,
    files: list[UploadFile] = File(...),
    x_user_id: str | None = Header(None),
):
    uploads = [
        UploadedFile(filename=file.filename or "upload", content_type=file.content_type, content=await file.read())
        for file in files
    ]
    report = await get_service().upload_documents(_owner(x_user_id), workspace_id, uploads)
    return report.to_dict()


@app.get("/workspaces/{workspace_id}/documents/{document_id}")
async def view_document(workspace_id: str, document_id: str, x_user_id: str | None = Header(None)):
    document = await get_service().get_document(_owner(x_user_id), workspace_id, document_id)
    return document.to_json_dict()


@app.delete("/workspaces/{workspace_id}/documents/{document_id}")
async def remove_document(workspace_id: str, document_id: str, x_user_id: str | None = Header(None)):
    await get_service().remove_document(_owner(x_user_id), workspace_id, document_id)
    return {"status": "success", "message": "Document removed."}


@app.post("/workspaces/{workspace_id}/messages")
async def send_message(workspace_id: str, request: SendMessageRequest, x_user_id: str | None = Header(None)):
    exchange = await get_service().send_message(
        _owner(x_user_id),
        workspace_id,
        request.text,
        reply_to_id=request.reply_to_id,
    )
    return exchange.to_dict()


@app.delete("/workspaces/{workspace_id}/messages")
async def clear_conversation(workspace_id: str, x_user_id: str | None = Header(None)):
    await get_service().clear_conversation(_owner(x_user_id), workspace_id)
    return {"status": "success", "message": "Conversation cleared."}


@app.get("/workspaces/{workspace_id}/messages/pinned")
async def pinned_messages(workspace_id: str, x_user_id: str | None = Header(None)):
    messages = await get_service().pinned_messages(_owner(x_user_id), workspace_id)
    return {"messages": [message.to_json_dict() for message in messages]}


@app.post("/workspaces/{workspace_id}/messages/{message_id}/pin")
async def toggle_pin(workspace_id: str, message_id: str, x_user_id: str | None = Header(None)):
    message = await get_service().toggle_pin(_owner(x_user_id), workspace_id, message_id)
    return message.to_json_dict()


@app.post("/workspaces/{workspace_id}/messages/{message_id}/favorite")
async def toggle_favorite(workspace_id: str, message_id: str, x_user_id: str | None = Header(None)):
    message = await get_service().toggle_favorite(_owner(x_user_id), workspace_id, message_id)
    return message.to_json_dict()


@app.post("/workspaces/{workspace_id}/messages/{message_id}/reactions")
async def toggle_reaction(
    workspace_id: str,
    message_id: str,
    request: ReactionRequest,
    x_user_id: str | None = Header(None),
):
    message = await get_service().toggle_reaction(_owner(x_user_id), workspace_id, message_id, request.emoji)
    return message.to_json_dict()


@app.post("/workspaces/{workspace_id}/transcript", status_code=201)
async def save_transcript(workspace_id: str, x_user_id: str | None = Header(None)):
    try:
        document = await get_service().save_transcript(_owner(x_user_id), workspace_id)
    except ValueError as exc:
        return _error_response(400, str(exc))
    return document.to_json_dict()


@app.post("/workspaces/{workspace_id}/quiz", status_code=201)
async def generate_quiz(workspace_id: str, request: QuizRequest, x_user_id: str | None = Header(None)):
    try:
        session = await get_service().generate_quiz(
            _owner(x_user_id),
            workspace_id,
            topic=request.topic,
            difficulty=request.difficulty,
            question_count=request.question_count,
        )
    except ValueError as exc:
        return _error_response(400, str(exc))
    return session.to_dict()


@app.post("/quiz/{session_id}/answers")
async def answer_quiz(session_id: str, request: QuizAnswersRequest, x_user_id: str | None = Header(None)):
    try:
        session = get_service().answer_quiz(_owner(x_user_id), session_id, request.answers)
    except ValueError as exc:
        return _error_response(400, str(exc))
    return session.to_dict()


@app.post("/quiz/{session_id}/finish")
async def finish_quiz(session_id: str, x_user_id: str | None = Header(None)):
    service = get_service()
    owner = _owner(x_user_id)
    session = service.get_quiz_session(owner, session_id)
    review = session.to_dict(include_answers=True)
    result = await service.finish_quiz(owner, session_id)
    return {"result": result.to_json_dict(), "session": review}


@app.get("/quiz/history")
async def quiz_history(x_user_id: str | None = Header(None)):
    history = await get_service().quiz_history(_owner(x_user_id))
    return {"history": [result.to_json_dict() for result in history]}


@app.get("/quiz/{session_id}/export")
def export_quiz(session_id: str, with_answers: bool = False, x_user_id: str | None = Header(None)):
    text = get_service().export_quiz(_owner(x_user_id), session_id, with_answers=with_answers)
    return PlainTextResponse(
        text,
        headers={"Content-Disposition": f'attachment; filename="quiz_{session_id}.txt"'},
    )


@app.get("/profile/stats")
async def profile_stats(x_user_id: str | None = Header(None)):
    stats = await get_service().profile_stats(_owner(x_user_id))
    return stats.to_dict()


@app.get("/profile")
async def get_profile(x_user_id: str | None = Header(None)):
    service = get_service()
    owner = _owner(x_user_id)
    profile = await service.get_profile(owner)
    return profile_view(profile, await service.profile_stats(owner))


@app.put("/profile")
async def update_profile(request: ProfileUpdateRequest, x_user_id: str | None = Header(None)):
    service = get_service()
    owner = _owner(x_user_id)
    changes = request.model_dump(by_alias=True, exclude_unset=True)
    try:
        profile = await service.update_profile(owner, changes)
    except ValueError as exc:
        return _error_response(400, str(exc))
    return profile_view(profile, await service.profile_stats(owner))


@app.get("/backup/export")
async def export_backup(x_user_id: str | None = Header(None)):
    payload = await get_service().export_backup(_owner(x_user_id))
    filename = backup.backup_filename(datetime.now(timezone.utc).strftime("%Y-%m-%d"))
    return Response(
        content=payload,
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/backup/import")
async def import_backup(request: Request, x_user_id: str | None = Header(None)):
    raw = await request.body()
    workspaces = await get_service().import_backup(_owner(x_user_id), raw)
    return {
        "status": "success",
        "message": f"Imported {len(workspaces)} workspaces.",
        "workspaces": [workspace.to_json_dict() for workspace in workspaces],
    }


@app.delete("/data")
async def clear_data(x_user_id: str | None = Header(None)):
    await get_service().clear_all(_owner(x_user_id))
    return {"status": "success", "message": "All workspaces deleted."}
