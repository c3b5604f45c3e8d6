from __future__ import annotations


class DocuChatError(Exception):
    """Base class for errors raised by the DocuChat backend."""


class ExtractionError(DocuChatError):
    def __init__(self, filename: str, cause: BaseException | str):
        self.filename = filename
        self.cause = cause
        super().__init__(f"Could not read file {filename}: {cause}")


class ModelRequestError(DocuChatError):
    """The language model call failed or returned no text."""


class QuizGenerationError(ModelRequestError):
    pass


class QuizFormatError(DocuChatError):
    """The quiz response could not be parsed into the expected schema."""


class BackupFormatError(DocuChatError):
    pass


class StorageError(DocuChatError):
    pass


class NotFoundError(DocuChatError, KeyError):
    kind = "record"

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(record_id)

    def __str__(self) -> str:
        return f"{self.kind.capitalize()} '{self.record_id}' not found."


class WorkspaceNotFoundError(NotFoundError):
    kind = "workspace"


class DocumentNotFoundError(NotFoundError):
    kind = "document"


class MessageNotFoundError(NotFoundError):
    kind = "message"


class QuizSessionNotFoundError(NotFoundError):
    kind = "quiz session"
