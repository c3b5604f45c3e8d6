"""Prompt assembly for document-grounded chat and quiz generation.

Every request carries the full text of the workspace's documents
(context stuffing); nothing is retrieved selectively.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Iterable, Sequence

from docuchat.config import CHAT_TEMPERATURE, QUIZ_TEMPERATURE
from docuchat.schema_models import Document, Message

NO_DOCUMENTS_NOTICE = "No documents uploaded."
NOT_FOUND_REPLY = "Unfortunately, the provided documents do not contain information to answer this question."
DEFAULT_QUIZ_TOPIC = "General"

SYSTEM_INSTRUCTION_TEMPLATE = """You are an intelligent retrieval-augmented assistant.
Your task is to answer the user's questions based EXCLUSIVELY on the documents provided below.

RULES:
1. Use ONLY the information from the "DOCUMENT CONTEXT" section to answer.
2. If the answer is not contained in the documents, reply politely with exactly: "{not_found}"
3. Do not make up facts. Do not use outside knowledge unless the documents confirm it.
4. Answer in the language the user writes in.
5. When quoting, cite the name of the document you are quoting from.

DOCUMENT CONTEXT:
{documents}
"""

QUIZ_PROMPT_TEMPLATE = """Create a multiple-choice quiz based on the provided documents.
Topic: {topic}
Difficulty: {difficulty}
Number of questions: {count}

Format requirements:
Return ONLY a valid JSON array of objects, without markdown formatting (no ```json fences).
The array must contain exactly {count} objects, each with this structure:
{{
  "question": "Question text",
  "options": ["Option A", "Option B", "Option C", "Option D"],
  "correctIndex": 0
}}
"correctIndex" is the zero-based index (0-3) of the correct option. Every question has exactly four options.

DOCUMENT CONTEXT:
{documents}
"""


@dataclass(frozen=True)
class ChatTurn:
    role: str
    text: str


@dataclass(frozen=True)
class ChatRequest:
    model: str
    system_instruction: str
    turns: tuple[ChatTurn, ...]
    temperature: float = CHAT_TEMPERATURE

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class PromptRequest:
    model: str
    prompt: str
    temperature: float = QUIZ_TEMPERATURE
    json_output: bool = True


def render_document(document: Document) -> str:
    return f"--- DOCUMENT: {document.name} ---\n{document.content}\n--- END DOCUMENT ---"


def build_documents_block(documents: Sequence[Document]) -> str:
    if not documents:
        return NO_DOCUMENTS_NOTICE
    return "\n".join(f"{render_document(document)}\n" for document in documents)


def build_system_instruction(documents: Sequence[Document]) -> str:
    return SYSTEM_INSTRUCTION_TEMPLATE.format(
        not_found=NOT_FOUND_REPLY,
        documents=build_documents_block(documents),
    )


def history_turns(history: Iterable[Message]) -> tuple[ChatTurn, ...]:
    ordered = sorted(enumerate(history), key=lambda pair: (pair[1].timestamp, pair[0]))
    return tuple(ChatTurn(role=message.role, text=message.text) for _, message in ordered)


def build_chat_request(
    documents: Sequence[Document],
    history: Iterable[Message],
    utterance: str,
    model: str,
    temperature: float = CHAT_TEMPERATURE,
) -> ChatRequest:
    turns = history_turns(history) + (ChatTurn(role="user", text=utterance),)
    return ChatRequest(
        model=model,
        system_instruction=build_system_instruction(documents),
        turns=turns,
        temperature=temperature,
    )


def build_quiz_prompt(
    documents: Sequence[Document],
    topic: str,
    difficulty: str,
    question_count: int,
) -> str:
    if not documents:
        raise ValueError("No documents available to build a quiz from.")
    return QUIZ_PROMPT_TEMPLATE.format(
        topic=(topic or "").strip() or DEFAULT_QUIZ_TOPIC,
        difficulty=difficulty,
        count=question_count,
        documents=build_documents_block(documents),
    )


def build_quiz_request(
    documents: Sequence[Document],
    topic: str,
    difficulty: str,
    question_count: int,
    model: str,
) -> PromptRequest:
    return PromptRequest(
        model=model,
        prompt=build_quiz_prompt(documents, topic, difficulty, question_count),
    )
