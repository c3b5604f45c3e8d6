from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Sequence

from pydantic import ValidationError

from docuchat.context import DEFAULT_QUIZ_TOPIC
from docuchat.errors import QuizFormatError
from docuchat.schema_models import QUIZ_QUESTION_LIST_ADAPTER, QuizQuestion, QuizResult, new_id, now_ms

DIFFICULTIES = ("Easy", "Medium", "Hard")
DEFAULT_DIFFICULTY = "Medium"
DEFAULT_QUESTION_COUNT = 5
MIN_QUESTION_COUNT = 1
MAX_QUESTION_COUNT = 20
OPTION_LABELS = "ABCD"

_FENCE_PATTERN = re.compile(r"```(?:json)?", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    return _FENCE_PATTERN.sub("", text or "").strip()


def normalize_topic(topic: str | None) -> str:
    return (topic or "").strip() or DEFAULT_QUIZ_TOPIC


def normalize_difficulty(difficulty: str | None) -> str:
    if not difficulty:
        return DEFAULT_DIFFICULTY
    for allowed in DIFFICULTIES:
        if allowed.lower() == difficulty.strip().lower():
            return allowed
    raise ValueError(f"Difficulty must be one of: {', '.join(DIFFICULTIES)}.")


def validate_question_count(count: int) -> int:
    if not MIN_QUESTION_COUNT <= count <= MAX_QUESTION_COUNT:
        raise ValueError(
            f"Question count must be between {MIN_QUESTION_COUNT} and {MAX_QUESTION_COUNT}."
        )
    return count


def parse_quiz_response(text: str, expected_count: int) -> list[QuizQuestion]:
    """Parse the model's quiz answer into exactly ``expected_count`` questions."""

    cleaned = strip_code_fences(text)
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise QuizFormatError(f"Quiz response is not valid JSON: {exc.msg}.") from exc

    if not isinstance(payload, list):
        raise QuizFormatError("Quiz response must be a JSON array of questions.")

    try:
        questions = QUIZ_QUESTION_LIST_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise QuizFormatError(f"Quiz response does not match the question schema: {exc.error_count()} error(s).") from exc

    if len(questions) != expected_count:
        raise QuizFormatError(
            f"Quiz response contains {len(questions)} questions, expected {expected_count}."
        )
    return questions


@dataclass
class QuizSession:
    workspace_id: str
    topic: str
    difficulty: str
    questions: list[QuizQuestion]
    id: str = field(default_factory=new_id)
    user_answers: list[int | None] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.user_answers:
            self.user_answers = [None] * len(self.questions)

    def _check_answer(self, question_index: int, option_index: int) -> None:
        if not 0 <= question_index < len(self.questions):
            raise ValueError(f"Question index {question_index} is out of range.")
        if not 0 <= option_index < len(self.questions[question_index].options):
            raise ValueError(f"Option index {option_index} is out of range.")

    def record_answer(self, question_index: int, option_index: int) -> None:
        self._check_answer(question_index, option_index)
        self.user_answers[question_index] = option_index

    def record_answers(self, answers: Sequence[int | None]) -> None:
        """Record a full submission. Nothing is written unless every entry is valid."""

        if len(answers) > len(self.questions):
            raise ValueError("More answers than questions were submitted.")
        chosen = [(index, option) for index, option in enumerate(answers) if option is not None]
        for question_index, option_index in chosen:
            self._check_answer(question_index, option_index)
        for question_index, option_index in chosen:
            self.user_answers[question_index] = option_index

    @property
    def score(self) -> int:
        return sum(
            1
            for question, answer in zip(self.questions, self.user_answers)
            if answer == question.correct_index
        )

    @property
    def answered_count(self) -> int:
        return sum(1 for answer in self.user_answers if answer is not None)

    def to_result(self, completed_at: int | None = None) -> QuizResult:
        return QuizResult(
            workspace_id=self.workspace_id,
            topic=self.topic,
            score=self.score,
            total_questions=len(self.questions),
            difficulty=self.difficulty,
            completed_at=completed_at if completed_at is not None else now_ms(),
        )

    def to_dict(self, include_answers: bool = False) -> dict:
        questions = []
        for question in self.questions:
            item = {"question": question.question, "options": list(question.options)}
            if include_answers:
                item["correctIndex"] = question.correct_index
            questions.append(item)
        return {
            "id": self.id,
            "workspaceId": self.workspace_id,
            "topic": self.topic,
            "difficulty": self.difficulty,
            "questions": questions,
            "userAnswers": list(self.user_answers),
            "answeredCount": self.answered_count,
        }


def export_quiz_text(session: QuizSession, with_answers: bool = False, exported_at_ms: int | None = None) -> str:
    stamp = exported_at_ms if exported_at_ms is not None else now_ms()
    date_label = datetime.fromtimestamp(stamp / 1000, tz=timezone.utc).strftime("%Y-%m-%d")
    lines = [
        f"QUIZ: {session.topic}",
        f"Difficulty: {session.difficulty} | Date: {date_label}",
        "",
    ]
    for number, question in enumerate(session.questions, start=1):
        lines.append(f"{number}. {question.question}")
        for label, option in zip(OPTION_LABELS, question.options):
            lines.append(f"   {label}) {option}")
        lines.append("")

    if with_answers:
        lines.append("ANSWER KEY")
        for number, question in enumerate(session.questions, start=1):
            lines.append(f"{number}: {OPTION_LABELS[question.correct_index]}")

    return "\n".join(lines).rstrip() + "\n"
