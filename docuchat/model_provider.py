from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from docuchat.config import DEFAULT_PROVIDER, QUIZ_TEMPERATURE, Settings
from docuchat.context import ChatRequest
from docuchat.llm_provider import (
    DEFAULT_TIMEOUT_SECONDS,
    LlmTextResult,
    chat_with_gemini,
    chat_with_openai,
    describe_image_with_gemini,
    describe_image_with_openai,
    generate_text_with_gemini,
    generate_text_with_openai,
)


class ModelProvider(Protocol):
    name: str

    def chat(self, request: ChatRequest) -> LlmTextResult:
        ...

    def generate(
        self,
        prompt: str,
        *,
        model: str | None = None,
        temperature: float = QUIZ_TEMPERATURE,
        json_output: bool = False,
    ) -> LlmTextResult:
        ...

    def transcribe(self, image_bytes: bytes, mime_type: str | None, prompt: str) -> LlmTextResult:
        ...


def _missing_key_result(provider_label: str, env_name: str) -> LlmTextResult:
    return LlmTextResult(
        status="error",
        raw_response=None,
        warnings=[f"{provider_label} API key is not configured. Set {env_name} on the server."],
    )


@dataclass
class GeminiModelProvider:
    api_key: str
    chat_model: str
    ocr_model: str
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    name: str = "gemini"

    def chat(self, request: ChatRequest) -> LlmTextResult:
        if not self.api_key:
            return _missing_key_result("Gemini", "GEMINI_API_KEY")
        return chat_with_gemini(
            self.api_key,
            request.model or self.chat_model,
            request.turns,
            request.system_instruction,
            request.temperature,
            timeout=self.timeout,
        )

    def generate(
        self,
        prompt: str,
        *,
        model: str | None = None,
        temperature: float = QUIZ_TEMPERATURE,
        json_output: bool = False,
    ) -> LlmTextResult:
        if not self.api_key:
            return _missing_key_result("Gemini", "GEMINI_API_KEY")
        return generate_text_with_gemini(
            self.api_key,
            model or self.chat_model,
            prompt,
            temperature=temperature,
            json_output=json_output,
            timeout=self.timeout,
        )

    def transcribe(self, image_bytes: bytes, mime_type: str | None, prompt: str) -> LlmTextResult:
        if not self.api_key:
            return _missing_key_result("Gemini", "GEMINI_API_KEY")
        return describe_image_with_gemini(
            self.api_key,
            self.ocr_model,
            image_bytes,
            prompt,
            mime_type=mime_type,
            timeout=self.timeout,
        )


@dataclass
class OpenAIModelProvider:
    api_key: str
    chat_model: str
    ocr_model: str
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    name: str = "openai"

    def chat(self, request: ChatRequest) -> LlmTextResult:
        if not self.api_key:
            return _missing_key_result("OpenAI", "OPENAI_API_KEY")
        return chat_with_openai(
            self.api_key,
            request.model or self.chat_model,
            request.turns,
            request.system_instruction,
            request.temperature,
            timeout=self.timeout,
        )

    def generate(
        self,
        prompt: str,
        *,
        model: str | None = None,
        temperature: float = QUIZ_TEMPERATURE,
        json_output: bool = False,
    ) -> LlmTextResult:
        # The Responses API json_object mode only emits objects; quiz output is an array.
        if not self.api_key:
            return _missing_key_result("OpenAI", "OPENAI_API_KEY")
        return generate_text_with_openai(
            self.api_key,
            model or self.chat_model,
            prompt,
            temperature=temperature,
            timeout=self.timeout,
        )

    def transcribe(self, image_bytes: bytes, mime_type: str | None, prompt: str) -> LlmTextResult:
        if not self.api_key:
            return _missing_key_result("OpenAI", "OPENAI_API_KEY")
        return describe_image_with_openai(
            self.api_key,
            self.ocr_model,
            image_bytes,
            prompt,
            mime_type=mime_type,
            timeout=self.timeout,
        )


def list_model_providers() -> list[str]:
    return ["gemini", "openai"]


def get_model_provider(settings: Settings, provider_name: str | None = None) -> ModelProvider:
    selected = (provider_name or settings.llm_provider or DEFAULT_PROVIDER).lower()
    if selected == "chatgpt":
        selected = "openai"
    if selected == "gemini":
        return GeminiModelProvider(
            api_key=settings.api_key_for("gemini"),
            chat_model=settings.chat_model,
            ocr_model=settings.ocr_model,
            timeout=settings.llm_timeout_seconds,
        )
    if selected == "openai":
        return OpenAIModelProvider(
            api_key=settings.api_key_for("openai"),
            chat_model=settings.chat_model,
            ocr_model=settings.ocr_model,
            timeout=settings.llm_timeout_seconds,
        )
    raise ValueError(
        f"Unknown model provider '{selected}'. "
        f"Available providers: {', '.join(list_model_providers())}."
    )
