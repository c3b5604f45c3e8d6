from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import Any, Iterable, Protocol
from urllib import error, request

OPENAI_RESPONSES_URL = "https://api.openai.com/v1/responses"
GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"
DEFAULT_TIMEOUT_SECONDS = 60.0


@dataclass(frozen=True)
class LlmTextResult:
    status: str
    raw_response: str | None
    warnings: list[str]

    @property
    def ok(self) -> bool:
        return self.status == "success" and bool((self.raw_response or "").strip())

    def error_message(self) -> str:
        if self.warnings:
            return self.warnings[0]
        return "The model returned no text."


class Turn(Protocol):
    role: str
    text: str


def _collect_gemini_text(response_payload: dict[str, Any]) -> str | None:
    candidates = response_payload.get("candidates") or []
    if not candidates:
        return None

    parts = (candidates[0].get("content") or {}).get("parts") or []
    extracted: list[str] = []
    for part in parts:
        text = part.get("text") if isinstance(part, dict) else None
        if isinstance(text, str) and text.strip():
            extracted.append(text.strip())

    if extracted:
        return "\n".join(extracted)
    return None


def _gemini_block_reason(response_payload: dict[str, Any]) -> str | None:
    feedback = response_payload.get("promptFeedback")
    if isinstance(feedback, dict):
        reason = feedback.get("blockReason")
        if isinstance(reason, str) and reason:
            return reason
    return None


def _post_json(
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str],
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> dict[str, Any]:
    body = json.dumps(payload).encode("utf-8")
    req = request.Request(url, data=body, headers=headers, method="POST")
    with request.urlopen(req, timeout=timeout) as response:
        response_body = response.read().decode("utf-8")
    return json.loads(response_body)


def _http_error_warning(provider_name: str, exc: error.HTTPError) -> str:
    response_excerpt = ""
    try:
        response_body = exc.read().decode("utf-8", errors="replace").strip()
    except Exception:
        response_body = ""

    if response_body:
        try:
            parsed = json.loads(response_body)
            if isinstance(parsed, dict):
                error_payload = parsed.get("error")
                if isinstance(error_payload, dict):
                    message = error_payload.get("message")
                    if isinstance(message, str) and message.strip():
                        response_excerpt = message.strip()
        except json.JSONDecodeError:
            response_excerpt = response_body[:200]

    if response_excerpt:
        return f"{provider_name} request failed with HTTP {exc.code}: {response_excerpt}"

    return f"{provider_name} request failed with HTTP {exc.code}."


def _collect_openai_text(content: Any) -> list[str]:
    if not isinstance(content, list):
        return []

    collected: list[str] = []
    for part in content:
        if not isinstance(part, dict):
            continue

        direct_text = part.get("text")
        if isinstance(direct_text, str) and direct_text.strip():
            collected.append(direct_text.strip())
            continue

        value = part.get("value")
        if isinstance(value, str) and value.strip():
            collected.append(value.strip())

    return collected


def _extract_openai_text(response_payload: dict[str, Any]) -> str | None:
    output_text = response_payload.get("output_text")
    if isinstance(output_text, str) and output_text.strip():
        return output_text.strip()

    output = response_payload.get("output")
    if isinstance(output, list):
        extracted: list[str] = []
        for item in output:
            if not isinstance(item, dict):
                continue
            extracted.extend(_collect_openai_text(item.get("content")))

        if extracted:
            return "\n".join(extracted)

    return None


def _detect_image_mime_type(image_bytes: bytes) -> str:
    if image_bytes.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if image_bytes.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if image_bytes.startswith((b"GIF87a", b"GIF89a")):
        return "image/gif"
    if image_bytes.startswith(b"RIFF") and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    if image_bytes.startswith(b"BM"):
        return "image/bmp"
    return "image/png"


def _openai_headers(api_key: str) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {api_key}",
    }


def _gemini_endpoint(model: str, api_key: str) -> str:
    return f"{GEMINI_API_BASE}/{model}:generateContent?key={api_key}"


def _call_openai(
    api_key: str,
    payload: dict[str, Any],
    timeout: float,
    action: str,
    allow_empty: bool = False,
) -> LlmTextResult:
    try:
        response_payload = _post_json(OPENAI_RESPONSES_URL, payload, _openai_headers(api_key), timeout)
    except error.HTTPError as exc:
        return LlmTextResult(status="error", raw_response=None, warnings=[_http_error_warning("OpenAI", exc)])
    except Exception as exc:
        return LlmTextResult(
            status="error",
            raw_response=None,
            warnings=[f"OpenAI {action} request failed before receiving a response: {exc}"],
        )

    extracted_text = _extract_openai_text(response_payload)
    if extracted_text:
        return LlmTextResult(status="success", raw_response=extracted_text, warnings=[])
    if allow_empty and response_payload.get("status") in {None, "completed"}:
        return LlmTextResult(status="success", raw_response="", warnings=[])

    return LlmTextResult(
        status="error",
        raw_response=json.dumps(response_payload),
        warnings=[f"OpenAI {action} response did not contain extractable text content."],
    )


def _call_gemini(
    api_key: str,
    model: str,
    payload: dict[str, Any],
    timeout: float,
    action: str,
    allow_empty: bool = False,
) -> LlmTextResult:
    try:
        response_payload = _post_json(
            _gemini_endpoint(model, api_key),
            payload,
            {"Content-Type": "application/json"},
            timeout,
        )
    except error.HTTPError as exc:
        return LlmTextResult(status="error", raw_response=None, warnings=[_http_error_warning("Gemini", exc)])
    except Exception as exc:
        return LlmTextResult(
            status="error",
            raw_response=None,
            warnings=[f"Gemini {action} request failed before receiving a response: {exc}"],
        )

    extracted_text = _collect_gemini_text(response_payload)
    if extracted_text:
        return LlmTextResult(status="success", raw_response=extracted_text, warnings=[])

    block_reason = _gemini_block_reason(response_payload)
    if block_reason:
        warning = f"Gemini {action} request was blocked: {block_reason}."
    elif allow_empty and response_payload.get("candidates"):
        return LlmTextResult(status="success", raw_response="", warnings=[])
    else:
        warning = f"Gemini {action} response did not contain text content."
    return LlmTextResult(status="error", raw_response=json.dumps(response_payload), warnings=[warning])


def chat_with_openai(
    api_key: str,
    model: str,
    turns: Iterable[Turn],
    system_instruction: str,
    temperature: float,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> LlmTextResult:
    payload = {
        "model": model,
        "instructions": system_instruction,
        "input": [
            {"role": "assistant" if turn.role == "assistant" else "user", "content": turn.text}
            for turn in turns
        ],
        "temperature": temperature,
    }
    return _call_openai(api_key, payload, timeout, "chat")


def chat_with_gemini(
    api_key: str,
    model: str,
    turns: Iterable[Turn],
    system_instruction: str,
    temperature: float,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> LlmTextResult:
    payload = {
        "systemInstruction": {"parts": [{"text": system_instruction}]},
        "contents": [
            {
                "role": "model" if turn.role == "assistant" else "user",
                "parts": [{"text": turn.text}],
            }
            for turn in turns
        ],
        "generationConfig": {"temperature": temperature},
    }
    return _call_gemini(api_key, model, payload, timeout, "chat")


def generate_text_with_openai(
    api_key: str,
    model: str,
    prompt: str,
    temperature: float | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> LlmTextResult:
    payload: dict[str, Any] = {"model": model, "input": prompt}
    if temperature is not None:
        payload["temperature"] = temperature
    return _call_openai(api_key, payload, timeout, "generation")


def generate_text_with_gemini(
    api_key: str,
    model: str,
    prompt: str,
    temperature: float | None = None,
    json_output: bool = False,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> LlmTextResult:
    generation_config: dict[str, Any] = {}
    if temperature is not None:
        generation_config["temperature"] = temperature
    if json_output:
        generation_config["responseMimeType"] = "application/json"

    payload: dict[str, Any] = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
    if generation_config:
        payload["generationConfig"] = generation_config
    return _call_gemini(api_key, model, payload, timeout, "generation")


def describe_image_with_openai(
    api_key: str,
    model: str,
    image_bytes: bytes,
    prompt: str,
    mime_type: str | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> LlmTextResult:
    image_b64 = base64.b64encode(image_bytes).decode("ascii")
    image_mime_type = mime_type or _detect_image_mime_type(image_bytes)
    payload = {
        "model": model,
        "input": [
            {
                "role": "user",
                "content": [
                    {"type": "input_text", "text": prompt},
                    {"type": "input_image", "image_url": f"data:{image_mime_type};base64,{image_b64}"},
                ],
            }
        ],
    }
    return _call_openai(api_key, payload, timeout, "image transcription", allow_empty=True)


def describe_image_with_gemini(
    api_key: str,
    model: str,
    image_bytes: bytes,
    prompt: str,
    mime_type: str | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> LlmTextResult:
    image_b64 = base64.b64encode(image_bytes).decode("ascii")
    image_mime_type = mime_type or _detect_image_mime_type(image_bytes)
    payload = {
        "contents": [
            {
                "parts": [
                    {"inline_data": {"mime_type": image_mime_type, "data": image_b64}},
                    {"text": prompt},
                ]
            }
        ],
    }
    return _call_gemini(api_key, model, payload, timeout, "image transcription", allow_empty=True)
