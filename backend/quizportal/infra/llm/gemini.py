from __future__ import annotations

import json
import logging
import re
import time
from typing import Any
from urllib import error as urlerror
from urllib import parse, request

from quizportal.infra.ports.llm import LLMPort

logger = logging.getLogger(__name__)

_GOOGLE_AI_BASE = "https://generativelanguage.googleapis.com/v1beta"
_TYPE_MAP = {
    "object": "OBJECT",
    "array": "ARRAY",
    "string": "STRING",
    "number": "NUMBER",
    "integer": "INTEGER",
    "boolean": "BOOLEAN",
}
_FENCED_JSON = (
    re.compile(r"```json\s*([\s\S]*?)\s*```"),
    re.compile(r"```\s*([\s\S]*?)\s*```"),
)


def _to_gemini_response_schema(node: object) -> dict:
    if not isinstance(node, dict):
        return {}

    out: dict[str, object] = {}
    type_value = node.get("type")
    if isinstance(type_value, str) and type_value.lower() in _TYPE_MAP:
        out["type"] = _TYPE_MAP[type_value.lower()]
    for key in ("description", "enum", "minItems", "maxItems"):
        if key in node:
            out[key] = node[key]
    if isinstance(node.get("required"), list):
        out["required"] = [item for item in node["required"] if isinstance(item, str)]

    properties = node.get("properties")
    if isinstance(properties, dict):
        out["properties"] = {
            key: _to_gemini_response_schema(value)
            for key, value in properties.items()
            if isinstance(key, str)
        }

    items = node.get("items")
    if isinstance(items, dict):
        out["items"] = _to_gemini_response_schema(items)

    return out


def parse_json_text(text: str) -> Any:
    """Parse model output, falling back to the first fenced code block."""
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        for pattern in _FENCED_JSON:
            match = pattern.search(text)
            if match:
                return json.loads(match.group(1))
        raise RuntimeError(f"Failed to parse model response as JSON: {exc}") from exc


def _candidate_text(response: dict[str, Any]) -> str:
    candidates = response.get("candidates") or []
    if not candidates:
        feedback = response.get("promptFeedback") or {}
        reason = feedback.get("blockReason")
        raise RuntimeError(f"Gemini returned no candidates{f' (blocked: {reason})' if reason else ''}")
    parts = (candidates[0].get("content") or {}).get("parts") or []
    texts = [part.get("text") for part in parts if isinstance(part.get("text"), str)]
    text = "".join(texts).strip()
    if not text:
        raise RuntimeError("Gemini candidate carries no text part")
    return text


class GeminiLLM(LLMPort):
    """Question generation through the Google AI ``generateContent`` endpoint."""

    provider_name = "gemini"
    retryable_status = frozenset({408, 429, 500, 502, 503, 504})

    def __init__(
        self,
        *,
        api_key: str,
        model_name: str,
        timeout_seconds: int = 90,
        max_retries: int = 1,
        temperature: float = 0.7,
    ):
        self.api_key = api_key
        self.model_name = model_name
        self.timeout_seconds = max(3, int(timeout_seconds))
        self.max_retries = max(0, int(max_retries))
        self.temperature = temperature

    @staticmethod
    def _backoff(attempt: int) -> None:
        time.sleep(min(6.0, 1.2 * (attempt + 1)))

    @staticmethod
    def _timed_out(exc: Exception) -> bool:
        reason = getattr(exc, "reason", None)
        return isinstance(exc, TimeoutError) or isinstance(reason, TimeoutError) or "timed out" in str(reason or exc).lower()

    @staticmethod
    def _error_message(raw: str, status_code: int) -> str:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        message = None
        if isinstance(parsed, dict) and isinstance(parsed.get("error"), dict):
            message = parsed["error"].get("message")
        return f"Gemini HTTP {status_code}: {message or raw or 'no body'}"

    def _endpoint(self, model: str | None) -> str:
        name = parse.quote(model or self.model_name)
        return f"{_GOOGLE_AI_BASE}/models/{name}:generateContent?key={parse.quote(self.api_key)}"

    def generate_structured(
        self,
        *,
        prompt: str,
        schema: dict,
        system_prompt: str | None = None,
        model: str | None = None,
    ) -> Any:
        body = {
            "systemInstruction": {"parts": [{"text": (system_prompt or "Return strict JSON only.")[:6000]}]},
            "contents": [{"role": "user", "parts": [{"text": prompt[:12000]}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "topK": 40,
                "topP": 0.95,
                "maxOutputTokens": 8192,
                "responseMimeType": "application/json",
                "responseSchema": _to_gemini_response_schema(schema),
            },
        }
        response = self._post(self._endpoint(model), body)
        return parse_json_text(_candidate_text(response))

    def _post(self, url: str, body: dict[str, Any]) -> dict[str, Any]:
        data = json.dumps(body).encode("utf-8")
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            last = attempt == attempts - 1
            req = request.Request(url=url, method="POST", data=data, headers={"Content-Type": "application/json"})
            try:
                with request.urlopen(req, timeout=self.timeout_seconds) as resp:
                    return json.loads(resp.read().decode("utf-8"))
            except urlerror.HTTPError as exc:
                detail = exc.read().decode("utf-8", errors="replace")
                if exc.code in self.retryable_status and not last:
                    logger.warning("Gemini HTTP %s, retrying (%d/%d)", exc.code, attempt + 1, attempts)
                    self._backoff(attempt)
                    continue
                raise RuntimeError(self._error_message(detail, exc.code)) from exc
            except (urlerror.URLError, TimeoutError) as exc:
                if self._timed_out(exc) and not last:
                    logger.warning("Gemini request timed out, retrying (%d/%d)", attempt + 1, attempts)
                    self._backoff(attempt)
                    continue
                if self._timed_out(exc):
                    raise RuntimeError(
                        f"Gemini timed out after {attempts} attempt(s) of {self.timeout_seconds}s"
                    ) from exc
                raise RuntimeError(f"Gemini connection error: {exc}") from exc
        raise RuntimeError("Gemini request was never attempted")
