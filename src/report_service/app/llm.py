"""Report generation gateway: prompt, OpenAI transport, and payload recovery.

The processor only sees `ReportGenerator.generate(text) -> ReportPayload`.
Everything that can go wrong on the way (missing key, HTTP failure, empty
completion) surfaces as GenerationError.
"""

from __future__ import annotations

import http.client
import json
import logging
import re
import time
from typing import Any, Protocol
from urllib import error, request

from pydantic import ValidationError

from .errors import GenerationError
from .models import ReportPayload

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an analyst. Read the user's text and produce a short structured report. "
    "You MUST return ONLY a valid JSON object with this exact structure:\n"
    "{\n"
    '  "summary": "A brief summary of the text",\n'
    '  "key_points": ["Point 1", "Point 2", "Point 3"],\n'
    '  "confidence_score": 0.75\n'
    "}\n"
    "Do NOT wrap it in markdown code blocks. Do NOT add any explanation."
)

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*|\s*```$")
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


class LLMAdapter(Protocol):
    """Interface for plain-text LLM completions."""

    def generate_text(self, *, system_prompt: str, user_prompt: str, timeout_s: float) -> str: ...


class ReportGenerator(Protocol):
    def generate(self, user_input: str) -> ReportPayload: ...


class OpenAIChatCompletionsAdapter:
    """Small OpenAI adapter using the chat completions REST API."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gpt-4o",
        base_url: str = "https://api.openai.com/v1",
        max_retries: int = 0,
        backoff_s: float = 0.2,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.max_retries = max(0, max_retries)
        self.backoff_s = max(0.0, backoff_s)

    def generate_text(self, *, system_prompt: str, user_prompt: str, timeout_s: float) -> str:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "response_format": {"type": "json_object"},
        }
        response_json = self._request_with_retry(payload, timeout_s=timeout_s)
        return self._extract_content(response_json)

    def _request_with_retry(self, payload: dict[str, Any], timeout_s: float) -> Any:
        last_error: Exception | None = None
        for attempt in range(self.max_retries + 1):
            try:
                return self._request(payload, timeout_s=timeout_s)
            # URLError and TimeoutError are OSError subclasses.
            except (OSError, http.client.HTTPException, ValueError) as exc:
                last_error = exc
                logger.warning(
                    "OpenAI request failed attempt=%d/%d model=%s reason=%s",
                    attempt + 1,
                    self.max_retries + 1,
                    self.model,
                    exc,
                )
                if attempt < self.max_retries and self.backoff_s > 0:
                    time.sleep(self.backoff_s)
        if last_error is None:
            raise GenerationError("LLM request failed with unknown error")
        raise GenerationError(f"OpenAI request failed: {last_error}") from last_error

    def _request(self, payload: dict[str, Any], timeout_s: float) -> Any:
        url = f"{self.base_url}/chat/completions"
        raw_payload = json.dumps(payload).encode("utf-8")
        req = request.Request(
            url=url,
            data=raw_payload,
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        try:
            with request.urlopen(req, timeout=timeout_s) as response:
                body = response.read().decode("utf-8")
        except error.HTTPError as exc:
            raw_error = exc.read().decode("utf-8", errors="replace")
            raise error.URLError(f"HTTP {exc.code}: {raw_error}") from exc
        return json.loads(body)

    @staticmethod
    def _extract_content(response_json: Any) -> str:
        if not isinstance(response_json, dict):
            raise GenerationError("OpenAI response was not a JSON object")
        choices = response_json.get("choices", [])
        if not isinstance(choices, list) or not choices:
            raise GenerationError("OpenAI response did not contain choices")
        if not isinstance(choices[0], dict):
            raise GenerationError("OpenAI response choice was not a JSON object")

        message = choices[0].get("message", {})
        if not isinstance(message, dict):
            raise GenerationError("OpenAI response message was not a JSON object")
        content = message.get("content", "")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            text_segments: list[str] = []
            for item in content:
                if isinstance(item, dict):
                    text = item.get("text")
                    if isinstance(text, str):
                        text_segments.append(text)
            return "".join(text_segments)
        raise GenerationError("OpenAI response content could not be parsed as text")


class LLMReportGenerator:
    """Turn user text into a ReportPayload through an LLMAdapter."""

    def __init__(self, adapter: LLMAdapter | None, *, timeout_s: float = 60.0) -> None:
        self.adapter = adapter
        self.timeout_s = timeout_s

    def generate(self, user_input: str) -> ReportPayload:
        if self.adapter is None:
            raise GenerationError("OpenAI API key is not configured")
        raw = self.adapter.generate_text(
            system_prompt=SYSTEM_PROMPT,
            user_prompt=f"Text to analyze:\n{user_input}",
            timeout_s=self.timeout_s,
        )
        return parse_report_payload(raw)


def parse_report_payload(raw: str | None) -> ReportPayload:
    """Validate raw model output, falling back to wrapping the text as the summary.

    Only output with no text at all is a hard failure.
    """
    text = _strip_fences((raw or "").strip())
    if not text:
        raise GenerationError("LLM returned no text")

    candidate = _parse_json_object(text)
    if candidate is not None:
        try:
            return ReportPayload.model_validate(candidate)
        except ValidationError as exc:
            logger.info("report_payload event=invalid_structure errors=%d", exc.error_count())

    logger.info("report_payload event=fallback chars=%d", len(text))
    return ReportPayload(summary=text)


def _strip_fences(text: str) -> str:
    if text.startswith("```"):
        return _FENCE_RE.sub("", text).strip()
    return text


def _parse_json_object(text: str) -> dict[str, Any] | None:
    """Parse `text`, or the first {...} block inside it, as a JSON object."""
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        match = _OBJECT_RE.search(text)
        if match is None:
            return None
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            return None
    if isinstance(parsed, dict):
        return parsed
    return None


def build_report_generator(
    *,
    api_key: str,
    model: str,
    base_url: str,
    timeout_s: float,
    max_retries: int,
) -> LLMReportGenerator:
    """Build the generator; without an API key every generate() call fails cleanly."""
    adapter: LLMAdapter | None = None
    if api_key:
        adapter = OpenAIChatCompletionsAdapter(
            api_key=api_key,
            model=model,
            base_url=base_url,
            max_retries=max_retries,
        )
    else:
        logger.warning("OPENAI_API_KEY is not set; report tasks will fail until it is configured")
    return LLMReportGenerator(adapter, timeout_s=timeout_s)
