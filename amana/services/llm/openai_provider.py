from typing import Any, List, Optional

import httpx

from amana.logging_config import get_logger
from amana.services.llm.base import LLMProvider, LLMProviderError, LLMResponse

logger = get_logger("llm.openai")

OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_CHAT_TIMEOUT = 60.0
DEFAULT_AUDIO_TIMEOUT = 30.0


class OpenAIProvider(LLMProvider):
    """Chat completions (JSON mode for intents) and Whisper transcription."""

    def __init__(self, api_key: str, default_model: str = "gpt-5-mini", base_url: str = OPENAI_BASE_URL):
        self.api_key = api_key
        self.default_model = default_model
        self.base_url = base_url.rstrip("/")

    def _post(self, path: str, timeout: float, what: str, **request: Any) -> dict:
        """POST to the API and return the JSON body; non-200 raises LLMProviderError."""
        with httpx.Client(timeout=timeout) as client:
            response = client.post(
                f"{self.base_url}{path}",
                headers={"Authorization": f"Bearer {self.api_key}"},
                **request,
            )
        if response.status_code != 200:
            logger.error(
                f"OpenAI {what} failed",
                extra={"context": {"status": response.status_code, "body": response.text[:500]}},
            )
            raise LLMProviderError(f"OpenAI {what} error: {response.status_code}", response.status_code)
        return response.json()

    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        response_format: Optional[dict] = None,
        timeout_seconds: Optional[float] = None,
    ) -> LLMResponse:
        model = model or self.default_model
        body: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_completion_tokens": max_tokens,
        }
        if response_format:
            body["response_format"] = response_format

        logger.debug(f"OpenAI chat request: model={model}, messages={len(messages)}")
        data = self._post(
            "/chat/completions",
            timeout_seconds if timeout_seconds is not None else DEFAULT_CHAT_TIMEOUT,
            "chat",
            json=body,
        )

        choices = data.get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content") or ""
        return LLMResponse(content=content, model=data.get("model", model), usage=data.get("usage"))

    def transcribe_audio(
        self,
        *,
        audio_bytes: bytes,
        filename: str,
        mime_type: Optional[str] = None,
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> dict:
        if not audio_bytes:
            raise ValueError("audio_bytes is empty")

        # verbose_json carries the detected language
        data = self._post(
            "/audio/transcriptions",
            timeout_seconds if timeout_seconds is not None else DEFAULT_AUDIO_TIMEOUT,
            "transcription",
            files={"file": (filename or "audio.ogg", audio_bytes, mime_type or "application/octet-stream")},
            data={"model": model or "whisper-1", "response_format": "verbose_json", "temperature": "0"},
        )
        return {"text": (data.get("text") or "").strip(), "language": data.get("language")}
