from __future__ import annotations

import logging
from typing import Any

import requests

from .config import env_or_config, resolve_openai_api_key
from .errors import ConfigError, ErrorKind
from .models import CompletionErr, CompletionOk, CompletionParams, CompletionRequest, CompletionResult

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"

CLASSIFICATION_PARAMS = CompletionParams(temperature=0.3, max_tokens=100)
EXTRACTION_PARAMS = CompletionParams(temperature=0.3, max_tokens=400)
CLASSIFICATION_TIMEOUT = 30.0
EXTRACTION_TIMEOUT = 45.0


class CompletionClient:
    """Single-shot chat-completion calls. Never retries; callers decide."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        session: requests.Session | None = None,
    ) -> None:
        if not str(api_key or "").strip():
            raise ConfigError("Completion API key is empty.")
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.session = session or requests.Session()
        self.headers = {
            "Authorization": f"Bearer {api_key.strip()}",
            "Content-Type": "application/json",
        }

    @classmethod
    def from_config(cls, session: requests.Session | None = None) -> "CompletionClient":
        return cls(
            resolve_openai_api_key(),
            base_url=str(env_or_config("OPENAI_BASE_URL", "completion.base_url", DEFAULT_BASE_URL)),
            model=str(env_or_config("OPENAI_MODEL", "completion.model", DEFAULT_MODEL)),
            session=session,
        )

    def build_payload(self, request: CompletionRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "temperature": request.params.temperature,
            "messages": [{"role": "user", "content": request.prompt}],
        }
        if request.params.max_tokens is not None:
            payload["max_tokens"] = request.params.max_tokens
        return payload

    def complete(
        self,
        prompt: str,
        params: CompletionParams | None = None,
        *,
        timeout: float = CLASSIFICATION_TIMEOUT,
    ) -> CompletionResult:
        request = CompletionRequest(prompt=prompt, params=params or CLASSIFICATION_PARAMS)
        try:
            response = self.session.post(
                f"{self.base_url}/chat/completions",
                headers=self.headers,
                json=self.build_payload(request),
                timeout=timeout,
            )
        except requests.RequestException as exc:
            logger.warning("completion request failed: %s", exc)
            return CompletionErr(ErrorKind.TRANSPORT, f"Completion request failed: {exc}")
        return self.decode_response(response)

    @staticmethod
    def decode_response(response: requests.Response) -> CompletionResult:
        try:
            data = response.json() if response.content else None
        except ValueError:
            data = None

        if isinstance(data, dict) and data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            logger.warning("completion service error (HTTP %s): %s", response.status_code, message)
            return CompletionErr(ErrorKind.UPSTREAM, str(message or "Unknown completion service error."))

        if not 200 <= response.status_code < 300:
            return CompletionErr(ErrorKind.UPSTREAM, f"Completion service returned HTTP {response.status_code}.")

        if not isinstance(data, dict):
            return CompletionErr(ErrorKind.UPSTREAM, "Completion service returned an empty or undecodable body.")

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            return CompletionErr(ErrorKind.UPSTREAM, "Completion response has no message content.")
        if not isinstance(content, str):
            return CompletionErr(ErrorKind.UPSTREAM, "Completion response has no message content.")
        return CompletionOk(content.strip())
