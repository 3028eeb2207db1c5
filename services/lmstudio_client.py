"""Client for the OpenAI-compatible chat endpoint served by LM Studio."""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Dict, Iterable, Optional

import requests

from config.settings import settings

logger = logging.getLogger(__name__)


class LMStudioClientError(RuntimeError):
    """Raised when the LM Studio server cannot produce a usable response."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LMStudioClient:
    """Thin ``requests`` wrapper around ``/v1/chat/completions``."""

    _SAFE_OPTION_KEYS = {
        "temperature",
        "top_p",
        "max_tokens",
        "stop",
    }

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        url = base_url or settings.lmstudio_base_url
        if not url.startswith("http"):
            url = f"http://{url}"
        self.base_url = url.rstrip("/")
        self.timeout = timeout or settings.lmstudio_timeout
        self.api_key = api_key or settings.lmstudio_api_key
        self._session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self._session.post(
                url,
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.HTTPError as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            message = exc.response.text if exc.response is not None else str(exc)
            raise LMStudioClientError(message, status_code=status_code) from exc
        except requests.RequestException as exc:
            raise LMStudioClientError(str(exc)) from exc

        try:
            data = response.json() if response.content else {}
        except ValueError as exc:
            raise LMStudioClientError("LM Studio returned a non-JSON body") from exc
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _message_content(payload: Dict[str, Any]) -> str:
        choices = payload.get("choices") or []
        if choices:
            message = (choices[0] or {}).get("message") or {}
            if isinstance(message, dict) and isinstance(message.get("content"), str):
                return message["content"]
        return ""

    def chat(
        self,
        *,
        model: str,
        messages: Iterable[Dict[str, Any]],
        response_format: Optional[Dict[str, Any]] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Return the assistant message content for ``messages``."""

        payload: Dict[str, Any] = {
            "model": model,
            "messages": list(messages),
            "stream": False,
        }
        for key, value in (options or {}).items():
            if key in self._SAFE_OPTION_KEYS:
                payload[key] = value
        if response_format:
            payload["response_format"] = response_format
        return self._message_content(self._post("/v1/chat/completions", payload))

    def chat_json(
        self,
        *,
        model: str,
        prompt: str,
        options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Send ``prompt`` as a single user turn and decode a JSON object reply."""

        content = self.chat(
            model=model,
            messages=[{"role": "user", "content": prompt}],
            response_format={"type": "json_object"},
            options=options,
        )
        try:
            parsed = json.loads(content or "{}")
        except json.JSONDecodeError as exc:
            raise LMStudioClientError(f"Model reply was not valid JSON: {content[:200]!r}") from exc
        if not isinstance(parsed, dict):
            raise LMStudioClientError("Model reply was not a JSON object")
        return parsed


_CLIENT_LOCK = threading.Lock()
_CLIENT: Optional[LMStudioClient] = None


def get_lmstudio_client() -> LMStudioClient:
    """Return a process-wide LM Studio client."""

    global _CLIENT
    if _CLIENT is None:
        with _CLIENT_LOCK:
            if _CLIENT is None:
                _CLIENT = LMStudioClient()
    return _CLIENT


__all__ = ["LMStudioClient", "LMStudioClientError", "get_lmstudio_client"]
