from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from crm_assistant.config import (
    GEMINI_API_KEY,
    GEMINI_BASE_URL,
    GEMINI_MAX_OUTPUT_TOKENS,
    GEMINI_MODEL,
    GEMINI_TEMPERATURE,
    LLM_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)


class LLMClientError(Exception):
    """Raised when the generative-language backend cannot produce a reply."""


@dataclass
class ChatResult:
    result: str
    raw: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


def _build_session() -> requests.Session:
    """Session for model calls. Requests are sent once and never retried."""
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=Retry(total=0, raise_on_status=False), pool_connections=4, pool_maxsize=4)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def _role_for(sender: str) -> str:
    return "user" if sender == "user" else "model"


class GenerativeClient:
    """
    Thin client for the Gemini generateContent REST endpoint.

    generate_text() raises LLMClientError; chat() reports failures in
    ChatResult.error instead.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        *,
        base_url: Optional[str] = None,
        temperature: float = GEMINI_TEMPERATURE,
        max_output_tokens: int = GEMINI_MAX_OUTPUT_TOKENS,
        timeout_seconds: int = LLM_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = (api_key if api_key is not None else GEMINI_API_KEY).strip()
        self.model = model or GEMINI_MODEL
        self.base_url = (base_url or GEMINI_BASE_URL).rstrip("/")
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout_seconds = timeout_seconds
        self._session = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = _build_session()
        return self._session

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.api_key:
            raise LLMClientError("Missing GEMINI_API_KEY in the environment.")

        url = f"{self.base_url}/models/{self.model}:generateContent"
        try:
            resp = self.session.post(
                url,
                params={"key": self.api_key},
                json=payload,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise LLMClientError(f"HTTP error while calling generateContent: {exc}") from exc

        try:
            data = resp.json()
        except ValueError as exc:
            preview = (resp.text or "")[:200]
            raise LLMClientError(f"Non-JSON response from model (status={resp.status_code}). Preview: {preview}") from exc

        if not isinstance(data, dict):
            raise LLMClientError(f"Unexpected model response type: {type(data)}")

        if resp.status_code >= 400 or "error" in data:
            detail = data.get("error") or data
            raise LLMClientError(f"Model service error (status={resp.status_code}). Detail={detail}")

        return data

    @staticmethod
    def _extract_text(data: Dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            feedback = data.get("promptFeedback")
            raise LLMClientError(f"Model returned no candidates. Feedback={feedback}")

        first = candidates[0] if isinstance(candidates, list) else None
        content = first.get("content") if isinstance(first, dict) else None
        if not isinstance(content, dict):
            raise LLMClientError(f"Malformed model reply: {str(data)[:200]}")

        parts = content.get("parts") or []
        if not isinstance(parts, list):
            raise LLMClientError(f"Malformed model reply: {str(data)[:200]}")
        text = "".join(str(p.get("text", "")) for p in parts if isinstance(p, dict))
        if not text.strip():
            raise LLMClientError("Model returned an empty reply.")
        return text

    def _generation_config(self) -> Dict[str, Any]:
        return {
            "temperature": self.temperature,
            "maxOutputTokens": self.max_output_tokens,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate_text(self, prompt: str) -> str:
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": self._generation_config(),
        }
        data = self._post(payload)
        return self._extract_text(data)

    def chat(self, history: Sequence[Any], system_prompt: str) -> ChatResult:
        """
        Multi-turn call. `history` holds objects with `sender` and `text`
        attributes (conversation Messages) in chronological order.
        """
        contents: List[Dict[str, Any]] = []
        for msg in history:
            text = getattr(msg, "text", "")
            if not text:
                continue
            contents.append({"role": _role_for(getattr(msg, "sender", "user")), "parts": [{"text": text}]})

        # The API expects the conversation to start with a user turn
        while contents and contents[0]["role"] != "user":
            contents.pop(0)

        payload: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": self._generation_config(),
        }
        if system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": system_prompt}]}

        try:
            data = self._post(payload)
            return ChatResult(result=self._extract_text(data), raw=data)
        except LLMClientError as exc:
            logger.warning("Chat call failed: %s", exc)
            return ChatResult(result="", raw=None, error=str(exc))
