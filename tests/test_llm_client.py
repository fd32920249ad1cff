"""Tests for the generative-language client (mocked HTTP)."""

from unittest.mock import MagicMock

import pytest
import requests

from crm_assistant.conversation.types import ASSISTANT, USER, Message
from crm_assistant.core.llm_client import ChatResult, GenerativeClient, LLMClientError


def _response(payload, status_code=200):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = payload
    resp.text = str(payload)
    return resp


def _reply(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def client(session):
    return GenerativeClient(api_key="k", model="test-model", base_url="https://llm.test/v1beta/", session=session)


def test_generate_text(client, session):
    session.post.return_value = _response(_reply("Merhaba"))

    assert client.generate_text("Soru") == "Merhaba"

    call = session.post.call_args
    assert call.args[0] == "https://llm.test/v1beta/models/test-model:generateContent"
    assert call.kwargs["params"] == {"key": "k"}
    assert call.kwargs["json"]["contents"] == [{"role": "user", "parts": [{"text": "Soru"}]}]


def test_missing_api_key(session):
    client = GenerativeClient(api_key="", session=session)
    with pytest.raises(LLMClientError, match="GEMINI_API_KEY"):
        client.generate_text("Soru")
    session.post.assert_not_called()


def test_error_payload_raises(client, session):
    session.post.return_value = _response({"error": {"message": "quota"}}, status_code=429)
    with pytest.raises(LLMClientError, match="quota"):
        client.generate_text("Soru")


def test_transport_error_raises(client, session):
    session.post.side_effect = requests.Timeout("slow")
    with pytest.raises(LLMClientError, match="HTTP error"):
        client.generate_text("Soru")


def test_empty_reply_raises(client, session):
    session.post.return_value = _response(_reply("   "))
    with pytest.raises(LLMClientError, match="empty reply"):
        client.generate_text("Soru")


def test_no_candidates_raises(client, session):
    session.post.return_value = _response({"candidates": [], "promptFeedback": {"blockReason": "SAFETY"}})
    with pytest.raises(LLMClientError, match="no candidates"):
        client.generate_text("Soru")


@pytest.mark.parametrize(
    "payload",
    [
        {"candidates": ["not a dict"]},
        {"candidates": [{"content": "text"}]},
        {"candidates": [{"content": {"parts": "text"}}]},
    ],
)
def test_malformed_reply_raises(client, session, payload):
    session.post.return_value = _response(payload)
    with pytest.raises(LLMClientError, match="Malformed"):
        client.generate_text("Soru")


def test_default_session_never_retries():
    session = GenerativeClient(api_key="k").session

    assert session.get_adapter("https://").max_retries.total == 0
    assert session.get_adapter("http://").max_retries.total == 0


def test_chat_maps_roles_and_system_prompt(client, session):
    session.post.return_value = _response(_reply("Tamam"))
    history = [
        Message(sender=ASSISTANT, text="Hoş geldiniz"),
        Message(sender=USER, text="Merhaba"),
        Message(sender=ASSISTANT, text="Buyrun"),
        Message(sender=USER, text="Özetle"),
    ]

    result = client.chat(history, "Sistem")

    payload = session.post.call_args.kwargs["json"]
    # Leading assistant turns are dropped
    assert [c["role"] for c in payload["contents"]] == ["user", "model", "user"]
    assert payload["systemInstruction"] == {"parts": [{"text": "Sistem"}]}
    assert result == ChatResult(result="Tamam", raw=_reply("Tamam"))


def test_chat_reports_errors_instead_of_raising(client, session):
    session.post.return_value = _response({"error": {"message": "down"}}, status_code=500)

    result = client.chat([Message(sender=USER, text="Merhaba")], "")

    assert result.result == ""
    assert "down" in result.error
    assert "systemInstruction" not in session.post.call_args.kwargs["json"]
