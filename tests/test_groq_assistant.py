"""
Tests para bot/groq_assistant.py — Proveedor de IA con Groq.

El cliente de Groq se reemplaza por un MagicMock.
"""

import json
from unittest.mock import MagicMock

import groq
import httpx
import pytest

from bot.ai_client import AssistantError, is_fallback
from bot.groq_assistant import GroqAssistant

VALID = {
    "response": {"text": "Tenemos freidoras de aire 🍟"},
    "actions": [{"command": "CONSULT_CATALOG", "parameters": {"limit": 5}}],
    "session_data": {"contexto": "catálogo"},
}

_REQUEST = httpx.Request("POST", "https://api.groq.com/openai/v1/chat/completions")


def _completion(content: str):
    completion = MagicMock()
    completion.choices = [MagicMock()]
    completion.choices[0].message.content = content
    return completion


@pytest.fixture
def groq_client():
    return MagicMock()


@pytest.fixture
def assistant(groq_client):
    return GroqAssistant(api_key="test-key", client=groq_client, sleep=MagicMock())


class TestParsing:
    def test_plain_json(self, assistant, groq_client):
        groq_client.chat.completions.create.return_value = _completion(json.dumps(VALID))
        result = assistant.send_message("quiero ver productos", 1001)
        assert result["actions"][0]["command"] == "CONSULT_CATALOG"
        assert not is_fallback(result)

    def test_markdown_fenced_json(self, assistant, groq_client):
        content = f"```json\n{json.dumps(VALID)}\n```"
        groq_client.chat.completions.create.return_value = _completion(content)
        result = assistant.send_message("hola", 1001)
        assert result["session_data"] == {"contexto": "catálogo"}

    def test_non_json_becomes_fallback(self, assistant, groq_client):
        groq_client.chat.completions.create.return_value = _completion("Hola, soy Max")
        result = assistant.send_message("hola", 1001)
        assert result["session_data"]["fallback_reason"] == "invalid_response"
        # invalid_response no se reintenta
        assert groq_client.chat.completions.create.call_count == 1

    def test_parse_error_raises_assistant_error(self, assistant):
        with pytest.raises(AssistantError):
            assistant._parse_response("no json")


class TestPrompt:
    def test_context_includes_user_and_session(self, assistant, groq_client):
        groq_client.chat.completions.create.return_value = _completion(json.dumps(VALID))
        assistant.send_message("¿tienen Oster?", 1001, {"contexto": "previo"})

        kwargs = groq_client.chat.completions.create.call_args.kwargs
        system, user = kwargs["messages"]
        assert system["role"] == "system"
        assert "END_CONVERSATION" in system["content"]
        assert "1001" in user["content"]
        assert "¿tienen Oster?" in user["content"]
        assert "previo" in user["content"]


class TestErrors:
    def test_timeout_retried_then_fallback(self, assistant, groq_client):
        groq_client.chat.completions.create.side_effect = groq.APITimeoutError(request=_REQUEST)
        result = assistant.send_message("hola", 1001)
        assert groq_client.chat.completions.create.call_count == 3
        assert result["session_data"]["fallback_reason"] == "timeout"

    def test_rate_limit_retried_then_succeeds(self, assistant, groq_client):
        rate_limited = groq.APIStatusError(
            "rate limit", response=httpx.Response(429, request=_REQUEST), body=None
        )
        groq_client.chat.completions.create.side_effect = [
            rate_limited,
            _completion(json.dumps(VALID)),
        ]
        result = assistant.send_message("hola", 1001)
        assert not is_fallback(result)

    def test_auth_error_not_retried(self, assistant, groq_client):
        groq_client.chat.completions.create.side_effect = groq.APIStatusError(
            "invalid api key", response=httpx.Response(401, request=_REQUEST), body=None
        )
        result = assistant.send_message("hola", 1001)
        assert groq_client.chat.completions.create.call_count == 1
        assert result["session_data"]["fallback_reason"] == "auth"
