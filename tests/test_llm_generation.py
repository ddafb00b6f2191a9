from unittest.mock import MagicMock

import pytest
import requests

from diagramloop import llm_client
from diagramloop.constraints import DEFAULT_DIAGRAM_CONSTRAINTS
from diagramloop.errors import GenerationFailure
from diagramloop.llm_client import LLMArtifactGenerator
from diagramloop.models import ConversationTurn, GenerationRequest


REQUEST = GenerationRequest(instruction="Draw the checkout flow as boxes and arrows")
DOC = "<!DOCTYPE html><html><head></head><body><main>Flow</main></body></html>"


def _openrouter_reply(text, status=200):
    resp = MagicMock()
    resp.status_code = status
    resp.text = "upstream said no"
    resp.json.return_value = {"choices": [{"message": {"content": text}}], "usage": {"total_tokens": 42}}
    return resp


@pytest.fixture
def openrouter(monkeypatch):
    monkeypatch.setattr(llm_client, "LLM_PROVIDER", "")
    monkeypatch.setattr(llm_client, "OPENROUTER_API_KEY", "fake-key")
    monkeypatch.setattr(llm_client, "GEMINI_API_KEY", "")
    post = MagicMock(return_value=_openrouter_reply(f"Sure! Here it is:\n```html\n{DOC}\n```\nEnjoy."))
    monkeypatch.setattr(llm_client.requests, "post", post)
    return post


def test_status_reports_active_provider(monkeypatch):
    monkeypatch.setattr(llm_client, "LLM_PROVIDER", "")
    monkeypatch.setattr(llm_client, "OPENROUTER_API_KEY", "")
    monkeypatch.setattr(llm_client, "GEMINI_API_KEY", "")
    assert llm_client.status() == {"provider": None, "model": None, "has_token": False}
    monkeypatch.setattr(llm_client, "GEMINI_API_KEY", "g")
    assert llm_client.status()["provider"] == "gemini"
    monkeypatch.setattr(llm_client, "OPENROUTER_API_KEY", "o")
    assert llm_client.status()["provider"] == "openrouter"
    monkeypatch.setattr(llm_client, "LLM_PROVIDER", "gemini")
    assert llm_client.status()["provider"] == "gemini"


def test_generate_extracts_markup_from_fenced_reply(openrouter):
    out = LLMArtifactGenerator().generate(REQUEST, DEFAULT_DIAGRAM_CONSTRAINTS)
    assert out == DOC
    body = openrouter.call_args.kwargs["json"]
    roles = [m["role"] for m in body["messages"]]
    assert roles == ["system", "user"]
    assert "https://cdn.tailwindcss.com" in body["messages"][0]["content"]
    assert body["messages"][1]["content"].startswith(REQUEST.instruction)
    assert openrouter.call_args.kwargs["timeout"] == llm_client.LLM_TIMEOUT_SECS


def test_repair_call_replays_candidate_and_feedback(openrouter):
    req = GenerationRequest(
        instruction=REQUEST.instruction,
        conversation_context=(ConversationTurn(role="user", content="earlier ask"), ConversationTurn(role="assistant", content="earlier answer")),
    )
    LLMArtifactGenerator().generate(req, DEFAULT_DIAGRAM_CONSTRAINTS, "<div>old</div>", "1. [structural] Missing <head>")
    messages = openrouter.call_args.kwargs["json"]["messages"]
    assert [m["role"] for m in messages] == ["system", "user", "assistant", "user", "assistant", "user"]
    assert messages[4]["content"] == "```html\n<div>old</div>\n```"
    assert "Missing <head>" in messages[5]["content"]
    assert REQUEST.instruction in messages[5]["content"]


@pytest.mark.parametrize(
    "error",
    [requests.Timeout("slow"), requests.ConnectionError("refused")],
)
def test_transport_errors_raise_generation_failure(monkeypatch, openrouter, error):
    monkeypatch.setattr(llm_client.requests, "post", MagicMock(side_effect=error))
    with pytest.raises(GenerationFailure):
        LLMArtifactGenerator().generate(REQUEST, DEFAULT_DIAGRAM_CONSTRAINTS)


def test_non_200_raises_generation_failure(monkeypatch, openrouter):
    monkeypatch.setattr(llm_client.requests, "post", MagicMock(return_value=_openrouter_reply(DOC, status=429)))
    with pytest.raises(GenerationFailure) as exc:
        LLMArtifactGenerator().generate(REQUEST, DEFAULT_DIAGRAM_CONSTRAINTS)
    assert "429" in str(exc.value)


def test_reply_without_markup_raises_generation_failure(monkeypatch, openrouter):
    monkeypatch.setattr(llm_client.requests, "post", MagicMock(return_value=_openrouter_reply("I cannot help with that.")))
    with pytest.raises(GenerationFailure):
        LLMArtifactGenerator().generate(REQUEST, DEFAULT_DIAGRAM_CONSTRAINTS)


def test_no_provider_raises_generation_failure(monkeypatch):
    monkeypatch.setattr(llm_client, "LLM_PROVIDER", "")
    monkeypatch.setattr(llm_client, "OPENROUTER_API_KEY", "")
    monkeypatch.setattr(llm_client, "GEMINI_API_KEY", "")
    gen = LLMArtifactGenerator()
    assert gen.available is False
    with pytest.raises(GenerationFailure):
        gen.generate(REQUEST, DEFAULT_DIAGRAM_CONSTRAINTS)


def test_gemini_path_maps_roles_and_system_instruction(monkeypatch):
    monkeypatch.setattr(llm_client, "GEMINI_API_KEY", "g-key")
    resp = MagicMock(status_code=200)
    resp.json.return_value = {"candidates": [{"content": {"parts": [{"text": f"```html\n{DOC}\n```"}]}}]}
    post = MagicMock(return_value=resp)
    monkeypatch.setattr(llm_client.requests, "post", post)

    out = LLMArtifactGenerator(provider="gemini").generate(REQUEST, DEFAULT_DIAGRAM_CONSTRAINTS, "<div>old</div>", "fix it")
    assert out == DOC
    body = post.call_args.kwargs["json"]
    assert "systemInstruction" in body
    assert [c["role"] for c in body["contents"]] == ["user", "model", "user"]
    assert post.call_args.kwargs["params"] == {"key": "g-key"}


def test_extract_gemini_text_skips_empty_parts():
    payload = {"candidates": [{"content": {"parts": [{"text": "  "}, {"text": "hello"}]}}]}
    assert llm_client.extract_gemini_text(payload) == "hello"
    assert llm_client.extract_gemini_text({"candidates": []}) is None
    assert llm_client.extract_gemini_text("nope") is None


def test_malformed_gemini_content_is_a_generation_failure(monkeypatch):
    assert llm_client.extract_gemini_text({"candidates": [{"content": []}]}) is None

    monkeypatch.setattr(llm_client, "GEMINI_API_KEY", "g-key")
    resp = MagicMock(status_code=200, text="{}")
    resp.json.return_value = {"candidates": [{"content": ["not", "a", "dict"]}]}
    monkeypatch.setattr(llm_client.requests, "post", MagicMock(return_value=resp))
    with pytest.raises(GenerationFailure):
        LLMArtifactGenerator(provider="gemini").generate(REQUEST, DEFAULT_DIAGRAM_CONSTRAINTS)
