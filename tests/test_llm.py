from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Dict, List

import pytest

from conceptmatch.config import Settings
from conceptmatch.llm import ChatLLMClient, LLMUnavailableError, parse_json_response


class _StubResponse:
    def __init__(self, payload: Dict[str, Any]) -> None:
        self._payload = payload

    def raise_for_status(self) -> None:
        return None

    def json(self) -> Dict[str, Any]:
        return self._payload


class _StubOpenAIResponses:
    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []

    def create(self, *, model: str, input: List[Dict[str, str]]) -> Any:
        self.calls.append({"model": model, "input": input})
        return SimpleNamespace(output=[SimpleNamespace(type="output_text", text=" Edge AI ")])


class _StubOpenAIClient:
    instances: List["_StubOpenAIClient"] = []

    def __init__(self, api_key: str) -> None:
        self.api_key = api_key
        self.responses = _StubOpenAIResponses()
        _StubOpenAIClient.instances.append(self)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ('{"parent": "it.ai"}', {"parent": "it.ai"}),
        ('Here you go: {"label": "X"} hope it helps', {"label": "X"}),
        ('```json\n["a", "b"]\n```', ["a", "b"]),
        ("not json at all", None),
        ("", None),
    ],
)
def test_parse_json_response(raw: str, expected: Any) -> None:
    assert parse_json_response(raw) == expected


def test_disabled_backend_raises() -> None:
    client = ChatLLMClient(Settings(chat_backend="none"))

    assert not client.enabled
    assert client.disable_reason == "chat-backend-disabled"
    with pytest.raises(LLMUnavailableError):
        client.generate("hello")


def test_openai_backend_requires_api_key() -> None:
    client = ChatLLMClient(Settings(chat_backend="openai", openai_api_key=None))

    assert not client.enabled
    assert client.disable_reason == "missing-openai-key"


def test_openai_backend_invokes_responses_api(monkeypatch: pytest.MonkeyPatch) -> None:
    _StubOpenAIClient.instances.clear()
    monkeypatch.setattr("conceptmatch.llm.OpenAI", _StubOpenAIClient)

    client = ChatLLMClient(Settings(chat_backend="openai", openai_api_key="sk-test", openai_chat_model="mini"))
    response = client.generate("Suggest a parent")

    assert client.backend == "openai"
    assert response.text == "Edge AI"
    assert response.backend == "openai"
    stub = _StubOpenAIClient.instances[0]
    assert stub.api_key == "sk-test"
    call = stub.responses.calls[0]
    assert call["model"] == "mini"
    assert call["input"][0]["role"] == "system"
    assert call["input"][1] == {"role": "user", "content": "Suggest a parent"}


def test_vllm_backend_posts_chat_completion(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: Dict[str, Any] = {}

    def fake_post(url: str, *, json: Dict[str, Any], headers: Dict[str, str], timeout: float) -> _StubResponse:
        captured["url"] = url
        captured["json"] = json
        captured["headers"] = headers
        captured["timeout"] = timeout
        return _StubResponse({"choices": [{"message": {"content": "Hello world"}}]})

    monkeypatch.setattr("conceptmatch.llm.httpx.post", fake_post)

    settings = Settings(
        chat_backend="vllm",
        vllm_base_url="http://localhost:8000/v1/",
        vllm_model="mock-chat",
        vllm_api_key="secret",
        vllm_request_timeout=12.5,
    )
    client = ChatLLMClient(settings, system_prompt="Be brief.")

    response = client.generate("Hi?")

    assert response.text == "Hello world"
    assert captured["url"] == "http://localhost:8000/v1/chat/completions"
    assert captured["json"]["model"] == "mock-chat"
    assert captured["json"]["stream"] is False
    assert captured["json"]["messages"][0] == {"role": "system", "content": "Be brief."}
    assert captured["json"]["messages"][1]["content"] == "Hi?"
    assert captured["headers"]["Authorization"] == "Bearer secret"
    assert captured["timeout"] == pytest.approx(12.5)


def test_ollama_backend_posts_chat(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: Dict[str, Any] = {}

    def fake_post(url: str, *, json: Dict[str, Any], timeout: float) -> _StubResponse:
        captured["url"] = url
        captured["json"] = json
        captured["timeout"] = timeout
        return _StubResponse({"message": {"role": "assistant", "content": '{"parent": "it.ai"}'}})

    monkeypatch.setattr("conceptmatch.llm.httpx.post", fake_post)

    settings = Settings(
        chat_backend="ollama",
        ollama_base_url="http://ollama:11434/",
        ollama_model="llama3.1:8b",
        ollama_request_timeout=30.0,
    )
    client = ChatLLMClient(settings)

    response = client.generate("Classify", system_prompt="JSON only.")

    assert response.backend == "ollama"
    assert parse_json_response(response.text) == {"parent": "it.ai"}
    assert captured["url"] == "http://ollama:11434/api/chat"
    assert captured["json"]["model"] == "llama3.1:8b"
    assert captured["json"]["messages"][0]["content"] == "JSON only."
    assert captured["timeout"] == pytest.approx(30.0)


def test_vllm_backend_without_content_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "conceptmatch.llm.httpx.post",
        lambda url, *, json, headers, timeout: _StubResponse({"choices": []}),
    )
    client = ChatLLMClient(Settings(chat_backend="vllm"))

    with pytest.raises(RuntimeError, match="vLLM"):
        client.generate("Hi?")
