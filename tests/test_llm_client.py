import pytest
import requests

from errors import ModelTimeout, ModelUnavailable
from llm.client import (
    OllamaClient,
    OpenAICompatibleClient,
    create_model_client,
    extract_json,
)


class DummyResponse:
    def __init__(self, payload, status_code: int = 200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


def _capture(monkeypatch, response):
    calls = []

    def fake_post(url, json=None, headers=None, timeout=None):
        calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if isinstance(response, Exception):
            raise response
        return response

    monkeypatch.setattr("llm.client.requests.post", fake_post)
    return calls


MESSAGES = [{"role": "system", "content": "Be brief."}, {"role": "user", "content": "{}"}]


def test_ollama_client_posts_json_chat(monkeypatch) -> None:
    calls = _capture(monkeypatch, DummyResponse({"message": {"content": '{"txt": "Hi"}'}}))
    client = OllamaClient(base_url="http://ollama:11434/", model="tiny", timeout=5)

    content = client.complete(MESSAGES, temperature=0.3)

    assert content == '{"txt": "Hi"}'
    assert calls[0]["url"] == "http://ollama:11434/api/chat"
    assert calls[0]["json"]["format"] == "json"
    assert calls[0]["json"]["options"] == {"temperature": 0.3}
    assert calls[0]["timeout"] == 5


def test_openai_client_sends_bearer_token(monkeypatch) -> None:
    calls = _capture(
        monkeypatch,
        DummyResponse({"choices": [{"message": {"content": '{"txt": "Hello"}'}}]}),
    )
    client = OpenAICompatibleClient(base_url="http://llm/v1", api_key="secret", model="m")

    assert client.complete(MESSAGES, temperature=0.2, timeout=9) == '{"txt": "Hello"}'
    assert calls[0]["url"] == "http://llm/v1/chat/completions"
    assert calls[0]["headers"] == {"Authorization": "Bearer secret"}
    assert calls[0]["json"]["response_format"] == {"type": "json_object"}
    assert calls[0]["timeout"] == 9


def test_timeout_maps_to_retryable_error(monkeypatch) -> None:
    _capture(monkeypatch, requests.Timeout("slow"))
    with pytest.raises(ModelTimeout) as excinfo:
        OllamaClient(timeout=1).complete(MESSAGES, temperature=0.7)
    assert excinfo.value.retryable is True


def test_transport_and_shape_errors_are_unavailable(monkeypatch) -> None:
    _capture(monkeypatch, DummyResponse({}, status_code=500))
    with pytest.raises(ModelUnavailable):
        OllamaClient(timeout=1).complete(MESSAGES, temperature=0.7)

    _capture(monkeypatch, DummyResponse({"choices": []}))
    with pytest.raises(ModelUnavailable):
        OpenAICompatibleClient(timeout=1).complete(MESSAGES, temperature=0.7)


def test_create_model_client_reads_provider(monkeypatch) -> None:
    monkeypatch.setenv("MODEL_PROVIDER", "openai")
    assert isinstance(create_model_client(), OpenAICompatibleClient)
    assert isinstance(create_model_client("ollama"), OllamaClient)
    with pytest.raises(ValueError):
        create_model_client("carrier-pigeon")


def test_extract_json_finds_embedded_object() -> None:
    assert extract_json('{"txt": "a"}') == {"txt": "a"}
    assert extract_json('Sure! {"txt": "b"} Enjoy.') == {"txt": "b"}
    with pytest.raises(ValueError):
        extract_json("no json here")
