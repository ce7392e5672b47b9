from __future__ import annotations

import json
import logging
import os
from typing import Any, Protocol

import requests

from errors import ModelTimeout, ModelUnavailable

logger = logging.getLogger(__name__)

Messages = list[dict[str, str]]


class ModelClient(Protocol):
    def complete(
        self,
        messages: Messages,
        *,
        temperature: float,
        timeout: float | None = None,
    ) -> str: ...


def _default_timeout() -> float:
    return float(os.getenv("MODEL_TIMEOUT", "30"))


class OllamaClient:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.base_url = (base_url or os.getenv("OLLAMA_URL") or "http://localhost:11434").rstrip(
            "/"
        )
        self.model = model or os.getenv("OLLAMA_MODEL") or "gpt-oss:20b"
        self.timeout = timeout if timeout is not None else _default_timeout()

    def complete(
        self,
        messages: Messages,
        *,
        temperature: float,
        timeout: float | None = None,
    ) -> str:
        payload = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "format": "json",
            "options": {"temperature": temperature},
        }
        data = _post_json(f"{self.base_url}/api/chat", payload, timeout or self.timeout)
        message = data.get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            raise ModelUnavailable("Invalid response from Ollama.", provider="ollama")
        return content


class OpenAICompatibleClient:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        max_tokens: int = 2000,
    ) -> None:
        self.base_url = (
            base_url or os.getenv("OPENAI_BASE_URL") or "https://api.openai.com/v1"
        ).rstrip("/")
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        self.model = model or os.getenv("OPENAI_MODEL") or "gpt-4o-mini"
        self.timeout = timeout if timeout is not None else _default_timeout()
        self.max_tokens = max_tokens

    def complete(
        self,
        messages: Messages,
        *,
        temperature: float,
        timeout: float | None = None,
    ) -> str:
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": self.max_tokens,
            "response_format": {"type": "json_object"},
        }
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        data = _post_json(
            f"{self.base_url}/chat/completions", payload, timeout or self.timeout, headers
        )
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            raise ModelUnavailable("Response contained no choices.", provider="openai")
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            raise ModelUnavailable("Invalid response from chat completions.", provider="openai")
        return content


def create_model_client(provider: str | None = None) -> ModelClient:
    provider = (provider or os.getenv("MODEL_PROVIDER") or "ollama").lower()
    if provider == "ollama":
        return OllamaClient()
    if provider in ("openai", "openai_compatible"):
        return OpenAICompatibleClient()
    raise ValueError(f"Unknown MODEL_PROVIDER '{provider}'.")


def _post_json(
    url: str,
    payload: dict[str, Any],
    timeout: float,
    headers: dict[str, str] | None = None,
) -> dict[str, Any]:
    try:
        response = requests.post(url, json=payload, headers=headers, timeout=timeout)
        response.raise_for_status()
        data = response.json()
    except requests.Timeout as exc:
        logger.warning("Model call to %s timed out after %ss", url, timeout)
        raise ModelTimeout(f"Model call timed out after {timeout}s.", url=url) from exc
    except (requests.RequestException, ValueError) as exc:
        logger.warning("Model call to %s failed: %s", url, exc)
        raise ModelUnavailable(f"Model call failed: {exc}", url=url) from exc
    if not isinstance(data, dict):
        raise ModelUnavailable("Model response was not a JSON object.", url=url)
    return data


def extract_json(content: str) -> dict[str, Any]:
    try:
        data = json.loads(content)
        if isinstance(data, dict):
            return data
    except json.JSONDecodeError:
        pass

    start = content.find("{")
    end = content.rfind("}")
    if start >= 0 and end > start:
        data = json.loads(content[start : end + 1])
        if isinstance(data, dict):
            return data
    raise ValueError("Response did not contain a JSON object.")
