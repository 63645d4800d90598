"""Optional chat-model collaborator used for parent suggestions and explanations."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

try:  # pragma: no cover - optional dependency
    from openai import OpenAI
except Exception:  # pragma: no cover
    OpenAI = None  # type: ignore[assignment]

from .config import Settings, normalize_vllm_base_url

logger = logging.getLogger(__name__)

_DEFAULT_SYSTEM_PROMPT = "You are an expert in academic research taxonomies. Answer concisely."
_FENCED_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


class LLMUnavailableError(RuntimeError):
    """Raised when a prompt is sent to a client whose backend is not configured."""


@dataclass(slots=True)
class LLMResponse:
    text: str
    backend: str | None = None


class LLMClient(Protocol):
    """Anything that turns a prompt into text. Failures may raise any exception."""

    def generate(self, prompt: str, **options: Any) -> LLMResponse:
        ...


def parse_json_response(raw_response: str) -> Any | None:
    """Pull the first JSON value out of a model reply.

    Tries the whole reply, then the first decodable object or array inside it,
    then the contents of a fenced code block.
    """

    decoder = json.JSONDecoder()

    def _attempt(candidate: str) -> Any | None:
        candidate = candidate.strip()
        if not candidate:
            return None
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            pass
        for token in ("{", "["):
            idx = candidate.find(token)
            while idx != -1:
                try:
                    parsed, _ = decoder.raw_decode(candidate[idx:])
                    return parsed
                except json.JSONDecodeError:
                    idx = candidate.find(token, idx + 1)
        return None

    if not raw_response:
        return None
    primary = _attempt(raw_response)
    if primary is not None:
        return primary
    fenced = _FENCED_RE.search(raw_response)
    if fenced:
        return _attempt(fenced.group(1))
    return None


class ChatLLMClient:
    """Send prompts to the configured OpenAI, Ollama or vLLM chat backend."""

    def __init__(self, settings: Settings, *, system_prompt: str = _DEFAULT_SYSTEM_PROMPT) -> None:
        self._settings = settings
        self._system_prompt = system_prompt
        self._backend: str | None = None
        self._enabled = False
        self._openai_client: Any = None
        self._ollama_base_url: str | None = None
        self._vllm_base_url: str | None = None
        self._vllm_api_key: str | None = settings.vllm_api_key or None
        self._disable_reason: str | None = None
        reason: str | None = None

        if settings.is_openai_chat_backend:
            if not settings.openai_api_key:
                reason = "missing-openai-key"
            elif OpenAI is None:
                reason = "openai-sdk-missing"
            elif settings.openai_chat_model:
                try:
                    self._openai_client = OpenAI(api_key=settings.openai_api_key)
                    self._backend = "openai"
                    self._enabled = True
                except Exception as exc:  # pragma: no cover - runtime guard
                    logger.warning("llm.openai_init_failed error=%s", exc)
                    reason = f"openai-init-failed:{exc}"
            else:
                reason = "missing-openai-model"
        elif settings.is_ollama_chat_backend:
            self._ollama_base_url = settings.ollama_base_url.rstrip("/")
            if self._ollama_base_url and settings.ollama_model:
                self._backend = "ollama"
                self._enabled = True
            else:
                reason = "missing-ollama-config"
        elif settings.is_vllm_chat_backend:
            self._vllm_base_url = normalize_vllm_base_url(settings.vllm_base_url)
            if self._vllm_base_url and settings.vllm_model:
                self._backend = "vllm"
                self._enabled = True
            else:
                reason = "missing-vllm-config"
        else:
            reason = "chat-backend-disabled"

        if self._enabled:
            logger.info("llm.backend_ready backend=%s", self._backend)
        else:
            self._disable_reason = reason
            logger.info("llm.disabled reason=%s", reason)

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def backend(self) -> str | None:
        return self._backend

    @property
    def disable_reason(self) -> str | None:
        return self._disable_reason

    def generate(self, prompt: str, **options: Any) -> LLMResponse:
        if not self._enabled:
            raise LLMUnavailableError(f"Chat backend unavailable: {self._disable_reason}")
        system_prompt = options.get("system_prompt") or self._system_prompt
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt},
        ]
        text = self._invoke_backend(messages)
        logger.debug("llm.response backend=%s text=%s", self._backend, text[:500])
        return LLMResponse(text=text, backend=self._backend)

    def _invoke_backend(self, messages: list[dict[str, str]]) -> str:
        settings = self._settings
        if self._backend == "openai" and self._openai_client is not None:
            response = self._openai_client.responses.create(model=settings.openai_chat_model, input=messages)
            texts = [
                getattr(item, "text", "")
                for item in getattr(response, "output", []) or []
                if getattr(item, "type", "") == "output_text"
            ]
            if texts:
                return "\n".join(texts).strip()
            if getattr(response, "output_text", None):
                return str(response.output_text).strip()
            raise RuntimeError("OpenAI response did not include text output")

        if self._backend == "ollama" and self._ollama_base_url:
            response = httpx.post(
                f"{self._ollama_base_url}/api/chat",
                json={"model": settings.ollama_model, "messages": messages, "stream": False},
                timeout=settings.ollama_request_timeout,
            )
            response.raise_for_status()
            data = response.json()
            message = data.get("message") or {}
            content = message.get("content") or data.get("response")
            if not content:
                raise RuntimeError("Ollama response did not include content")
            return str(content).strip()

        if self._backend == "vllm" and self._vllm_base_url:
            headers = {"Content-Type": "application/json"}
            if self._vllm_api_key:
                headers["Authorization"] = f"Bearer {self._vllm_api_key}"
            response = httpx.post(
                f"{self._vllm_base_url}/v1/chat/completions",
                json={"model": settings.vllm_model, "messages": messages, "stream": False},
                headers=headers,
                timeout=settings.vllm_request_timeout,
            )
            response.raise_for_status()
            data = response.json()
            for choice in data.get("choices") or []:
                content = (choice.get("message") or {}).get("content")
                if content:
                    return str(content).strip()
            raise RuntimeError("vLLM response did not include content")

        raise LLMUnavailableError("LLM backend is not correctly configured")


__all__ = [
    "ChatLLMClient",
    "LLMClient",
    "LLMResponse",
    "LLMUnavailableError",
    "parse_json_response",
]
