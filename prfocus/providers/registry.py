"""Provider registry for anthropic, google, openai and near."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from prfocus.config import AnalysisConfig
from prfocus.providers.base import Message, ProviderError, ProviderSpec

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
_SSE_DONE = "[DONE]"


def _sse_data(line: str) -> Any | None:
    line = line.strip()
    if not line.startswith("data:"):
        return None
    data = line[len("data:") :].strip()
    if not data or data == _SSE_DONE:
        return None
    try:
        return json.loads(data)
    except json.JSONDecodeError:
        logger.debug("Skipping undecodable stream frame: %s", data[:200])
        return None


def _split_system(messages: list[Message]) -> tuple[str, list[Message]]:
    system = "\n\n".join(item["content"] for item in messages if item.get("role") == "system")
    rest = [item for item in messages if item.get("role") != "system"]
    return system, rest


# anthropic


def _anthropic_headers(api_key: str) -> dict[str, str]:
    return {"Content-Type": "application/json", "x-api-key": api_key, "anthropic-version": ANTHROPIC_VERSION}


def _anthropic_body(messages: list[Message], model: str, stream: bool, max_tokens: int, temperature: float) -> dict[str, Any]:
    system, rest = _split_system(messages)
    body: dict[str, Any] = {
        "model": model,
        "messages": rest,
        "max_tokens": max_tokens,
        "temperature": temperature,
        "stream": stream,
    }
    if system:
        body["system"] = system
    return body


def _anthropic_stream_line(line: str) -> str | None:
    event = _sse_data(line)
    if not isinstance(event, dict):
        return None
    if event.get("type") == "error":
        raise ProviderError(f"anthropic stream error: {event.get('error')}")
    delta = event.get("delta")
    if event.get("type") == "content_block_delta" and isinstance(delta, dict):
        return delta.get("text") or None
    return None


def _anthropic_buffered(body: dict[str, Any]) -> str:
    blocks = body.get("content")
    if not isinstance(blocks, list):
        raise ProviderError("anthropic response has no content", raw_text=json.dumps(body))
    return "".join(block.get("text", "") for block in blocks if isinstance(block, dict) and block.get("type") == "text")


# google


def _google_headers(api_key: str) -> dict[str, str]:
    return {"Content-Type": "application/json", "x-goog-api-key": api_key}


def _google_body(messages: list[Message], model: str, stream: bool, max_tokens: int, temperature: float) -> dict[str, Any]:
    system, rest = _split_system(messages)
    body: dict[str, Any] = {
        "contents": [
            {"role": "model" if item["role"] == "assistant" else item["role"], "parts": [{"text": item["content"]}]}
            for item in rest
        ],
        "generationConfig": {"temperature": temperature, "maxOutputTokens": max_tokens},
    }
    if system:
        body["systemInstruction"] = {"parts": [{"text": system}]}
    return body


def _google_text(body: Any) -> str:
    if not isinstance(body, dict):
        return ""
    parts: list[str] = []
    for candidate in body.get("candidates") or []:
        content = candidate.get("content") if isinstance(candidate, dict) else None
        for part in (content or {}).get("parts") or []:
            if isinstance(part, dict) and part.get("text"):
                parts.append(part["text"])
    return "".join(parts)


def _google_stream_line(line: str) -> str | None:
    return _google_text(_sse_data(line)) or None


def _google_buffered(body: dict[str, Any]) -> str:
    if "candidates" not in body:
        raise ProviderError("google response has no candidates", raw_text=json.dumps(body))
    return _google_text(body)


# openai-compatible (openai, near)


def _bearer_headers(api_key: str) -> dict[str, str]:
    return {"Content-Type": "application/json", "Authorization": f"Bearer {api_key}"}


def _chat_body(messages: list[Message], model: str, stream: bool, max_tokens: int, temperature: float) -> dict[str, Any]:
    return {
        "model": model,
        "messages": messages,
        "max_tokens": max_tokens,
        "temperature": temperature,
        "stream": stream,
    }


def _chat_stream_line(line: str) -> str | None:
    event = _sse_data(line)
    if not isinstance(event, dict):
        return None
    choices = event.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta") or {}
    return delta.get("content") or None


def _chat_buffered(body: dict[str, Any]) -> str:
    try:
        content = body["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ProviderError("chat completion response has no message content", raw_text=json.dumps(body)) from exc
    return content or ""


PROVIDERS: dict[str, ProviderSpec] = {
    "anthropic": ProviderSpec(
        name="anthropic",
        url_template="https://api.anthropic.com/v1/messages",
        default_model="claude-3-opus-20240229",
        api_key_env="ANTHROPIC_API_KEY",
        headers=_anthropic_headers,
        build_body=_anthropic_body,
        decode_stream_line=_anthropic_stream_line,
        decode_buffered=_anthropic_buffered,
    ),
    "google": ProviderSpec(
        name="google",
        url_template="https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent",
        stream_url_template="https://generativelanguage.googleapis.com/v1beta/models/{model}:streamGenerateContent?alt=sse",
        default_model="gemini-1.5-pro",
        api_key_env="GOOGLE_API_KEY",
        headers=_google_headers,
        build_body=_google_body,
        decode_stream_line=_google_stream_line,
        decode_buffered=_google_buffered,
    ),
    "openai": ProviderSpec(
        name="openai",
        url_template="https://api.openai.com/v1/chat/completions",
        default_model="gpt-4o",
        api_key_env="OPENAI_API_KEY",
        headers=_bearer_headers,
        build_body=_chat_body,
        decode_stream_line=_chat_stream_line,
        decode_buffered=_chat_buffered,
    ),
    "near": ProviderSpec(
        name="near",
        url_template="https://api.near.ai/v1/chat/completions",
        default_model="near-small",
        api_key_env="NEAR_API_KEY",
        headers=_bearer_headers,
        build_body=_chat_body,
        decode_stream_line=_chat_stream_line,
        decode_buffered=_chat_buffered,
    ),
}


@dataclass(frozen=True)
class ResolvedProvider:
    spec: ProviderSpec
    model: str
    api_key_env: str
    endpoint: str | None = None

    def url(self, *, stream: bool) -> str:
        if self.endpoint:
            return self.endpoint.format(model=self.model)
        return self.spec.url(self.model, stream=stream)


def get_provider(name: str) -> ProviderSpec:
    try:
        return PROVIDERS[name]
    except KeyError as exc:
        raise ValueError(f"Unknown AI provider: {name} (expected one of {', '.join(sorted(PROVIDERS))})") from exc


def resolve_provider(config: AnalysisConfig) -> ResolvedProvider:
    spec = get_provider(config.provider)
    return ResolvedProvider(
        spec=spec,
        model=config.model or spec.default_model,
        api_key_env=config.api_key_env or spec.api_key_env,
        endpoint=config.endpoint,
    )
