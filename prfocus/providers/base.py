"""Model provider abstractions."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any, Protocol

Message = dict[str, str]


class ProviderError(RuntimeError):
    """Raised when a provider request fails or returns an unusable body."""

    def __init__(self, message: str, *, status: int | None = None, raw_text: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.raw_text = raw_text


@dataclass(frozen=True)
class ProviderSpec:
    """Everything needed to talk to one model API.

    ``headers`` maps an API key to request headers. ``build_body`` receives
    ``(messages, model, stream, max_tokens, temperature)``.
    ``decode_stream_line`` turns one server-sent-events line into a text
    delta (or ``None`` for keep-alives and control frames), and
    ``decode_buffered`` extracts the full reply from a non-streaming body.
    """

    name: str
    url_template: str
    default_model: str
    api_key_env: str
    headers: Callable[[str], dict[str, str]]
    build_body: Callable[[list[Message], str, bool, int, float], dict[str, Any]]
    decode_stream_line: Callable[[str], str | None]
    decode_buffered: Callable[[dict[str, Any]], str]
    stream_url_template: str | None = None

    def url(self, model: str, *, stream: bool) -> str:
        template = self.stream_url_template if stream and self.stream_url_template else self.url_template
        return template.format(model=model)


class ModelClient(Protocol):
    def complete(self, messages: list[Message], *, stream: bool = False, max_tokens: int = 64000) -> Iterator[str]:
        ...
