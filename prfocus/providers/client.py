"""urllib-backed model client for the registered providers."""

from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.request
from collections.abc import Iterator

from prfocus.config import AnalysisConfig
from prfocus.providers.base import Message, ProviderError
from prfocus.providers.registry import ResolvedProvider, resolve_provider

logger = logging.getLogger(__name__)

_ERROR_BODY_CHARS = 2000


class HttpModelClient:
    def __init__(
        self,
        provider: ResolvedProvider,
        *,
        timeout_seconds: float = 120.0,
        temperature: float = 0.7,
    ) -> None:
        self.provider = provider
        self._timeout_seconds = timeout_seconds
        self._temperature = temperature

    @classmethod
    def from_config(cls, config: AnalysisConfig) -> HttpModelClient:
        return cls(
            resolve_provider(config),
            timeout_seconds=config.timeout_seconds,
            temperature=config.temperature,
        )

    def model_id(self) -> str:
        return f"{self.provider.spec.name}:{self.provider.model}"

    def complete(self, messages: list[Message], *, stream: bool = False, max_tokens: int = 64000) -> Iterator[str]:
        """Send ``messages`` and return an iterator of text chunks.

        Configuration problems (missing API key) raise immediately; network
        and decoding failures surface while the iterator is consumed.
        """
        api_key = os.environ.get(self.provider.api_key_env, "")
        if not api_key:
            raise ProviderError(f"API key env {self.provider.api_key_env} is not set for provider {self.provider.spec.name}")

        spec = self.provider.spec
        body = spec.build_body(messages, self.provider.model, stream, max_tokens, self._temperature)
        request = urllib.request.Request(
            self.provider.url(stream=stream),
            data=json.dumps(body).encode("utf-8"),
            headers=spec.headers(api_key),
            method="POST",
        )
        logger.info("Requesting %s completion (stream=%s, max_tokens=%s)", self.model_id(), stream, max_tokens)
        if stream:
            return self._iter_stream(request)
        return self._iter_buffered(request)

    def _iter_stream(self, request: urllib.request.Request) -> Iterator[str]:
        decode_line = self.provider.spec.decode_stream_line
        try:
            with urllib.request.urlopen(request, timeout=self._timeout_seconds) as response:
                for raw_line in response:
                    text = decode_line(raw_line.decode("utf-8", errors="replace"))
                    if text:
                        yield text
        except urllib.error.HTTPError as exc:
            raise _http_error(exc) from exc
        except urllib.error.URLError as exc:
            raise ProviderError(f"{self.model_id()} request failed: {exc.reason}") from exc

    def _iter_buffered(self, request: urllib.request.Request) -> Iterator[str]:
        try:
            with urllib.request.urlopen(request, timeout=self._timeout_seconds) as response:
                raw = response.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as exc:
            raise _http_error(exc) from exc
        except urllib.error.URLError as exc:
            raise ProviderError(f"{self.model_id()} request failed: {exc.reason}") from exc

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ProviderError("Provider returned a non-JSON body", raw_text=raw[:_ERROR_BODY_CHARS]) from exc
        if not isinstance(payload, dict):
            raise ProviderError("Provider returned an unexpected body", raw_text=raw[:_ERROR_BODY_CHARS])
        yield self.provider.spec.decode_buffered(payload)


def _http_error(exc: urllib.error.HTTPError) -> ProviderError:
    try:
        detail = exc.read().decode("utf-8", errors="replace")
    except OSError:
        detail = ""
    return ProviderError(
        f"Provider returned HTTP {exc.code}",
        status=exc.code,
        raw_text=detail[:_ERROR_BODY_CHARS],
    )
