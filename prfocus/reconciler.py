"""Reconcile free-form model output into a validated ``AnalysisResult``.

Model replies are unreliable: the document may be YAML or JSON, may be
wrapped in a markdown fence (possibly never closed when a stream was cut
short), may sit between ``---`` markers, or may be bare. Extraction tries
those shapes in order and the first match wins; the candidate is parsed
with a YAML loader (JSON is a YAML subset) and validated against the
``AnalysisResult`` model. Nothing is ever defaulted: a failure raises
``AnalysisValidationError`` carrying the text that was examined.
"""

from __future__ import annotations

import codecs
import json
import logging
import re
import threading
from collections import OrderedDict
from collections.abc import Callable, Iterable
from typing import Any

import yaml
from pydantic import ValidationError

from prfocus.models import AnalysisResult

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "pr-analysis-"

# The closing fence must open a line (at most 3 spaces in), so backticks inside
# strings or indented block scalars do not end the block. It may be missing
# when a streamed reply was truncated.
_FENCED_BLOCK_RE = re.compile(r"```[\w+-]*[ \t]*\r?\n?(.*?)(?:^ {0,3}```|\Z)", re.DOTALL | re.MULTILINE)
_DOCUMENT_MARKERS_RE = re.compile(r"^---[ \t]*\r?\n(.*?)^---[ \t]*$", re.DOTALL | re.MULTILINE)


class AnalysisValidationError(ValueError):
    """Raised when model output does not contain a conforming analysis document."""

    def __init__(self, message: str, *, raw_text: str, full_output: str | None = None) -> None:
        super().__init__(message)
        self.raw_text = raw_text
        self.full_output = raw_text if full_output is None else full_output


class ModelStreamError(RuntimeError):
    """Raised when the model output source fails part way through."""

    def __init__(self, message: str, *, raw_text: str) -> None:
        super().__init__(message)
        self.raw_text = raw_text


def extract_candidate(raw_output: str) -> str:
    fenced = _FENCED_BLOCK_RE.search(raw_output)
    if fenced:
        return fenced.group(1)
    marked = _DOCUMENT_MARKERS_RE.search(raw_output)
    if marked:
        return marked.group(1)
    return raw_output


def _load_document(candidate: str, raw_output: str) -> Any:
    try:
        return yaml.safe_load(candidate)
    except yaml.YAMLError as exc:
        raise AnalysisValidationError(
            f"Model output is not valid YAML or JSON: {exc}",
            raw_text=candidate,
            full_output=raw_output,
        ) from exc


def reconcile(raw_output: str) -> AnalysisResult:
    candidate = extract_candidate(raw_output)
    document = _load_document(candidate, raw_output)

    if not isinstance(document, dict):
        raise AnalysisValidationError(
            f"Expected a mapping with 'summary' and 'changes', got {type(document).__name__}",
            raw_text=candidate,
            full_output=raw_output,
        )
    if not isinstance(document.get("summary"), str) or not document["summary"].strip():
        raise AnalysisValidationError("Missing or empty 'summary'", raw_text=candidate, full_output=raw_output)
    if not isinstance(document.get("changes"), list):
        raise AnalysisValidationError("'changes' must be a list", raw_text=candidate, full_output=raw_output)

    try:
        return AnalysisResult.model_validate(document)
    except ValidationError as exc:
        raise AnalysisValidationError(
            f"Analysis document failed validation: {exc.error_count()} error(s)",
            raw_text=candidate,
            full_output=raw_output,
        ) from exc


class OutputAccumulator:
    """Incrementally decodes model output chunks into one string.

    ``bytes`` chunks go through an incremental UTF-8 decoder so a multi-byte
    character split across chunk boundaries is reassembled; ``str`` chunks
    are appended as-is.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._parts: list[str] = []

    def feed(self, chunk: bytes | str) -> None:
        if isinstance(chunk, bytes):
            text = self._decoder.decode(chunk)
        else:
            text = chunk
        if text:
            self._parts.append(text)

    def finish(self) -> str:
        tail = self._decoder.decode(b"", final=True)
        if tail:
            self._parts.append(tail)
        return self.text

    @property
    def text(self) -> str:
        return "".join(self._parts)


def collect_output(chunks: Iterable[bytes | str]) -> str:
    accumulator = OutputAccumulator()
    try:
        for chunk in chunks:
            accumulator.feed(chunk)
    except Exception as exc:
        partial = accumulator.finish()
        raise ModelStreamError(f"Model output stream failed: {exc}", raw_text=partial) from exc
    return accumulator.finish()


def reconcile_chunks(chunks: Iterable[bytes | str]) -> AnalysisResult:
    """Drain ``chunks`` fully, then extract and validate."""
    return reconcile(collect_output(chunks))


def cache_key_for(head_sha: str) -> str:
    return f"{CACHE_KEY_PREFIX}{head_sha}"


class AnalysisCache:
    """Memoizes successful analyses by head commit SHA.

    Entries are stored as JSON strings under ``pr-analysis-<sha>``. An entry
    that no longer decodes into a valid ``AnalysisResult`` is treated as a
    miss and dropped. Failures are never cached.
    """

    def __init__(self, max_entries: int = 64) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._entries: OrderedDict[str, str] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, head_sha: str) -> AnalysisResult | None:
        key = cache_key_for(head_sha)
        with self._lock:
            raw = self._entries.get(key)
        if raw is None:
            return None
        try:
            return AnalysisResult.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError):
            logger.warning("Discarding unreadable cache entry %s", key)
            with self._lock:
                self._entries.pop(key, None)
            return None

    def put(self, head_sha: str, result: AnalysisResult) -> None:
        key = cache_key_for(head_sha)
        with self._lock:
            self._entries[key] = result.model_dump_json()
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def get_or_compute(
        self,
        head_sha: str | None,
        compute: Callable[[], AnalysisResult],
    ) -> tuple[AnalysisResult, bool]:
        """Return ``(result, cached)``; ``compute`` only runs on a miss."""
        if head_sha:
            cached = self.get(head_sha)
            if cached is not None:
                logger.info("Analysis cache hit for %s", cache_key_for(head_sha))
                return cached, True

        result = compute()
        if head_sha:
            self.put(head_sha, result)
        return result, False
