"""Pull request analysis: prompt, model call, reconcile, cache."""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from prfocus.config import AnalysisConfig
from prfocus.diff_parser import ensure_hunk_header, parse_patch
from prfocus.models import AnalysisResult
from prfocus.prompts import build_messages
from prfocus.providers.base import ModelClient
from prfocus.reconciler import AnalysisCache, cache_key_for, reconcile_chunks

logger = logging.getLogger(__name__)


class AnalysisRequestError(ValueError):
    """Raised when an analysis request body is missing required fields."""


class AnalysisRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    pr_description: str = Field(validation_alias=AliasChoices("pr_description", "prDescription"))
    changed_files: list[str] = Field(validation_alias=AliasChoices("changed_files", "changedFiles"))
    file_changes: str = Field(validation_alias=AliasChoices("file_changes", "fileChanges"))
    head_sha: str | None = Field(default=None, validation_alias=AliasChoices("head_sha", "headSha"))
    stream: bool = False
    max_tokens: int | None = Field(default=None, ge=1)


def _unwrap_body(body: Any) -> Any:
    if not isinstance(body, dict):
        return body
    if isinstance(body.get("data"), dict):
        return body["data"]
    messages = body.get("messages")
    if isinstance(messages, list) and messages and isinstance(messages[0], dict) and isinstance(messages[0].get("content"), str):
        try:
            return json.loads(messages[0]["content"])
        except json.JSONDecodeError as exc:
            raise AnalysisRequestError("messages[0].content is not valid JSON") from exc
    return body


def parse_analysis_request(body: Any) -> AnalysisRequest:
    """Accept the request fields directly, under ``data``, or as JSON in ``messages[0].content``."""
    payload = _unwrap_body(body)
    if not isinstance(payload, dict):
        raise AnalysisRequestError("Missing required fields")
    try:
        request = AnalysisRequest.model_validate(payload)
    except ValidationError as exc:
        raise AnalysisRequestError("Missing required fields") from exc
    if not request.pr_description or not request.changed_files or not request.file_changes:
        raise AnalysisRequestError("Missing required fields")
    return request


def build_diff_text(files: list[Any]) -> str:
    """Concatenate changed-file patches into one reviewable diff."""
    sections: list[str] = []
    for file in files:
        patch = file.get("patch") if isinstance(file, dict) else getattr(file, "patch", None)
        filename = file.get("filename") if isinstance(file, dict) else getattr(file, "filename", "")
        if not patch:
            continue
        sections.append(f"diff --git a/{filename} b/{filename}\n--- a/{filename}\n+++ b/{filename}\n{patch}")
    return "\n".join(sections)


def change_view(result: AnalysisResult) -> list[dict[str, Any]]:
    """Per change, hunks grouped by file in first-seen order, each with parsed lines."""
    rows: list[dict[str, Any]] = []
    for change in result.changes:
        by_file: dict[str, list[dict[str, Any]]] = {}
        for hunk in change.hunks:
            parsed = parse_patch(ensure_hunk_header(hunk.diff)) if hunk.diff else []
            by_file.setdefault(hunk.file, []).append(
                {"diff": hunk.diff, "parsed": [item.model_dump(mode="json") for item in parsed]}
            )
        files = [{"file": file, "hunks": hunks} for file, hunks in by_file.items()]
        rows.append({"label": change.label, "files": files})
    return rows


class PullRequestAnalyzer:
    def __init__(self, config: AnalysisConfig, client: ModelClient, cache: AnalysisCache | None = None) -> None:
        self.config = config
        self.client = client
        self.cache = cache or AnalysisCache(max_entries=config.cache_entries)

    def analyze(self, request: AnalysisRequest) -> tuple[AnalysisResult, bool]:
        """Return ``(result, cached)``.

        ``AnalysisValidationError``, ``ModelStreamError`` and ``ProviderError``
        propagate unchanged; nothing is cached on failure.
        """
        max_tokens = request.max_tokens or self.config.max_tokens

        def _compute() -> AnalysisResult:
            messages = build_messages(
                request.pr_description,
                request.changed_files,
                request.file_changes,
                self.config.max_lines,
            )
            chunks = self.client.complete(messages, stream=request.stream, max_tokens=max_tokens)
            return reconcile_chunks(chunks)

        result, cached = self.cache.get_or_compute(request.head_sha, _compute)
        logger.info(
            "Analysis complete (changes=%s cached=%s key=%s)",
            len(result.changes),
            cached,
            cache_key_for(request.head_sha) if request.head_sha else "-",
        )
        return result, cached

    def response_payload(self, request: AnalysisRequest, result: AnalysisResult, cached: bool) -> dict[str, Any]:
        return {
            "result": result.model_dump(mode="json"),
            "cached": cached,
            "cache_key": cache_key_for(request.head_sha) if request.head_sha else None,
            "changes": change_view(result),
        }
