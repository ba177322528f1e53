"""Normalize GitHub webhook payloads into uniform event records."""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Callable
from typing import Any

from prfocus.models import Actor, EventKind, NormalizedEvent, RepositoryRef

logger = logging.getLogger(__name__)

COMMENT_PREVIEW_CHARS = 100
_BASE36_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"

# Event types GitHub may deliver that are acknowledged but never stored.
IGNORED_EVENT_TYPES = frozenset({"ping", "pull_request_review", "pull_request_review_comment"})


def fallback_delivery_id() -> str:
    suffix = "".join(secrets.choice(_BASE36_ALPHABET) for _ in range(9))
    return f"{int(time.time() * 1000)}-{suffix}"


def _mapping(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _logins(items: Any) -> list[str]:
    if not isinstance(items, list):
        return []
    return [_text(_mapping(item).get("login")) for item in items if isinstance(item, dict)]


def _installation_id(payload: dict[str, Any]) -> int | None:
    raw = _mapping(payload.get("installation")).get("id")
    if isinstance(raw, bool) or raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def _repository(payload: dict[str, Any]) -> RepositoryRef:
    repo = _mapping(payload.get("repository"))
    return RepositoryRef(
        name=_text(repo.get("name")),
        full_name=_text(repo.get("full_name")),
        owner_login=_text(_mapping(repo.get("owner")).get("login")),
    )


def _actor(payload: dict[str, Any]) -> Actor:
    sender = _mapping(payload.get("sender"))
    return Actor(login=_text(sender.get("login")), type=_text(sender.get("type")))


def _pull_request_summary(payload: dict[str, Any]) -> tuple[EventKind, dict[str, Any]]:
    pull = _mapping(payload.get("pull_request"))
    return EventKind.PULL_REQUEST, {
        "pr_number": pull.get("number"),
        "pr_title": _text(pull.get("title")),
        "pr_state": _text(pull.get("state")),
        "pr_author": _text(_mapping(pull.get("user")).get("login")),
        "head_sha": _text(_mapping(pull.get("head")).get("sha")),
        "base_ref": _text(_mapping(pull.get("base")).get("ref")),
        "requested_reviewers": _logins(pull.get("requested_reviewers")),
    }


def _issue_summary(payload: dict[str, Any]) -> tuple[EventKind, dict[str, Any]]:
    issue = _mapping(payload.get("issue"))
    return EventKind.ISSUE, {
        "issue_number": issue.get("number"),
        "issue_title": _text(issue.get("title")),
        "issue_state": _text(issue.get("state")),
        "issue_author": _text(_mapping(issue.get("user")).get("login")),
        "assignees": _logins(issue.get("assignees")),
    }


def _issue_comment_summary(payload: dict[str, Any]) -> tuple[EventKind, dict[str, Any]]:
    issue = _mapping(payload.get("issue"))
    comment = _mapping(payload.get("comment"))
    is_pr_comment = bool(issue.get("pull_request"))
    kind = EventKind.PULL_REQUEST_COMMENT if is_pr_comment else EventKind.ISSUE_COMMENT
    return kind, {
        "issue_number": issue.get("number"),
        "issue_title": _text(issue.get("title")),
        "comment_id": comment.get("id"),
        "comment_author": _text(_mapping(comment.get("user")).get("login")),
        "comment_body_preview": _text(comment.get("body"))[:COMMENT_PREVIEW_CHARS],
        "is_pr_comment": is_pr_comment,
    }


_SUMMARIZERS: dict[str, Callable[[dict[str, Any]], tuple[EventKind, dict[str, Any]]]] = {
    "pull_request": _pull_request_summary,
    "issues": _issue_summary,
    "issue_comment": _issue_comment_summary,
}


def is_supported_event(event_type: str | None) -> bool:
    return bool(event_type) and event_type in _SUMMARIZERS


def normalize_event(event_type: str | None, payload: dict[str, Any], delivery_id: str | None) -> NormalizedEvent | None:
    """Map a webhook delivery to a ``NormalizedEvent``; unsupported types yield ``None``."""
    summarizer = _SUMMARIZERS.get(event_type or "")
    if summarizer is None:
        if event_type in IGNORED_EVENT_TYPES:
            logger.info("Acknowledged %s event without storing it", event_type)
        else:
            logger.debug("Unhandled event type: %s", event_type)
        return None

    kind, summary = summarizer(payload)
    event = NormalizedEvent(
        id=delivery_id or fallback_delivery_id(),
        kind=kind,
        action=_text(payload.get("action")),
        repository=_repository(payload),
        actor=_actor(payload),
        payload_summary=summary,
        installation_id=_installation_id(payload),
    )
    logger.info(
        "Normalized %s %s for %s (delivery=%s)",
        event.kind.value,
        event.action or "<no action>",
        event.repository.full_name or "<unknown repo>",
        event.id,
    )
    return event
