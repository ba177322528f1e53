"""GitHub webhook delivery processing.

``WebhookProcessor.process`` runs one delivery through signature checks,
JSON decoding, normalization and storage, emitting lifecycle hooks along
the way. Failures are raised as typed errors that the HTTP layer maps to
status codes; successful outcomes carry the response body to return.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any

from prfocus.config import WebhookConfig
from prfocus.event_store import EventStore
from prfocus.hooks import HookManager, HookName, action_hook
from prfocus.models import NormalizedEvent
from prfocus.normalizer import normalize_event
from prfocus.signature import verify_signature

logger = logging.getLogger(__name__)


class WebhookAuthenticationError(RuntimeError):
    status_code = 401


class WebhookConfigurationError(RuntimeError):
    status_code = 500


class MalformedPayloadError(ValueError):
    status_code = 400


@dataclass(frozen=True)
class WebhookOutcome:
    body: dict[str, Any]
    status_code: int = 200
    event: NormalizedEvent | None = None


@dataclass
class WebhookDelivery:
    event_type: str | None
    delivery_id: str | None
    signature: str | None
    raw_body: bytes


class WebhookProcessor:
    def __init__(
        self,
        config: WebhookConfig,
        store: EventStore,
        hooks: HookManager | None = None,
        *,
        secret: str | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.hooks = hooks or HookManager()
        self._secret = secret

    def resolve_secret(self) -> str | None:
        if self._secret is not None:
            return self._secret
        return os.environ.get(self.config.secret_env) or None

    def is_test_bypass(self, signature: str | None) -> bool:
        return self.config.test_mode and signature == self.config.test_signature

    def authenticate(self, delivery: WebhookDelivery) -> None:
        if self.is_test_bypass(delivery.signature):
            logger.warning("Test webhook signature accepted for delivery %s; verification skipped", delivery.delivery_id)
            return

        secret = self.resolve_secret()
        if not secret:
            logger.error("Webhook secret is not configured (env %s)", self.config.secret_env)
            raise WebhookConfigurationError("Webhook secret not configured")
        if not delivery.signature:
            logger.warning("Missing signature header on delivery %s", delivery.delivery_id)
            raise WebhookAuthenticationError("Missing signature")
        if not verify_signature(delivery.raw_body, delivery.signature, secret):
            logger.warning("Invalid webhook signature on delivery %s", delivery.delivery_id)
            raise WebhookAuthenticationError("Invalid signature")

    def process(self, delivery: WebhookDelivery) -> WebhookOutcome:
        logger.info("Received GitHub webhook: %s (%s)", delivery.event_type, delivery.delivery_id)
        self.authenticate(delivery)
        payload = _decode_payload(delivery.raw_body)

        context: dict[str, Any] = {
            "event_type": delivery.event_type,
            "delivery_id": delivery.delivery_id,
            "payload": payload,
        }
        self.hooks.emit(HookName.EVENT_RECEIVED, context)

        if delivery.event_type == "ping":
            logger.info("Webhook ping received")
            return WebhookOutcome(body={"message": "pong"})

        event = normalize_event(delivery.event_type, payload, delivery.delivery_id)
        if event is None:
            return WebhookOutcome(body={"message": "Event ignored", "event_type": delivery.event_type})

        context["event"] = event
        self.hooks.emit(HookName.EVENT_NORMALIZED, context)
        self.store.store(event)
        self.hooks.emit(HookName.EVENT_STORED, context)
        if event.action:
            self.hooks.emit(action_hook(event.kind.value, event.action), context)

        return WebhookOutcome(
            body={"message": "Event processed successfully", "event_id": event.id},
            event=event,
        )


def _decode_payload(raw_body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.warning("Invalid JSON payload: %s", exc)
        raise MalformedPayloadError("Invalid JSON") from exc
    if not isinstance(payload, dict):
        raise MalformedPayloadError("Invalid JSON")
    return payload


def mock_delivery_id() -> str:
    return f"test-{int(time.time() * 1000)}"


_AVATAR_URL = "https://github.com/images/error/octocat_happy.gif"


def _user_ref(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    return {"login": str(value), "avatar_url": _AVATAR_URL}


def build_mock_payload(event_type: str, overrides: dict[str, Any] | None = None) -> dict[str, Any]:
    """Build a GitHub-shaped payload for the test webhook endpoint.

    ``overrides`` accepts ``action``, ``number``, ``title``, ``reviewers``,
    ``assignees``, ``comment`` and ``isPR``; everything else is fixed test data.
    """
    custom = overrides or {}
    repository = {
        "id": 123456789,
        "name": "test-repo",
        "full_name": "testuser/test-repo",
        "owner": {"login": "testuser", "type": "User"},
    }
    base: dict[str, Any] = {
        "action": custom.get("action") or "opened",
        "repository": repository,
        "installation": {"id": 12345},
        "sender": {"login": "testuser", "type": "User"},
    }

    if event_type == "pull_request":
        reviewers = custom.get("reviewers")
        if reviewers is None:
            reviewers = ["reviewer1"]
        base["pull_request"] = {
            "id": 987654321,
            "number": custom.get("number") or 42,
            "title": custom.get("title") or "Test Pull Request",
            "body": "This is a test pull request created for webhook testing.",
            "state": "open",
            "user": {"login": "testuser", "avatar_url": _AVATAR_URL},
            "head": {"sha": "abc123def456", "ref": "feature/test-branch"},
            "base": {"sha": "def456abc123", "ref": "main"},
            "requested_reviewers": [_user_ref(item) for item in reviewers],
        }
        return base

    if event_type == "issues":
        base["issue"] = {
            "id": 987654321,
            "number": custom.get("number") or 24,
            "title": custom.get("title") or "Test Issue",
            "body": "This is a test issue created for webhook testing.",
            "state": "open",
            "user": {"login": "testuser", "avatar_url": _AVATAR_URL},
            "assignees": [_user_ref(item) for item in custom.get("assignees") or []],
        }
        return base

    if event_type == "issue_comment":
        issue: dict[str, Any] = {
            "number": custom.get("number") or 24,
            "title": custom.get("title") or "Test Issue",
        }
        if custom.get("isPR"):
            issue["pull_request"] = {"url": "https://api.github.com/repos/testuser/test-repo/pulls/42"}
        now = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
        base["issue"] = issue
        base["comment"] = {
            "id": 123456789,
            "body": custom.get("comment") or "This is a test comment for webhook testing.",
            "user": {"login": "commenter", "avatar_url": _AVATAR_URL},
            "created_at": now,
            "updated_at": now,
        }
        return base

    if event_type == "ping":
        return {
            "zen": "Non-blocking is better than blocking.",
            "hook_id": 12345,
            "hook": {"type": "Repository", "id": 12345, "events": ["push", "pull_request"]},
            "repository": repository,
        }

    return base


TEST_USAGE = {
    "message": "Webhook test endpoint",
    "usage": "POST with event_type and optional custom data",
    "examples": {
        "pull_request": {"event_type": "pull_request", "action": "opened", "number": 42, "title": "My Test PR"},
        "issue": {"event_type": "issues", "action": "opened", "number": 24, "title": "My Test Issue"},
        "comment": {
            "event_type": "issue_comment",
            "action": "created",
            "number": 24,
            "comment": "This is my test comment",
            "isPR": True,
        },
    },
}
