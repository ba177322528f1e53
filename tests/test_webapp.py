import asyncio
import json

import pytest

from prfocus.config import AnalysisConfig, EventsConfig, PrFocusConfig, WebhookConfig
from prfocus.connectors.github_gh import (
    GithubComment,
    GithubFile,
    GithubNotFoundError,
    GithubPull,
    GithubPullSummary,
    GithubRateLimitError,
)
from prfocus.event_store import EventStore
from prfocus.hooks import HookManager, HookName
from prfocus.providers.base import ProviderError
from prfocus.signature import compute_signature
from prfocus.webhooks import build_mock_payload

SECRET = "webhook-secret"

ANALYSIS_REPLY = "```json\n" + json.dumps(
    {
        "summary": "Adds caching",
        "changes": [{"label": "Cache layer", "hunks": [{"file": "src/cache.py", "diff": "+cache = {}\n+hits = 0"}]}],
    }
) + "\n```"


class FakeModelClient:
    def __init__(self, chunks: list[str] | None = None, error: Exception | None = None) -> None:
        self.chunks = chunks if chunks is not None else [ANALYSIS_REPLY[:20], ANALYSIS_REPLY[20:]]
        self.error = error
        self.calls: list[dict] = []

    def complete(self, messages, *, stream=False, max_tokens=64000):  # noqa: ANN001
        self.calls.append({"messages": messages, "stream": stream, "max_tokens": max_tokens})
        if self.error is not None:
            raise self.error
        return iter(self.chunks)


class FakePullSource:
    def __init__(self, repo: str) -> None:
        self.repo = repo

    def get_pull(self, number: int) -> GithubPull:
        if number == 404:
            raise GithubNotFoundError("missing")
        return GithubPull.model_validate(
            {
                "id": 1,
                "number": number,
                "title": "Add cache",
                "body": "Caches lookups",
                "user": {"login": "alice"},
                "head": {"ref": "feature", "sha": "feedbeef"},
                "base": {"ref": "main", "sha": "0ff1ce"},
            }
        )

    def list_files(self, number: int) -> list[GithubFile]:
        return [
            GithubFile(filename="src/cache.py", status="added", additions=2, patch="@@ -0,0 +1,2 @@\n+cache = {}\n+hits = 0"),
            GithubFile(filename="logo.png", status="modified"),
        ]

    def list_comments(self, number: int) -> list[GithubComment]:
        return [GithubComment(id=7, body="LGTM", user={"login": "bob"}, kind="issue")]


def _client(config: PrFocusConfig | None = None, **kwargs):  # noqa: ANN003
    pytest.importorskip("fastapi")
    from fastapi.testclient import TestClient

    from prfocus.webapp import create_app

    kwargs.setdefault("model_client", FakeModelClient())
    kwargs.setdefault("pr_source_factory", FakePullSource)
    app = create_app(config or PrFocusConfig(), **kwargs)
    return TestClient(app), app


def _post_webhook(client, event_type: str, payload: dict, delivery_id: str, *, signature: str | None = None):  # noqa: ANN001
    raw = json.dumps(payload).encode("utf-8")
    headers = {
        "Content-Type": "application/json",
        "X-GitHub-Event": event_type,
        "X-GitHub-Delivery": delivery_id,
        "X-Hub-Signature-256": signature if signature is not None else compute_signature(raw, SECRET),
    }
    return client.post("/api/webhooks/github", content=raw, headers=headers)


def test_signed_pull_request_is_listed_first(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GITHUB_WEBHOOK_SECRET", SECRET)
    client, app = _client()

    _post_webhook(client, "issues", build_mock_payload("issues"), "older")
    response = _post_webhook(client, "pull_request", build_mock_payload("pull_request"), "abc123")

    assert response.status_code == 200
    assert response.json() == {"message": "Event processed successfully", "event_id": "abc123"}

    events = client.get("/api/events", params={"limit": 1}).json()
    assert events["total"] == 1
    assert events["events"][0]["id"] == "abc123"
    assert events["events"][0]["type"] == "pull_request"
    assert events["events"][0]["description"] == "PR #42: Test Pull Request"
    assert events["filters"]["limit"] == 1
    assert len(app.state.event_store) == 2


def test_webhook_status_codes(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GITHUB_WEBHOOK_SECRET", raising=False)
    client, _ = _client()
    payload = build_mock_payload("issues")

    unconfigured = _post_webhook(client, "issues", payload, "d1")
    assert unconfigured.status_code == 500
    assert unconfigured.json() == {"error": "Webhook secret not configured"}

    monkeypatch.setenv("GITHUB_WEBHOOK_SECRET", SECRET)
    assert _post_webhook(client, "issues", payload, "d2", signature="").status_code == 401
    assert _post_webhook(client, "issues", payload, "d3", signature="sha256=" + "a" * 64).status_code == 401
    assert _post_webhook(client, "issues", payload, "d4", signature="sha256=test-signature-ignore-verification").status_code == 401

    raw = b"{broken"
    bad_json = client.post(
        "/api/webhooks/github",
        content=raw,
        headers={"X-GitHub-Event": "issues", "X-Hub-Signature-256": compute_signature(raw, SECRET)},
    )
    assert bad_json.status_code == 400

    ping = _post_webhook(client, "ping", build_mock_payload("ping"), "d5")
    assert ping.json() == {"message": "pong"}

    ignored = _post_webhook(client, "pull_request_review", {"action": "submitted"}, "d6")
    assert ignored.status_code == 200
    assert ignored.json()["message"] == "Event ignored"

    assert client.get("/api/events").json()["total"] == 0


def test_webhook_internal_error_returns_500(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GITHUB_WEBHOOK_SECRET", SECRET)

    def _broken(*args, **kwargs):  # noqa: ANN002,ANN003
        raise RuntimeError("normalizer blew up")

    monkeypatch.setattr("prfocus.webhooks.normalize_event", _broken)
    client, _ = _client()

    response = _post_webhook(client, "issues", build_mock_payload("issues"), "d1")

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}


def test_webhook_hooks_run_off_the_event_loop(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GITHUB_WEBHOOK_SECRET", SECRET)
    hooks = HookManager()
    seen: list[bool] = []

    def _on_stored(context: dict) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            seen.append(False)
        else:
            seen.append(True)

    hooks.register(HookName.EVENT_STORED, _on_stored)
    client, _ = _client(hooks=hooks)

    response = _post_webhook(client, "issues", build_mock_payload("issues"), "d1")

    assert response.status_code == 200
    assert seen == [False]


def test_events_filters_and_stats(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GITHUB_WEBHOOK_SECRET", SECRET)
    client, _ = _client()
    _post_webhook(client, "pull_request", build_mock_payload("pull_request"), "pr-1")
    _post_webhook(client, "issues", build_mock_payload("issues"), "issue-1")
    _post_webhook(client, "issue_comment", build_mock_payload("issue_comment", {"isPR": True}), "comment-1")

    only_issues = client.get("/api/events", params={"type": "issue"}).json()
    assert [event["id"] for event in only_issues["events"]] == ["issue-1"]

    by_repo = client.get("/api/events", params={"repository": "testuser/test-repo", "installation_id": 12345}).json()
    assert [event["id"] for event in by_repo["events"]] == ["comment-1", "issue-1", "pr-1"]

    assert client.get("/api/events", params={"repository": "other/repo"}).json()["total"] == 0

    stats = client.get("/api/events", params={"stats": "true"}).json()
    assert stats["stats"]["total_events"] == 3
    assert stats["stats"]["events_by_type"] == {"pull_request": 1, "issue": 1, "pull_request_comment": 1}
    assert stats["recent_events"][0]["description"] == "Comment on PR #24"


def test_events_limit_is_capped_by_config(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GITHUB_WEBHOOK_SECRET", SECRET)
    config = PrFocusConfig(events=EventsConfig(max_limit=2))
    client, _ = _client(config)
    for index in range(4):
        _post_webhook(client, "issues", build_mock_payload("issues"), f"i{index}")

    listing = client.get("/api/events", params={"limit": 100}).json()

    assert listing["total"] == 2
    assert listing["filters"]["limit"] == 2


def test_clear_events_requires_config() -> None:
    store = EventStore()
    client, _ = _client(store=store)
    assert client.delete("/api/events").status_code == 403

    enabled, _ = _client(PrFocusConfig(events=EventsConfig(allow_clear=True)), store=store)
    assert enabled.delete("/api/events").status_code == 200
    assert len(store) == 0


def test_test_webhook_routes_only_exist_in_test_mode(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GITHUB_WEBHOOK_SECRET", raising=False)
    client, _ = _client()
    assert client.post("/api/webhooks/test", json={"event_type": "issues"}).status_code == 404

    test_client, app = _client(PrFocusConfig(webhook=WebhookConfig(test_mode=True)))
    usage = test_client.get("/api/webhooks/test")
    assert usage.status_code == 200
    assert "examples" in usage.json()

    sent = test_client.post("/api/webhooks/test", json={"event_type": "issues", "title": "Flaky test"})
    body = sent.json()
    assert body["status"] == 200
    assert body["webhook_response"]["event_id"].startswith("test-")
    assert app.state.event_store.get_events()[0].payload_summary["issue_title"] == "Flaky test"

    signed_bypass = _post_webhook(
        test_client, "pull_request", build_mock_payload("pull_request"), "t1", signature="sha256=test-signature-ignore-verification"
    )
    assert signed_bypass.status_code == 200


def test_pull_detail_returns_parsed_hunks_and_comments() -> None:
    client, _ = _client()

    response = client.get("/api/repos/acme/widgets/pulls/5")

    assert response.status_code == 200
    body = response.json()
    assert body["pull"]["head"]["sha"] == "feedbeef"
    assert [file["filename"] for file in body["files"]] == ["src/cache.py", "logo.png"]
    hunk = body["files"][0]["hunks"][0]
    assert hunk["new_start"] == 1
    assert [line["type"] for line in hunk["lines"]] == ["add", "add"]
    assert body["files"][1]["hunks"] == []
    assert body["comments"][0]["body"] == "LGTM"

    assert client.get("/api/repos/acme/widgets/pulls/404").status_code == 404


def test_analyze_pr_accepts_wrapped_bodies_and_caches() -> None:
    model = FakeModelClient()
    client, _ = _client(model_client=model)
    fields = {
        "pr_description": "Adds caching",
        "changed_files": ["src/cache.py"],
        "file_changes": "+cache = {}",
        "head_sha": "abc123",
    }

    first = client.post("/api/ai/analyze-pr", json={"data": fields})
    second = client.post("/api/ai/analyze-pr", json={"messages": [{"role": "user", "content": json.dumps(fields)}]})

    assert first.status_code == 200
    first_body = first.json()
    assert first_body["result"]["summary"] == "Adds caching"
    assert first_body["cached"] is False
    assert first_body["cache_key"] == "pr-analysis-abc123"
    group = first_body["changes"][0]["files"][0]
    assert group["file"] == "src/cache.py"
    parsed = group["hunks"][0]["parsed"]
    assert parsed[0]["old_lines"] == 2
    assert [line["new_number"] for line in parsed[0]["lines"]] == [1, 2]

    assert second.status_code == 200
    assert second.json()["cached"] is True
    assert len(model.calls) == 1
    assert model.calls[0]["max_tokens"] == 64000
    assert model.calls[0]["messages"][0]["role"] == "system"


def test_analyze_pr_accepts_camel_case_fields_and_truncates_changes() -> None:
    model = FakeModelClient()
    config = PrFocusConfig(analysis=AnalysisConfig(max_lines=2))
    client, _ = _client(config, model_client=model)

    response = client.post(
        "/api/ai/analyze-pr",
        json={"prDescription": "d", "changedFiles": ["a.py"], "fileChanges": "+1\n+2\n+3\n+4", "max_tokens": 10},
    )

    assert response.status_code == 200
    prompt = model.calls[0]["messages"][1]["content"]
    assert "+2" in prompt
    assert "+3" not in prompt
    assert model.calls[0]["max_tokens"] == 10


def test_analyze_pr_error_statuses() -> None:
    client, _ = _client()
    assert client.post("/api/ai/analyze-pr", json={"pr_description": "only"}).status_code == 400

    fields = {"pr_description": "d", "changed_files": ["a.py"], "file_changes": "+x"}

    invalid, _ = _client(model_client=FakeModelClient(chunks=['{"summary": "no changes"}']))
    rejected = invalid.post("/api/ai/analyze-pr", json=fields)
    assert rejected.status_code == 422
    assert rejected.json()["raw_text"] == '{"summary": "no changes"}'

    failing, _ = _client(model_client=FakeModelClient(error=ProviderError("HTTP 500", status=500, raw_text="oops")))
    upstream = failing.post("/api/ai/analyze-pr", json=fields)
    assert upstream.status_code == 502
    assert upstream.json()["raw_text"] == "oops"


def test_analyze_pr_stream_failure_returns_partial_text() -> None:
    def _chunks():
        yield "summary: partial"
        raise ConnectionError("dropped")

    class StreamingClient(FakeModelClient):
        def complete(self, messages, *, stream=False, max_tokens=64000):  # noqa: ANN001
            return _chunks()

    client, _ = _client(model_client=StreamingClient())
    fields = {"pr_description": "d", "changed_files": ["a.py"], "file_changes": "+x", "stream": True}

    response = client.post("/api/ai/analyze-pr", json=fields)

    assert response.status_code == 502
    assert response.json()["raw_text"] == "summary: partial"


def test_repo_pull_analysis_uses_head_sha_cache_key() -> None:
    model = FakeModelClient()
    client, _ = _client(model_client=model)

    response = client.post("/api/repos/acme/widgets/pulls/5/analyze")

    assert response.status_code == 200
    assert response.json()["cache_key"] == "pr-analysis-feedbeef"
    prompt = model.calls[0]["messages"][1]["content"]
    assert "src/cache.py" in prompt
    assert "Caches lookups" in prompt


class FakeUserSearch:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    def review_requested(self, username: str) -> list[GithubPullSummary]:
        self.calls.append(("review_requested", username))
        return [GithubPullSummary(id=1, number=3, title="Review me", repository="acme/widgets")]

    def authored(self, username: str) -> list[GithubPullSummary]:
        self.calls.append(("authored", username))
        if username == "ghost":
            raise GithubRateLimitError("rate limited")
        return []


def test_user_pulls_lists_review_requests_and_authored() -> None:
    search = FakeUserSearch()
    client, _ = _client(user_pull_search=search)

    response = client.get("/api/users/alice/pulls")

    assert response.status_code == 200
    body = response.json()
    assert body["assigned_prs"][0]["title"] == "Review me"
    assert body["assigned_prs"][0]["repository"] == "acme/widgets"
    assert body["created_prs"] == []
    assert search.calls == [("review_requested", "alice"), ("authored", "alice")]


def test_user_pulls_error_statuses() -> None:
    client, _ = _client(user_pull_search=FakeUserSearch())

    assert client.get("/api/users/bad name/pulls").status_code == 400
    assert client.get("/api/users/ghost/pulls").status_code == 503
