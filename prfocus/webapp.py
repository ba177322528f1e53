"""HTTP API for webhook ingestion, event queries and pull request analysis."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable
from typing import Any

from fastapi import Body, FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from prfocus.analysis import (
    AnalysisRequest,
    AnalysisRequestError,
    PullRequestAnalyzer,
    build_diff_text,
    parse_analysis_request,
)
from prfocus.config import PrFocusConfig, load_effective_config
from prfocus.connectors.base import PullRequestSource, UserPullSearch
from prfocus.connectors.github_gh import (
    GithubNotFoundError,
    GithubPullRequestSource,
    GithubRateLimitError,
    GithubUserPullSearch,
    is_github_login,
)
from prfocus.diff_parser import parse_patch
from prfocus.event_store import EventStore, summarize_event
from prfocus.hooks import HookManager
from prfocus.providers.base import ModelClient, ProviderError
from prfocus.providers.client import HttpModelClient
from prfocus.reconciler import AnalysisValidationError, ModelStreamError
from prfocus.webhooks import (
    TEST_USAGE,
    MalformedPayloadError,
    WebhookAuthenticationError,
    WebhookConfigurationError,
    WebhookDelivery,
    WebhookProcessor,
    build_mock_payload,
    mock_delivery_id,
)

logger = logging.getLogger(__name__)

PullRequestSourceFactory = Callable[[str], PullRequestSource]

_DELIVERY_ERRORS = (WebhookAuthenticationError, WebhookConfigurationError, MalformedPayloadError)


def _delivery_error_response(exc: WebhookAuthenticationError | WebhookConfigurationError | MalformedPayloadError) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=exc.status_code)


def _analysis_error_response(exc: AnalysisValidationError | ModelStreamError | ProviderError) -> JSONResponse:
    if isinstance(exc, AnalysisValidationError):
        logger.warning("Model output failed validation: %s", exc)
        return JSONResponse({"error": str(exc), "raw_text": exc.raw_text}, status_code=422)
    if isinstance(exc, ModelStreamError):
        cause = exc.__cause__
        raw_text = exc.raw_text or (cause.raw_text if isinstance(cause, ProviderError) else "")
        logger.warning("Model output stream failed: %s", exc)
        return JSONResponse({"error": str(exc), "raw_text": raw_text}, status_code=502)
    logger.warning("Model provider request failed: %s", exc)
    return JSONResponse({"error": str(exc), "raw_text": exc.raw_text}, status_code=502)


def create_app(
    config: PrFocusConfig,
    *,
    store: EventStore | None = None,
    hooks: HookManager | None = None,
    model_client: ModelClient | None = None,
    pr_source_factory: PullRequestSourceFactory | None = None,
    user_pull_search: UserPullSearch | None = None,
) -> FastAPI:
    app = FastAPI(title="PR Focus")
    event_store = store if store is not None else EventStore(capacity=config.events.capacity)
    hook_manager = hooks or HookManager()
    processor = WebhookProcessor(config.webhook, event_store, hook_manager)
    analyzer = PullRequestAnalyzer(config.analysis, model_client or HttpModelClient.from_config(config.analysis))

    def _default_source(repo: str) -> PullRequestSource:
        return GithubPullRequestSource.for_repo(repo, config.github)

    source_for = pr_source_factory or _default_source
    user_search = user_pull_search or GithubUserPullSearch.from_config(config.github)

    app.state.config = config
    app.state.event_store = event_store
    app.state.hooks = hook_manager
    app.state.analyzer = analyzer

    def _run_analysis(request: AnalysisRequest) -> JSONResponse:
        try:
            result, cached = analyzer.analyze(request)
        except (AnalysisValidationError, ModelStreamError, ProviderError) as exc:
            return _analysis_error_response(exc)
        return JSONResponse(analyzer.response_payload(request, result, cached))

    def _github_call(func: Callable[[], Any], what: str) -> Any:
        try:
            return func()
        except GithubNotFoundError as exc:
            raise HTTPException(status_code=404, detail=f"{what} not found") from exc
        except GithubRateLimitError as exc:
            raise HTTPException(status_code=503, detail=f"GitHub rate limit while fetching {what}") from exc
        except RuntimeError as exc:
            logger.warning("GitHub request for %s failed: %s", what, exc)
            raise HTTPException(status_code=502, detail=f"GitHub request failed while fetching {what}") from exc

    @app.post("/api/webhooks/github", response_class=JSONResponse)
    async def github_webhook(request: Request) -> JSONResponse:
        delivery = WebhookDelivery(
            event_type=request.headers.get("x-github-event"),
            delivery_id=request.headers.get("x-github-delivery"),
            signature=request.headers.get("x-hub-signature-256"),
            raw_body=await request.body(),
        )
        try:
            outcome = await run_in_threadpool(processor.process, delivery)
        except _DELIVERY_ERRORS as exc:
            return _delivery_error_response(exc)
        except Exception:
            logger.exception("Error processing webhook %s (%s)", delivery.event_type, delivery.delivery_id)
            return JSONResponse({"error": "Internal server error"}, status_code=500)
        return JSONResponse(outcome.body, status_code=outcome.status_code)

    if config.webhook.test_mode:

        @app.get("/api/webhooks/test", response_class=JSONResponse)
        def webhook_test_usage() -> JSONResponse:
            return JSONResponse(TEST_USAGE)

        @app.post("/api/webhooks/test", response_class=JSONResponse)
        def webhook_test(body: dict[str, Any] | None = Body(default=None)) -> JSONResponse:
            custom = body or {}
            event_type = str(custom.get("event_type") or custom.get("eventType") or "pull_request")
            delivery = WebhookDelivery(
                event_type=event_type,
                delivery_id=mock_delivery_id(),
                signature=config.webhook.test_signature,
                raw_body=json.dumps(build_mock_payload(event_type, custom)).encode("utf-8"),
            )
            try:
                outcome = processor.process(delivery)
                body_out, status = outcome.body, outcome.status_code
            except _DELIVERY_ERRORS as exc:
                body_out, status = {"error": str(exc)}, exc.status_code
            except Exception:
                logger.exception("Error processing test webhook %s", event_type)
                body_out, status = {"error": "Internal server error"}, 500
            return JSONResponse(
                {
                    "message": "Test webhook sent successfully",
                    "event_type": event_type,
                    "webhook_response": body_out,
                    "status": status,
                }
            )

    @app.get("/api/events", response_class=JSONResponse)
    def list_events(
        limit: int | None = Query(default=None, ge=1),
        type: str | None = Query(default=None),  # noqa: A002 - public query parameter name
        repository: str | None = Query(default=None),
        installation_id: int | None = Query(default=None),
        stats: bool = Query(default=False),
    ) -> JSONResponse:
        if stats:
            snapshot = event_store.get_stats()
            return JSONResponse(
                {
                    "stats": snapshot.model_dump(mode="json"),
                    "recent_events": [summarize_event(event).model_dump(mode="json") for event in snapshot.recent_activity],
                }
            )

        effective_limit = min(limit or config.events.default_limit, config.events.max_limit)
        events = event_store.get_events(
            limit=effective_limit,
            type=type,
            repository=repository,
            installation_id=installation_id,
        )
        return JSONResponse(
            {
                "events": [summarize_event(event).model_dump(mode="json") for event in events],
                "total": len(events),
                "filters": {
                    "limit": effective_limit,
                    "type": type,
                    "repository": repository,
                    "installation_id": installation_id,
                },
            }
        )

    @app.delete("/api/events", response_class=JSONResponse)
    def clear_events() -> JSONResponse:
        if not config.events.allow_clear:
            raise HTTPException(status_code=403, detail="Clearing events is disabled")
        event_store.clear()
        return JSONResponse({"message": "Events cleared successfully"})

    @app.get("/api/repos/{owner}/{repo}/pulls/{number}", response_class=JSONResponse)
    def pull_detail(owner: str, repo: str, number: int) -> JSONResponse:
        source = source_for(f"{owner}/{repo}")
        pull = _github_call(lambda: source.get_pull(number), f"pull request {owner}/{repo}#{number}")
        files = _github_call(lambda: source.list_files(number), "changed files")
        comments = _github_call(lambda: source.list_comments(number), "comments")
        return JSONResponse(
            {
                "pull": pull.model_dump(mode="json"),
                "files": [
                    {
                        "filename": file.filename,
                        "status": file.status,
                        "additions": file.additions,
                        "deletions": file.deletions,
                        "hunks": [hunk.model_dump(mode="json") for hunk in parse_patch(file.patch)],
                    }
                    for file in files
                ],
                "comments": [comment.model_dump(mode="json") for comment in comments],
            }
        )

    @app.get("/api/users/{username}/pulls", response_class=JSONResponse)
    def user_pulls(username: str) -> JSONResponse:
        if not is_github_login(username):
            raise HTTPException(status_code=400, detail="Invalid GitHub username")
        assigned = _github_call(lambda: user_search.review_requested(username), f"pull requests awaiting {username}")
        created = _github_call(lambda: user_search.authored(username), f"pull requests by {username}")
        return JSONResponse(
            {
                "assigned_prs": [pull.model_dump(mode="json") for pull in assigned],
                "created_prs": [pull.model_dump(mode="json") for pull in created],
            }
        )

    @app.post("/api/ai/analyze-pr", response_class=JSONResponse)
    def analyze_pr(body: Any = Body(default=None)) -> JSONResponse:
        try:
            request = parse_analysis_request(body)
        except AnalysisRequestError as exc:
            return JSONResponse({"error": str(exc)}, status_code=400)
        return _run_analysis(request)

    @app.post("/api/repos/{owner}/{repo}/pulls/{number}/analyze", response_class=JSONResponse)
    def analyze_repo_pull(
        owner: str,
        repo: str,
        number: int,
        body: dict[str, Any] | None = Body(default=None),
    ) -> JSONResponse:
        options = body or {}
        source = source_for(f"{owner}/{repo}")
        pull = _github_call(lambda: source.get_pull(number), f"pull request {owner}/{repo}#{number}")
        files = _github_call(lambda: source.list_files(number), "changed files")
        file_changes = build_diff_text(files)
        if not file_changes:
            return JSONResponse({"error": "Pull request has no textual changes"}, status_code=400)

        try:
            request = AnalysisRequest(
                pr_description=pull.body or pull.title,
                changed_files=[file.filename for file in files],
                file_changes=file_changes,
                head_sha=pull.head.sha or None,
                stream=bool(options.get("stream", False)),
                max_tokens=options.get("max_tokens"),
            )
        except ValidationError as exc:
            return JSONResponse({"error": f"Invalid analysis options: {exc.error_count()} error(s)"}, status_code=400)
        return _run_analysis(request)

    return app


def create_app_from_env() -> FastAPI:
    """Uvicorn factory entrypoint for --reload mode."""
    repo_path = os.environ.get("PRFOCUS_REPO_PATH", ".")
    config = load_effective_config(repo_path=repo_path)
    return create_app(config)
