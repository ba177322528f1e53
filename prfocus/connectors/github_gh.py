"""Read-only GitHub pull request source backed by the gh CLI."""

from __future__ import annotations

import itertools
import json
import logging
import re
import subprocess
import threading
import time
import urllib.parse
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from prfocus.config import GithubConfig

_RATE_LIMIT_RE = re.compile(r"(?:api|secondary) rate limit", re.IGNORECASE)
_NOT_FOUND_RE = re.compile(r"\(HTTP 404\)|Not Found", re.IGNORECASE)
_ACCEPT_HEADER = "Accept: application/vnd.github+json"
_GITHUB_LOGIN_RE = re.compile(r"[A-Za-z0-9](?:[A-Za-z0-9-]{0,38})")
logger = logging.getLogger(__name__)


class GithubUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    login: str
    type: str | None = None
    avatar_url: str | None = None


class GithubRef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    ref: str = ""
    sha: str = ""


class GithubPull(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    number: int
    title: str
    body: str | None = None
    state: str = "open"
    draft: bool = False
    user: GithubUser | None = None
    head: GithubRef = Field(default_factory=GithubRef)
    base: GithubRef = Field(default_factory=GithubRef)
    html_url: str | None = None
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None


class GithubFile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    filename: str
    status: str = "modified"
    additions: int = 0
    deletions: int = 0
    changes: int = 0
    patch: str | None = None


class GithubComment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    body: str | None = None
    user: GithubUser | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    html_url: str | None = None
    # Set on review comments only.
    path: str | None = None
    line: int | None = None
    kind: str = "issue"


class GithubPullSummary(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    number: int
    title: str
    state: str = "open"
    draft: bool = False
    user: GithubUser | None = None
    repository: str = ""
    html_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class GithubRateLimitError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        reset_at: datetime | None = None,
        retry_after_seconds: float | None = None,
    ) -> None:
        super().__init__(message)
        self.reset_at = reset_at
        self.retry_after_seconds = retry_after_seconds


class GithubNotFoundError(LookupError):
    pass


class RateLimitBackoff:
    """Pause shared by every gh call made through one client after a rate limit."""

    def __init__(self, *, base_seconds: float = 5.0, max_sleep_seconds: float = 90.0) -> None:
        self.base_seconds = max(1.0, base_seconds)
        self.max_sleep_seconds = max(1.0, max_sleep_seconds)
        self._lock = threading.Lock()
        self._resume_at = 0.0

    def pause(self) -> None:
        while True:
            with self._lock:
                remaining = self._resume_at - time.monotonic()
            if remaining <= 0:
                return
            time.sleep(remaining)

    def extend(self, seconds: float) -> None:
        deadline = time.monotonic() + max(0.0, seconds)
        with self._lock:
            if deadline > self._resume_at:
                self._resume_at = deadline

    def delay_for(self, *, reset_at: datetime | None, attempt: int) -> float:
        if reset_at is None:
            return float(min(self.max_sleep_seconds, max(1.0, self.base_seconds * 2**attempt)))
        seconds_left = (reset_at - datetime.now(UTC)).total_seconds()
        # Beyond the cap the caller gives up rather than sleeping.
        if seconds_left > self.max_sleep_seconds:
            return seconds_left
        return max(1.0, seconds_left + 1.0)


class GithubGhClient:
    def __init__(
        self,
        repo: str,
        gh_bin: str = "gh",
        *,
        rate_limit_retries: int = 2,
        secondary_backoff_base_seconds: float = 5.0,
        rate_limit_max_sleep_seconds: float = 90.0,
    ) -> None:
        self.repo = repo
        self.gh_bin = gh_bin
        self.retries = max(0, rate_limit_retries)
        self.backoff = RateLimitBackoff(
            base_seconds=secondary_backoff_base_seconds,
            max_sleep_seconds=rate_limit_max_sleep_seconds,
        )

    def _gh(self, path: str) -> subprocess.CompletedProcess[str]:
        cmd = [self.gh_bin, "api", path, "-X", "GET", "-H", _ACCEPT_HEADER]
        return subprocess.run(cmd, text=True, capture_output=True, check=False)

    def _repo_path(self, endpoint: str) -> str:
        if endpoint.startswith(("repos/", "search/")):
            return endpoint
        return f"repos/{self.repo}/{endpoint.lstrip('/')}"

    def get_paginated(self, endpoint: str, per_page: int = 100, max_items: int | None = None) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        for page in itertools.count(1):
            batch = self.get_page(endpoint, page=page, per_page=per_page)
            items.extend(batch)
            if max_items is not None and len(items) >= max_items:
                return items[:max_items]
            if len(batch) < per_page:
                break
        return items

    def get_page(self, endpoint: str, *, page: int, per_page: int = 100) -> list[dict[str, Any]]:
        separator = "&" if "?" in endpoint else "?"
        payload = self.get_json(f"{endpoint}{separator}per_page={per_page}&page={page}")
        return payload if isinstance(payload, list) else []

    def get_json(self, endpoint: str) -> Any:
        path = self._repo_path(endpoint)
        attempts = self.retries + 1
        for attempt in range(attempts):
            self.backoff.pause()
            proc = self._gh(path)
            if proc.returncode == 0:
                text = proc.stdout.strip()
                return json.loads(text) if text else None

            stderr = proc.stderr.strip()
            if _NOT_FOUND_RE.search(stderr):
                raise GithubNotFoundError(f"Not found: {path}")
            if not _RATE_LIMIT_RE.search(stderr):
                raise RuntimeError(f"gh api {path} failed: {stderr}")

            reset_at = self.rate_limit_reset_at()
            delay = self.backoff.delay_for(reset_at=reset_at, attempt=attempt)
            self.backoff.extend(delay)
            logger.warning(
                "Rate limited on %s (try %s of %s); pausing %.1fs, reset %s",
                path,
                attempt + 1,
                attempts,
                delay,
                reset_at.isoformat() if reset_at else "unknown",
            )
            if attempt + 1 < attempts and delay <= self.backoff.max_sleep_seconds:
                continue
            raise GithubRateLimitError(f"gh api rate limited: {path}\n{stderr}", reset_at=reset_at, retry_after_seconds=delay)
        raise RuntimeError(f"gh api {path} exhausted {attempts} attempts")

    def rate_limit_reset_at(self) -> datetime | None:
        """Latest reset time among exhausted rate limit buckets, if any."""
        proc = self._gh("rate_limit")
        if proc.returncode != 0 or not proc.stdout.strip():
            return None
        try:
            data = json.loads(proc.stdout)
        except json.JSONDecodeError:
            return None

        buckets = [data.get("rate")]
        if isinstance(data.get("resources"), dict):
            buckets.extend(data["resources"].values())
        resets = [
            bucket["reset"]
            for bucket in buckets
            if isinstance(bucket, dict)
            and isinstance(bucket.get("remaining"), int)
            and bucket["remaining"] <= 0
            and isinstance(bucket.get("reset"), int)
        ]
        if not resets:
            return None
        return datetime.fromtimestamp(max(resets), UTC)


class GithubPullRequestSource:
    """Fetches a pull request, its changed files and its comments for one repo."""

    def __init__(self, client: GithubGhClient, *, max_files: int | None = 3000) -> None:
        self.client = client
        self.max_files = max_files

    @classmethod
    def for_repo(cls, repo: str, config: GithubConfig) -> GithubPullRequestSource:
        return cls(
            GithubGhClient(
                repo=repo,
                gh_bin=config.gh_bin,
                rate_limit_retries=config.rate_limit_retries,
                secondary_backoff_base_seconds=config.secondary_backoff_base_seconds,
                rate_limit_max_sleep_seconds=config.rate_limit_max_sleep_seconds,
            )
        )

    @property
    def repo(self) -> str:
        return self.client.repo

    def get_pull(self, number: int) -> GithubPull:
        payload = self.client.get_json(f"pulls/{number}")
        return GithubPull.model_validate(payload)

    def list_files(self, number: int) -> list[GithubFile]:
        payload = self.client.get_paginated(f"pulls/{number}/files", max_items=self.max_files)
        files = [GithubFile.model_validate(item) for item in payload]
        logger.debug("Fetched %s changed files for %s#%s", len(files), self.repo, number)
        return files

    def list_comments(self, number: int) -> list[GithubComment]:
        """Review comments and issue comments, oldest first."""
        comments: list[GithubComment] = []
        for item in self.client.get_paginated(f"pulls/{number}/comments"):
            comments.append(GithubComment.model_validate({**item, "kind": "review"}))
        for item in self.client.get_paginated(f"issues/{number}/comments"):
            comments.append(GithubComment.model_validate({**item, "kind": "issue"}))
        epoch = datetime.min.replace(tzinfo=UTC)
        comments.sort(key=lambda comment: (comment.created_at or epoch, comment.id))
        return comments


def is_github_login(username: str) -> bool:
    return bool(_GITHUB_LOGIN_RE.fullmatch(username))


def _repository_full_name(item: dict[str, Any]) -> str:
    url = item.get("repository_url") or str(item.get("html_url") or "").split("/pull/")[0]
    return "/".join(str(url).rstrip("/").split("/")[-2:])


class GithubUserPullSearch:
    """Open pull requests awaiting a user's review, or authored by them, across all repos."""

    def __init__(self, client: GithubGhClient, *, limit: int = 50) -> None:
        self.client = client
        self.limit = limit

    @classmethod
    def from_config(cls, config: GithubConfig) -> GithubUserPullSearch:
        return cls(
            GithubGhClient(
                repo="",
                gh_bin=config.gh_bin,
                rate_limit_retries=config.rate_limit_retries,
                secondary_backoff_base_seconds=config.secondary_backoff_base_seconds,
                rate_limit_max_sleep_seconds=config.rate_limit_max_sleep_seconds,
            )
        )

    def review_requested(self, username: str) -> list[GithubPullSummary]:
        return self.search(f"is:pr is:open review-requested:{username}")

    def authored(self, username: str) -> list[GithubPullSummary]:
        return self.search(f"is:pr is:open author:{username}")

    def search(self, query: str) -> list[GithubPullSummary]:
        params = urllib.parse.urlencode({"q": query, "sort": "updated", "order": "desc", "per_page": self.limit})
        payload = self.client.get_json(f"search/issues?{params}")
        items = payload.get("items") if isinstance(payload, dict) else None
        if not isinstance(items, list):
            return []
        pulls = [
            GithubPullSummary.model_validate({**item, "repository": _repository_full_name(item)})
            for item in items
            if isinstance(item, dict)
        ]
        logger.debug("Search %r matched %s pull requests", query, len(pulls))
        return pulls
