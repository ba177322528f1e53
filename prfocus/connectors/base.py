"""Connector interfaces for pull request sources."""

from __future__ import annotations

from typing import Protocol

from prfocus.connectors.github_gh import GithubComment, GithubFile, GithubPull, GithubPullSummary


class PullRequestSource(Protocol):
    def get_pull(self, number: int) -> GithubPull: ...

    def list_files(self, number: int) -> list[GithubFile]: ...

    def list_comments(self, number: int) -> list[GithubComment]: ...


class UserPullSearch(Protocol):
    def review_requested(self, username: str) -> list[GithubPullSummary]: ...

    def authored(self, username: str) -> list[GithubPullSummary]: ...
