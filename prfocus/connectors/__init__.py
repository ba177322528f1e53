"""Connector interfaces and implementations."""

from .base import PullRequestSource, UserPullSearch
from .github_gh import GithubGhClient, GithubPullRequestSource, GithubUserPullSearch

__all__ = ["GithubGhClient", "GithubPullRequestSource", "GithubUserPullSearch", "PullRequestSource", "UserPullSearch"]
