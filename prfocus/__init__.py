"""PR Focus: GitHub webhook event log and pull request analysis service."""

__version__ = "0.1.0"
