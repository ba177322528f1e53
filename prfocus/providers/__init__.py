"""Model provider strategies and the HTTP client."""

from .base import ModelClient, ProviderError, ProviderSpec
from .client import HttpModelClient
from .registry import PROVIDERS, ResolvedProvider, get_provider, resolve_provider

__all__ = [
    "HttpModelClient",
    "ModelClient",
    "PROVIDERS",
    "ProviderError",
    "ProviderSpec",
    "ResolvedProvider",
    "get_provider",
    "resolve_provider",
]
