"""Dependency cache resolution."""

from hermetica.resolver.cache import (
    Resolver,
    YarnOfflineResolver,
    compute_cache_hash,
    load_cache,
    verify_cache,
)
from hermetica.resolver.fetch import Fetcher, HttpFetcher

__all__ = [
    "Fetcher",
    "HttpFetcher",
    "Resolver",
    "YarnOfflineResolver",
    "compute_cache_hash",
    "load_cache",
    "verify_cache",
]
