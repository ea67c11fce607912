"""Compliance operations: retention expiry and customer erasure."""

from .expiry import ExpiryManager, PurgeReport

__all__ = ["ExpiryManager", "PurgeReport"]
