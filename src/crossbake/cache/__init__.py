"""Dependency cache layers keyed by (fingerprint, target triple)."""

from .store import CacheLayer, CacheStore

__all__ = ["CacheLayer", "CacheStore"]
