"""Shared utility helpers."""

from .cache import TTLCache, MISSING

__all__ = ["TTLCache", "MISSING"]
