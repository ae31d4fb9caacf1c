"""Exceptions shared by the command engine."""

from __future__ import annotations


class AssetLoadError(Exception):
    """Raised when a template, avatar or animation cannot be fetched or decoded."""

    def __init__(self, location: str, reason: str):
        super().__init__(f"Failed to load asset {location}: {reason}")
        self.location = location
        self.reason = reason


class ArgumentMissingError(Exception):
    """Raised when a command lacks a required target or caption.

    The router treats this as a silent no-op rather than a failure.
    """


__all__ = ["ArgumentMissingError", "AssetLoadError"]
