"""Exception types raised by vaultpress."""

from __future__ import annotations


class VaultpressError(Exception):
    """Base class for all vaultpress errors."""


class ConfigurationError(VaultpressError):
    """Raised when the build cannot start (bad options, unreadable vault root)."""


class MediaProcessingError(VaultpressError):
    """Raised when a single media asset cannot be read or encoded."""


class DiagramRenderError(VaultpressError):
    """Raised by diagram renderers when a diagram cannot be produced."""


class BuildCancelled(VaultpressError):
    """Raised between build stages once the cancel event is set."""
