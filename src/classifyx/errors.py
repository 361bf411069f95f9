"""Error types shared by the classification pipeline."""

from __future__ import annotations


class InvalidInputError(ValueError):
    """Malformed request data: bad buffer dimensions, empty scores, undecodable images."""


class DependencyFailureError(RuntimeError):
    """The inference engine rejected or failed on a request."""
