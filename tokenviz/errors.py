"""Errors surfaced to callers of the ingestion core."""
from __future__ import annotations


class TokenVizError(Exception):
    """Base class for errors raised by tokenviz."""


class StoreError(TokenVizError):
    """Raised when the aggregate store cannot be rebuilt or queried.

    A failed rebuild leaves the previously committed snapshot in place.
    """


class AliasDocumentError(TokenVizError):
    """Raised when the alias document cannot be written."""
