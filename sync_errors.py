"""Errors raised while synchronizing a Markdown tree into Confluence.

Everything derives from SyncError so a caller can catch one type per document
and keep going with the rest of the run.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base exception for all publisher errors."""


class DocumentError(SyncError):
    """A local document could not be read or its front matter parsed."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Could not load {path}:\n\t{reason}")
        self.path = path
        self.reason = reason


class AncestorResolutionError(SyncError):
    """Finding or creating a folder page failed."""

    def __init__(self, folder: str, path: str, reason: str):
        super().__init__(f"Error resolving parent page '{folder}' for {path}: {reason}")
        self.folder = folder
        self.path = path


class UploadError(SyncError):
    """A search/create/update call for a document failed."""

    def __init__(self, path: str, title: str, operation: str, reason: str):
        super().__init__(f"Error {operation} '{title}' ({path}): {reason}")
        self.path = path
        self.title = title
        self.operation = operation


class UploadConflictError(UploadError):
    """Confluence rejected the page version; re-read and retry."""
