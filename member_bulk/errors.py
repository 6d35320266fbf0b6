from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models.bulk_result import BulkResult

"""Batch-level failures of the bulk pipeline.

Row-level problems never appear here; they are collected as reasons on the
row. Everything below aborts the whole upload with one message.
"""

__all__ = [
    "BulkInputError",
    "NoFileError",
    "UploadTooLargeError",
    "BulkCommitError",
]


class BulkInputError(Exception):
    """The upload itself is unusable (file, sheet or header problem)."""


class NoFileError(BulkInputError):
    pass


class UploadTooLargeError(BulkInputError):
    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"upload is {size} bytes, limit is {limit} bytes")
        self.size = size
        self.limit = limit


class BulkCommitError(Exception):
    """The write transaction failed and was rolled back.

    Carries the row-level report computed before the write phase so callers
    can still show which rows were rejected and why.
    """

    def __init__(self, message: str, result: BulkResult) -> None:
        super().__init__(message)
        self.result = result
