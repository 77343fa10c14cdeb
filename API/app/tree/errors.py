"""Error kinds raised by the tree subsystem.

Validation errors are raised before the write transaction opens, so a caller
that sees one of them can rely on nothing having been mutated. Only
``TransactionFailedError`` originates inside the transaction boundary, and it
is raised after the rollback.
"""
from __future__ import annotations

NOT_FOUND = "NOT_FOUND"
INVALID_ID = "INVALID_ID"
CONFLICT = "CONFLICT"
TRANSACTION_FAILED = "TRANSACTION_FAILED"
IMPORT_EMPTY = "IMPORT_EMPTY"


class TreeError(Exception):
    code = "TREE_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class SubjectNotFoundError(TreeError):
    code = NOT_FOUND

    def __init__(self, subject_id):
        super().__init__("Subject not found", {"subject_id": str(subject_id)})


class InvalidIdError(TreeError):
    code = INVALID_ID

    def __init__(self, ids, reason: str = "ids do not belong to this subject"):
        self.ids = sorted({str(i) for i in ids})
        super().__init__(f"Invalid id(s) in submitted tree: {reason}", {"ids": self.ids, "reason": reason})


class TreeConflictError(TreeError):
    code = CONFLICT

    def __init__(self, expected: int, actual: int | None):
        super().__init__(
            "Tree was modified by another request",
            {"expected_version": expected, "actual_version": actual},
        )


class TransactionFailedError(TreeError):
    code = TRANSACTION_FAILED

    def __init__(self, message: str = "Tree write failed; no changes were committed"):
        super().__init__(message)
