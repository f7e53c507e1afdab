"""Exception taxonomy.

Only whole-request setup failures are allowed to escape the orchestrator.
Everything raised for a single file is caught there and recorded as a
``FileError`` carrying the exception class name.
"""

from __future__ import annotations


class DifflensError(Exception):
    """Base class for every error difflens raises on purpose."""


# Input errors


class InvalidRefError(DifflensError):
    """A ref does not exist, or base and target resolve to the same commit."""


class DiffUnavailableError(DifflensError):
    """The diff for a file cannot be read (binary, too large, gone)."""


class DiffFormatError(DifflensError):
    """A unified diff could not be parsed into hunks."""


class PromptTooLargeError(DifflensError):
    """The prompt for a file exceeds the configured size limit."""


# Oracle errors


class OracleError(DifflensError):
    pass


class ModelUnavailableError(OracleError):
    pass


class ModelTimeoutError(OracleError):
    pass


class OracleCancelledError(OracleError):
    """The model call was abandoned because the review was cancelled."""


class AdjustmentError(DifflensError):
    """A proposed adjustment could not be applied to the file content."""
