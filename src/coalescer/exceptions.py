"""
Coalescer-specific runtime exceptions.
"""

from __future__ import annotations

import typing as t


class BatchError(RuntimeError):
    """
    Base class for every failure delivered to a waiting caller.
    """


class TransportError(BatchError):
    """
    The aggregated call itself failed or returned a non-success status.

    The same instance is set on every waiter of the affected snapshot.

    Parameters
    ----------
    message : str
        Human readable failure summary.
    status_code : int | None, optional
        HTTP status of the aggregated response, when one was received.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PerOperationError(BatchError):
    """
    The aggregated response carried an explicit error for one operation.

    Parameters
    ----------
    operation_id : str
        Correlation id of the failed operation.
    detail : typing.Any
        Error payload exactly as decoded from the response entry.
    """

    def __init__(self, *, operation_id: str, detail: t.Any) -> None:
        super().__init__(f"Operation {operation_id} failed: {detail}")
        self.operation_id = operation_id
        self.detail = detail


class CancellationError(BatchError):
    """Raised to every queued waiter discarded by ``Batcher.clear``."""

    def __init__(self, *, operation_id: str) -> None:
        super().__init__(f"Operation {operation_id} cancelled before dispatch")
        self.operation_id = operation_id


class MissingResponseError(BatchError):
    """Raised when a submitted id has no entry in a successful response."""

    def __init__(self, *, operation_id: str) -> None:
        super().__init__(f"Missing result for operation {operation_id}")
        self.operation_id = operation_id


class ConfigurationError(ValueError):
    """Invalid or missing batcher configuration."""
