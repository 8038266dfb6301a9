"""
Pending operation registry.
Holds queued operations together with their waiters in one table keyed by
correlation id, so an operation and its waiter are always removed together.
"""

from __future__ import annotations

import asyncio
import itertools
import types
import typing as t
from dataclasses import dataclass, field

import structlog

from coalescer.models import Operation
from coalescer.status import OperationState

log = structlog.get_logger(__name__)


@dataclass
class _PendingOperation:
    """An operation and the waiter its caller observes."""

    operation: Operation
    future: asyncio.Future[t.Any]
    state: OperationState = OperationState.QUEUED

    @property
    def operation_id(self) -> str:
        return self.operation.id

    def resolve(self, value: t.Any) -> bool:
        """
        Complete the waiter with a result, at most once.

        Returns
        -------
        bool
            ``True`` if this call completed the waiter.
        """
        if self.future.done():
            return False
        self.future.set_result(value)
        self.state = OperationState.COMPLETED
        return True

    def fail(self, error: BaseException) -> bool:
        """
        Complete the waiter with an exception, at most once.

        Returns
        -------
        bool
            ``True`` if this call completed the waiter.
        """
        if self.future.done():
            return False
        self.future.set_exception(error)
        self.state = OperationState.COMPLETED
        return True


@dataclass(frozen=True)
class Snapshot:
    """Operations captured together for one aggregated call."""

    batch_id: str
    entries: t.Mapping[str, _PendingOperation] = field(
        default_factory=lambda: types.MappingProxyType({})
    )

    def __len__(self) -> int:
        return len(self.entries)

    def __bool__(self) -> bool:
        return bool(self.entries)

    @property
    def operations(self) -> list[Operation]:
        return [entry.operation for entry in self.entries.values()]


class OperationRegistry:
    """
    Registry of queued operations in arrival order.

    Notes
    -----
    Every method is synchronous. On a single event loop this makes ``enqueue``
    and ``drain`` indivisible with respect to each other.
    """

    def __init__(self) -> None:
        self._pending: dict[str, _PendingOperation] = {}
        self._operation_ids = itertools.count(start=1)
        self._batch_ids = itertools.count(start=1)

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, operation_id: object) -> bool:
        return operation_id in self._pending

    def enqueue(
        self,
        *,
        endpoint: str,
        method: str,
        body: t.Any = None,
        headers: dict[str, str] | None = None,
    ) -> _PendingOperation:
        """
        Queue an operation under a fresh correlation id.

        Parameters
        ----------
        endpoint : str
            Target endpoint of the operation.
        method : str
            HTTP method of the operation.
        body : typing.Any, optional
            JSON-serializable body.
        headers : dict[str, str] | None, optional
            Per-operation headers.

        Returns
        -------
        _PendingOperation
            The stored entry, whose ``future`` is the caller's waiter.
        """
        loop = asyncio.get_running_loop()
        operation = Operation(
            id=f"op-{next(self._operation_ids)}",
            endpoint=endpoint,
            method=method.upper(),
            body=body,
            headers=headers,
        )
        entry = _PendingOperation(operation=operation, future=loop.create_future())
        self._pending[operation.id] = entry
        return entry

    def drain(self) -> Snapshot:
        """
        Remove every queued entry and return them as an immutable snapshot.

        Returns
        -------
        Snapshot
            Captured entries in arrival order. Empty if nothing was queued.
        """
        pending, self._pending = self._pending, {}
        for entry in pending.values():
            entry.state = OperationState.IN_FLIGHT
        snapshot = Snapshot(
            batch_id=f"batch-{next(self._batch_ids)}" if pending else "",
            entries=types.MappingProxyType(pending),
        )
        log.debug(event="Drained registry", batch_id=snapshot.batch_id, drained_count=len(pending))
        return snapshot

    def discard(self) -> list[_PendingOperation]:
        """
        Remove every queued entry without capturing a snapshot.

        Returns
        -------
        list[_PendingOperation]
            Discarded entries in arrival order.
        """
        pending, self._pending = self._pending, {}
        return list(pending.values())
