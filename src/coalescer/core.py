"""
Core engine containing the request coalescing mechanism.
The batcher collects operations in a registry, captures them as a snapshot
when either threshold is met, sends the snapshot as one aggregated call and
routes every decoded result back to the caller that queued it.
"""

from __future__ import annotations

import asyncio
import typing as t

import httpx
import structlog
from pydantic import ValidationError

from coalescer.config import BatcherConfig
from coalescer.exceptions import (
    CancellationError,
    MissingResponseError,
    PerOperationError,
    TransportError,
)
from coalescer.models import BatchRequest, BatcherStats, BatchResult, batch_result_list_adapter
from coalescer.registry import OperationRegistry, Snapshot
from coalescer.utils.logging import logging_context

log = structlog.get_logger(__name__)

ClientFactory = t.Callable[[], httpx.AsyncClient]


class Batcher:
    """
    Manage the registry, the deferred timer, and the dispatch lifecycle.

    Operations are sent as one aggregated call when either:
    - The registry reaches ``max_batch_size`` pending operations, OR
    - ``max_wait_time_ms`` elapses after the first operation queued into an
      empty registry.

    Notes
    -----
    All registry and timer mutation happens synchronously on the running
    event loop. Only the aggregated network call suspends, and it runs in its
    own task so new operations keep being accepted meanwhile.
    """

    def __init__(
        self,
        max_batch_size: int,
        max_wait_time_ms: int,
        batch_endpoint: str,
        client_factory: ClientFactory | None = None,
    ):
        """
        Initialize the batcher.

        Parameters
        ----------
        max_batch_size : int
            Flush immediately when this many operations are pending.
        max_wait_time_ms : int
            Flush this many milliseconds after the deferred timer is armed.
        batch_endpoint : str
            Destination of the aggregated call.
        client_factory : typing.Callable[[], httpx.AsyncClient] | None, optional
            Builds the HTTP client used for each aggregated call.
        """
        self._config = BatcherConfig.build(
            max_batch_size=max_batch_size,
            max_wait_time_ms=max_wait_time_ms,
            batch_endpoint=batch_endpoint,
        )
        self._registry = OperationRegistry()
        self._window_task: asyncio.Task[None] | None = None
        self._inflight_tasks: set[asyncio.Task[None]] = set()
        self._client_factory: ClientFactory = client_factory or (
            lambda: httpx.AsyncClient(timeout=30.0)
        )

        log.debug(
            event="Initialized Batcher",
            max_batch_size=max_batch_size,
            max_wait_time_ms=max_wait_time_ms,
            batch_endpoint=batch_endpoint,
        )

    @classmethod
    def from_config(
        cls,
        config: BatcherConfig,
        client_factory: ClientFactory | None = None,
    ) -> Batcher:
        return cls(
            max_batch_size=config.max_batch_size,
            max_wait_time_ms=config.max_wait_time_ms,
            batch_endpoint=config.batch_endpoint,
            client_factory=client_factory,
        )

    @property
    def config(self) -> BatcherConfig:
        return self._config

    def enqueue(
        self,
        endpoint: str,
        method: str,
        body: t.Any = None,
        headers: dict[str, str] | None = None,
    ) -> asyncio.Future[t.Any]:
        """
        Queue an operation and return its waiter without suspending.

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
        asyncio.Future[typing.Any]
            Completes with the operation's ``data`` or fails with a
            ``BatchError`` subclass.
        """
        entry = self._registry.enqueue(
            endpoint=endpoint,
            method=method,
            body=body,
            headers=headers,
        )
        pending_count = len(self._registry)
        log.debug(
            event="Queued operation",
            operation_id=entry.operation_id,
            endpoint=endpoint,
            method=entry.operation.method,
            pending_count=pending_count,
        )

        if pending_count >= self._config.max_batch_size:
            log.debug(
                event="Batch size reached",
                max_batch_size=self._config.max_batch_size,
            )
            self._dispatch(snapshot=self._capture())
        elif self._window_task is None:
            log.debug(
                event="Starting batch window timer",
                max_wait_time_ms=self._config.max_wait_time_ms,
            )
            self._window_task = asyncio.create_task(
                coro=self._window_timer(),
                name=f"batch_window_timer_{id(self)}",
            )
        return entry.future

    async def submit(
        self,
        endpoint: str,
        method: str,
        body: t.Any = None,
        headers: dict[str, str] | None = None,
    ) -> t.Any:
        """
        Queue an operation and wait for its routed result.

        Returns
        -------
        typing.Any
            The ``data`` of the operation's response entry.
        """
        return await self.enqueue(endpoint=endpoint, method=method, body=body, headers=headers)

    async def _window_timer(self) -> None:
        """Flush the registry once the batch window elapses."""
        try:
            await asyncio.sleep(self._config.max_wait_time_seconds)
        except asyncio.CancelledError:
            log.debug(event="Window timer cancelled")
            raise
        if self._window_task is asyncio.current_task():
            self._window_task = None
        log.debug(event="Batch window elapsed", pending_count=len(self._registry))
        self._dispatch(snapshot=self._capture())

    def _cancel_window_timer(self) -> asyncio.Task[None] | None:
        """
        Disarm the deferred timer.

        Returns
        -------
        asyncio.Task[None] | None
            The cancelled timer task, if one was armed.
        """
        window_task, self._window_task = self._window_task, None
        if window_task is None or window_task.done():
            return None
        if window_task is asyncio.current_task():
            return None
        window_task.cancel()
        return window_task

    def _capture(self) -> Snapshot:
        self._cancel_window_timer()
        return self._registry.drain()

    def _dispatch(self, *, snapshot: Snapshot) -> asyncio.Task[None] | None:
        """
        Send a captured snapshot in the background.

        Parameters
        ----------
        snapshot : Snapshot
            Captured operations. Nothing is sent when empty.

        Returns
        -------
        asyncio.Task[None] | None
            The dispatch task, or ``None`` for an empty snapshot.
        """
        if not snapshot:
            return None
        log.info(
            event="Submitting batch",
            batch_id=snapshot.batch_id,
            request_count=len(snapshot),
        )
        # the task copies the current context, so its events carry batch_id
        with logging_context(batch_id=snapshot.batch_id):
            task = asyncio.create_task(
                coro=self._process_snapshot(snapshot=snapshot),
                name=f"batch_dispatch_{snapshot.batch_id}",
            )
        self._inflight_tasks.add(task)
        task.add_done_callback(self._inflight_tasks.discard)
        return task

    async def _process_snapshot(self, *, snapshot: Snapshot) -> None:
        """
        Send one aggregated call and complete every waiter of the snapshot.

        Parameters
        ----------
        snapshot : Snapshot
            Non-empty captured operations.
        """
        if not snapshot:
            raise ValueError("Cannot process an empty snapshot")

        try:
            try:
                results = await self._send_snapshot(snapshot=snapshot)
            except TransportError as error:
                log.error(
                    event="Batch request failed",
                    batch_id=snapshot.batch_id,
                    request_count=len(snapshot),
                    status_code=error.status_code,
                    error=str(error),
                )
                for entry in snapshot.entries.values():
                    entry.fail(error)
                return

            seen = self._apply_batch_results(snapshot=snapshot, results=results)
            log.info(
                event="Mapped batch results to operations",
                batch_id=snapshot.batch_id,
                resolved_count=len(seen.intersection(snapshot.entries)),
                request_count=len(snapshot),
            )
            self._fail_missing_results(snapshot=snapshot, seen=seen)
        except BaseException as error:
            log.error(
                event="Batch dispatch aborted",
                batch_id=snapshot.batch_id,
                error=repr(error),
            )
            aborted = TransportError(f"Batch dispatch aborted: {error!r}")
            aborted.__cause__ = error
            for entry in snapshot.entries.values():
                entry.fail(aborted)
            raise

    async def _send_snapshot(self, *, snapshot: Snapshot) -> list[t.Any]:
        """
        Perform the aggregated call for a snapshot.

        Parameters
        ----------
        snapshot : Snapshot
            Captured operations, sent in arrival order.

        Returns
        -------
        list[typing.Any]
            Decoded, not yet validated, response entries.

        Raises
        ------
        TransportError
            If the payload cannot be encoded, the call fails, the status is
            not a success, or the body is not a JSON list.
        """
        try:
            payload = BatchRequest(requests=snapshot.operations).to_wire()
        except (TypeError, ValueError) as error:
            raise TransportError(f"Could not encode batch request: {error}") from error

        try:
            async with self._client_factory() as client:
                response = await client.post(url=self._config.batch_endpoint, json=payload)
                response.raise_for_status()
        except httpx.HTTPStatusError as error:
            status_code = error.response.status_code
            raise TransportError(
                f"Batch request failed: {status_code}",
                status_code=status_code,
            ) from error
        except Exception as error:
            # includes httpx.InvalidURL, httpx.StreamError and client_factory failures
            raise TransportError(f"Batch request failed: {error!r}") from error

        try:
            return batch_result_list_adapter.validate_python(response.json())
        except ValueError as error:
            raise TransportError(
                "Batch response is not a JSON list",
                status_code=response.status_code,
            ) from error

    def _apply_batch_results(
        self,
        *,
        snapshot: Snapshot,
        results: list[t.Any],
    ) -> set[str]:
        """
        Complete waiters from decoded response entries.

        Parameters
        ----------
        snapshot : Snapshot
            Snapshot the response belongs to.
        results : list[typing.Any]
            Decoded response entries.

        Returns
        -------
        set[str]
            Ids observed in the response, including ids unknown to the snapshot.
        """
        seen: set[str] = set()
        for item in results:
            try:
                result = BatchResult.model_validate(item)
            except ValidationError:
                log.debug(event="Batch result missing id", batch_id=snapshot.batch_id)
                continue
            if result.id in seen:
                log.debug(
                    event="Duplicate batch result ignored",
                    batch_id=snapshot.batch_id,
                    operation_id=result.id,
                )
                continue
            seen.add(result.id)
            entry = snapshot.entries.get(result.id)
            if entry is None:
                log.debug(
                    event="Batch result for unknown operation ignored",
                    batch_id=snapshot.batch_id,
                    operation_id=result.id,
                )
                continue
            if result.failed:
                entry.fail(PerOperationError(operation_id=result.id, detail=result.error))
            else:
                entry.resolve(result.data)
        return seen

    def _fail_missing_results(self, *, snapshot: Snapshot, seen: set[str]) -> None:
        """
        Fail waiters whose ids did not appear in the response.

        Parameters
        ----------
        snapshot : Snapshot
            Snapshot the response belongs to.
        seen : set[str]
            Ids observed in the response.
        """
        missing = [
            entry for operation_id, entry in snapshot.entries.items() if operation_id not in seen
        ]
        if not missing:
            return
        log.error(
            event="Missing batch results",
            batch_id=snapshot.batch_id,
            missing_count=len(missing),
        )
        for entry in missing:
            entry.fail(MissingResponseError(operation_id=entry.operation_id))

    async def flush(self) -> int:
        """
        Send whatever is pending now, regardless of thresholds.

        Returns
        -------
        int
            Number of operations sent. ``0`` means no call was made.

        Notes
        -----
        Waits for the aggregated call to complete. Cancelling the caller does
        not cancel the call itself.
        """
        snapshot = self._capture()
        task = self._dispatch(snapshot=snapshot)
        if task is None:
            log.debug(event="Flush requested with empty registry")
            return 0
        await asyncio.shield(task)
        return len(snapshot)

    def clear(self) -> int:
        """
        Discard every queued operation without sending it.

        Returns
        -------
        int
            Number of waiters failed with ``CancellationError``.

        Notes
        -----
        Snapshots already being sent are not affected.
        """
        self._cancel_window_timer()
        entries = self._registry.discard()
        for entry in entries:
            entry.fail(CancellationError(operation_id=entry.operation_id))
        log.info(event="Cleared pending operations", cancelled_count=len(entries))
        return len(entries)

    def stats(self) -> BatcherStats:
        return BatcherStats(
            pending=len(self._registry),
            in_flight_batches=len(self._inflight_tasks),
            max_batch_size=self._config.max_batch_size,
            max_wait_time_ms=self._config.max_wait_time_ms,
        )

    async def close(self) -> None:
        """
        Flush pending operations and wait for every in-flight call.
        """
        window_task = self._cancel_window_timer()
        if window_task is not None:
            try:
                await window_task
            except asyncio.CancelledError:
                log.debug(event="Window timer cancelled during close")

        pending_count = len(self._registry)
        if pending_count:
            log.info(event="Submitting final batch on close", request_count=pending_count)
        await self.flush()

        if self._inflight_tasks:
            await asyncio.gather(*self._inflight_tasks)
        log.debug(event="Batcher closed")
