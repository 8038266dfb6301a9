"""
Context manager returned by ``batchify``.
"""

import asyncio
import contextvars
import typing as t
import warnings

import structlog

if t.TYPE_CHECKING:
    from coalescer.core import Batcher

# ContextVar holding the batcher activated for the current task
active_batcher: contextvars.ContextVar["Batcher | None"] = contextvars.ContextVar(
    "active_batcher", default=None
)

# close tasks scheduled by a sync exit, held until they finish
_pending_close_tasks: set[asyncio.Task[None]] = set()

log = structlog.get_logger(__name__)


def _on_close_done(task: "asyncio.Task[None]") -> None:
    _pending_close_tasks.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        log.error(event="Scheduled batcher close failed", error=repr(error))


class BatchingContext:
    """
    Context manager that activates a batcher for a scope.

    Parameters
    ----------
    batcher : Batcher
        Batcher instance used for the scope of the context manager.
    """

    def __init__(self, batcher: "Batcher") -> None:
        self._self_batcher = batcher
        self._self_context_token: contextvars.Token[t.Any] | None = None

    @property
    def batcher(self) -> "Batcher":
        return self._self_batcher

    def __enter__(self) -> "Batcher":
        """
        Enter the synchronous context manager and activate the batcher.

        Returns
        -------
        Batcher
            The activated batcher.
        """
        self._self_context_token = active_batcher.set(self._self_batcher)
        return self._self_batcher

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: t.Any,
    ) -> None:
        """
        Exit the synchronous context manager and schedule the batcher close.

        Parameters
        ----------
        exc_type : type[BaseException] | None
            Exception type, if any.
        exc_val : BaseException | None
            Exception value, if any.
        exc_tb : typing.Any
            Exception traceback, if any.
        """
        self._reset()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            warnings.warn(
                message=(
                    "BatchingContext used with sync context manager outside an event loop. "
                    "Use 'async with' for proper cleanup, or manually call await "
                    "batcher.close()"
                ),
                category=UserWarning,
                stacklevel=2,
            )
            return
        task = loop.create_task(coro=self._self_batcher.close())
        _pending_close_tasks.add(task)
        task.add_done_callback(_on_close_done)

    async def __aenter__(self) -> "Batcher":
        """
        Enter the async context manager and activate the batcher.

        Returns
        -------
        Batcher
            The activated batcher.
        """
        self._self_context_token = active_batcher.set(self._self_batcher)
        return self._self_batcher

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: t.Any,
    ) -> None:
        """
        Exit the async context manager, reset the batcher, and drain pending work.

        Parameters
        ----------
        exc_type : type[BaseException] | None
            Exception type, if any.
        exc_val : BaseException | None
            Exception value, if any.
        exc_tb : typing.Any
            Exception traceback, if any.
        """
        self._reset()
        await self._self_batcher.close()

    def _reset(self) -> None:
        if self._self_context_token is not None:
            active_batcher.reset(self._self_context_token)
            self._self_context_token = None
