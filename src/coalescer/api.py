"""
Main endpoint for users.
Exposes a `batchify` function that builds a Batcher and wraps it in a
BatchingContext activating it for the duration of a context manager.
"""

from coalescer.config import BatcherConfig
from coalescer.context import BatchingContext
from coalescer.core import Batcher, ClientFactory


def batchify(
    max_batch_size: int,
    max_wait_time_ms: int,
    batch_endpoint: str,
    client_factory: ClientFactory | None = None,
) -> BatchingContext:
    """
    Create a batcher scoped to a context manager.

    Parameters
    ----------
    max_batch_size : int
        Flush immediately when this many operations are pending.
    max_wait_time_ms : int
        Flush this many milliseconds after the first pending operation.
    batch_endpoint : str
        Destination of the aggregated call.
    client_factory : typing.Callable[[], httpx.AsyncClient] | None, optional
        Builds the HTTP client used for each aggregated call.

    Returns
    -------
    BatchingContext
        Context manager yielding the batcher and closing it on exit.

    Notes
    -----
    >>> async with batchify(
    ...     max_batch_size=10, max_wait_time_ms=100, batch_endpoint="/api/batch"
    ... ) as batcher:
    ...     item = await batcher.submit(endpoint="/api/menu/1", method="GET")
    """
    batcher = Batcher(
        max_batch_size=max_batch_size,
        max_wait_time_ms=max_wait_time_ms,
        batch_endpoint=batch_endpoint,
        client_factory=client_factory,
    )
    return BatchingContext(batcher=batcher)


def batchify_from_env(client_factory: ClientFactory | None = None) -> BatchingContext:
    """Create a scoped batcher from ``COALESCER_*`` environment variables."""
    batcher = Batcher.from_config(config=BatcherConfig.from_env(), client_factory=client_factory)
    return BatchingContext(batcher=batcher)
