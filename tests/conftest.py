import typing as t

import httpx
import pytest

from coalescer.context import active_batcher
from coalescer.core import Batcher
from tests.mocks.batching import FakeBatchAPI, make_client_factory


@pytest.fixture
def fake_api() -> FakeBatchAPI:
    return FakeBatchAPI()


@pytest.fixture
def client_factory(fake_api: FakeBatchAPI) -> t.Callable[[], httpx.AsyncClient]:
    return make_client_factory(api=fake_api)


@pytest.fixture
def batcher(client_factory: t.Callable[[], httpx.AsyncClient]) -> Batcher:
    """
    Create a Batcher routed to the fake batch API.

    Returns
    -------
    Batcher
        Batcher flushing at 3 operations or after 50ms.
    """
    return Batcher(
        max_batch_size=3,
        max_wait_time_ms=50,
        batch_endpoint="/api/batch",
        client_factory=client_factory,
    )


@pytest.fixture
def reset_context() -> t.Iterator[None]:
    token = active_batcher.set(None)
    yield
    active_batcher.reset(token)
