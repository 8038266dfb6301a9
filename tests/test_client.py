"""
Tests for the opt-in ResourceClient in coalescer.client.
"""

import asyncio
import typing as t

import httpx
import pytest
import respx

from coalescer.api import batchify
from coalescer.client import ResourceClient
from coalescer.core import Batcher
from tests.mocks.batching import FakeBatchAPI

BASE_URL = "https://backend.test"


@pytest.fixture
def direct_factory() -> t.Callable[[], httpx.AsyncClient]:
    return lambda: httpx.AsyncClient(base_url=BASE_URL)


@pytest.mark.asyncio
async def test_direct_calls_bypass_batcher(
    respx_mock: respx.MockRouter,
    direct_factory: t.Callable[[], httpx.AsyncClient],
    batcher: Batcher,
    fake_api: FakeBatchAPI,
) -> None:
    """Test that calls without batched=True go straight to the resource."""
    respx_mock.get(f"{BASE_URL}/api/menu-items").mock(
        return_value=httpx.Response(status_code=200, json=[{"id": 1}])
    )
    respx_mock.get(f"{BASE_URL}/api/menu-items/1").mock(
        return_value=httpx.Response(status_code=200, json={"id": 1, "name": "Soup"})
    )
    respx_mock.post(f"{BASE_URL}/api/menu-items").mock(
        return_value=httpx.Response(status_code=201, json={"id": 2, "name": "Salad"})
    )
    respx_mock.put(f"{BASE_URL}/api/menu-items/2").mock(
        return_value=httpx.Response(status_code=200, json={"id": 2, "name": "Greek Salad"})
    )
    respx_mock.delete(f"{BASE_URL}/api/menu-items/2").mock(
        return_value=httpx.Response(status_code=204)
    )
    client = ResourceClient(
        resource_path="/api/menu-items/",
        client_factory=direct_factory,
        batcher=batcher,
    )

    assert await client.list() == [{"id": 1}]
    assert await client.get(1) == {"id": 1, "name": "Soup"}
    assert await client.create({"name": "Salad"}) == {"id": 2, "name": "Salad"}
    assert await client.update(2, {"name": "Greek Salad"}) == {"id": 2, "name": "Greek Salad"}
    assert await client.delete(2) is None

    assert fake_api.call_count == 0
    assert batcher.stats().pending == 0


@pytest.mark.asyncio
async def test_direct_call_error_status_raises(
    respx_mock: respx.MockRouter,
    direct_factory: t.Callable[[], httpx.AsyncClient],
) -> None:
    respx_mock.get(f"{BASE_URL}/api/orders/9").mock(
        return_value=httpx.Response(status_code=404, json={"error": "not found"})
    )
    client = ResourceClient(resource_path="/api/orders", client_factory=direct_factory)

    with pytest.raises(httpx.HTTPStatusError):
        await client.get(9)


@pytest.mark.asyncio
async def test_batched_calls_are_coalesced(
    direct_factory: t.Callable[[], httpx.AsyncClient],
    batcher: Batcher,
    fake_api: FakeBatchAPI,
) -> None:
    """Test that batched=True call sites share one aggregated call."""
    client = ResourceClient(
        resource_path="/api/menu-items",
        client_factory=direct_factory,
        batcher=batcher,
    )

    fetched, created, deleted = await asyncio.gather(
        client.get(1, batched=True),
        client.create({"name": "Salad"}, batched=True),
        client.delete(3, batched=True),
    )

    assert fake_api.call_count == 1
    assert fetched == {"endpoint": "/api/menu-items/1", "method": "GET", "body": None}
    assert created == {"endpoint": "/api/menu-items", "method": "POST", "body": {"name": "Salad"}}
    assert deleted["method"] == "DELETE"


@pytest.mark.asyncio
async def test_batched_call_uses_active_context_batcher(
    direct_factory: t.Callable[[], httpx.AsyncClient],
    client_factory: t.Callable[[], httpx.AsyncClient],
    fake_api: FakeBatchAPI,
    reset_context: None,
) -> None:
    """Test that a client without its own batcher uses the batchify scope."""
    client = ResourceClient(resource_path="/api/reservations", client_factory=direct_factory)

    async with batchify(
        max_batch_size=2,
        max_wait_time_ms=1000,
        batch_endpoint="/api/batch",
        client_factory=client_factory,
    ):
        listed, updated = await asyncio.gather(
            client.list(batched=True),
            client.update(5, {"status": "APPROVED"}, batched=True),
        )

    assert fake_api.call_count == 1
    assert listed["endpoint"] == "/api/reservations"
    assert updated == {
        "endpoint": "/api/reservations/5",
        "method": "PUT",
        "body": {"status": "APPROVED"},
    }


@pytest.mark.asyncio
async def test_batched_call_without_batcher_raises(
    direct_factory: t.Callable[[], httpx.AsyncClient],
    reset_context: None,
) -> None:
    client = ResourceClient(resource_path="/api/orders", client_factory=direct_factory)

    with pytest.raises(ValueError, match="requires a batcher"):
        await client.get(1, batched=True)
