"""
Conventional per-resource CRUD client.
Every call goes straight to the resource endpoint unless the call site passes
``batched=True``, in which case it is queued on a batcher instead.
"""

from __future__ import annotations

import typing as t

import httpx
import structlog

from coalescer.context import active_batcher
from coalescer.core import Batcher, ClientFactory

log = structlog.get_logger(__name__)


class ResourceClient:
    """
    CRUD access to one REST resource collection.

    Parameters
    ----------
    resource_path : str
        Collection path, e.g. ``"/api/menu-items"``.
    client_factory : typing.Callable[[], httpx.AsyncClient]
        Builds the HTTP client used for direct calls.
    batcher : Batcher | None, optional
        Batcher used for ``batched=True`` calls. Defaults to the batcher
        activated by ``batchify`` for the current task.
    """

    def __init__(
        self,
        resource_path: str,
        client_factory: ClientFactory,
        batcher: Batcher | None = None,
    ) -> None:
        self._resource_path = resource_path.rstrip("/")
        self._client_factory = client_factory
        self._batcher = batcher

    def _item_path(self, item_id: str | int) -> str:
        return f"{self._resource_path}/{item_id}"

    def _resolve_batcher(self) -> Batcher:
        batcher = self._batcher or active_batcher.get()
        if batcher is None:
            raise ValueError(
                "batched=True requires a batcher: pass one to ResourceClient "
                "or call from inside a batchify context"
            )
        return batcher

    async def _request(
        self,
        *,
        method: str,
        endpoint: str,
        body: t.Any = None,
        batched: bool,
    ) -> t.Any:
        if batched:
            return await self._resolve_batcher().submit(
                endpoint=endpoint,
                method=method,
                body=body,
            )

        log.debug(event="Direct resource request", method=method, endpoint=endpoint)
        async with self._client_factory() as client:
            response = await client.request(method=method, url=endpoint, json=body)
            response.raise_for_status()
        if response.status_code == httpx.codes.NO_CONTENT or not response.content:
            return None
        return response.json()

    async def list(self, *, batched: bool = False) -> t.Any:
        return await self._request(method="GET", endpoint=self._resource_path, batched=batched)

    async def get(self, item_id: str | int, *, batched: bool = False) -> t.Any:
        return await self._request(method="GET", endpoint=self._item_path(item_id), batched=batched)

    async def create(self, body: t.Any, *, batched: bool = False) -> t.Any:
        return await self._request(
            method="POST",
            endpoint=self._resource_path,
            body=body,
            batched=batched,
        )

    async def update(self, item_id: str | int, body: t.Any, *, batched: bool = False) -> t.Any:
        return await self._request(
            method="PUT",
            endpoint=self._item_path(item_id),
            body=body,
            batched=batched,
        )

    async def delete(self, item_id: str | int, *, batched: bool = False) -> t.Any:
        return await self._request(
            method="DELETE",
            endpoint=self._item_path(item_id),
            batched=batched,
        )
