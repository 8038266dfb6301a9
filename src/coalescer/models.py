import typing as t

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class Operation(BaseModel):
    """One logical request queued for coalescing."""

    model_config = ConfigDict(frozen=True)

    id: str
    endpoint: str
    method: str
    body: t.Any = None
    headers: dict[str, str] | None = None

    def to_wire(self) -> dict[str, t.Any]:
        return self.model_dump(mode="json", exclude_none=True)


class BatchRequest(BaseModel):
    requests: list[Operation] = Field(default_factory=list)

    def to_wire(self) -> dict[str, t.Any]:
        return {"requests": [operation.to_wire() for operation in self.requests]}


class BatchResult(BaseModel):
    """A single decoded entry of the aggregated response."""

    model_config = ConfigDict(extra="allow")

    id: str
    data: t.Any = None
    error: t.Any = None

    @property
    def failed(self) -> bool:
        return self.error is not None


batch_result_list_adapter = TypeAdapter(list[t.Any])


class BatcherStats(BaseModel):
    pending: int
    in_flight_batches: int
    max_batch_size: int
    max_wait_time_ms: int
