from enum import Enum


class OperationState(str, Enum):
    QUEUED = "queued"
    IN_FLIGHT = "in_flight"
    COMPLETED = "completed"
