"""
Validated batcher configuration.
"""

import os

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from coalescer.exceptions import ConfigurationError

ENV_PREFIX = "COALESCER_"


class BatcherConfig(BaseModel):
    """
    Thresholds and destination of a batcher.

    Every field is required; there are no implicit defaults.

    Parameters
    ----------
    max_batch_size : int
        Flush as soon as this many operations are queued.
    max_wait_time_ms : int
        Flush this many milliseconds after the first operation is queued
        into an empty registry.
    batch_endpoint : str
        URL (absolute, or relative to the client's ``base_url``) receiving
        the aggregated call.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_batch_size: int = Field(ge=1)
    max_wait_time_ms: int = Field(ge=0)
    batch_endpoint: str = Field(min_length=1)

    @property
    def max_wait_time_seconds(self) -> float:
        return self.max_wait_time_ms / 1000

    @classmethod
    def build(cls, **values: object) -> "BatcherConfig":
        """
        Validate raw values, reporting failures as ``ConfigurationError``.

        Returns
        -------
        BatcherConfig
            Validated configuration.
        """
        try:
            return cls.model_validate(values)
        except ValidationError as error:
            raise ConfigurationError(str(error)) from error

    @classmethod
    def from_env(cls, *, dotenv: bool = True) -> "BatcherConfig":
        """
        Load configuration from ``COALESCER_*`` environment variables.

        Parameters
        ----------
        dotenv : bool, optional
            Load a ``.env`` file first, without overriding the environment.

        Returns
        -------
        BatcherConfig
            Validated configuration.
        """
        if dotenv:
            load_dotenv(dotenv_path=find_dotenv(usecwd=True), override=False)
        values: dict[str, object] = {}
        missing: list[str] = []
        for field_name in cls.model_fields:
            variable = f"{ENV_PREFIX}{field_name.upper()}"
            value = os.getenv(variable)
            if value is None:
                missing.append(variable)
            else:
                values[field_name] = value
        if missing:
            raise ConfigurationError(f"Missing configuration: {', '.join(missing)}")
        return cls.build(**values)
