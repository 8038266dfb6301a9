"""
Tests for BatcherConfig in coalescer.config.
"""

import os

import pytest

from coalescer.config import BatcherConfig
from coalescer.exceptions import ConfigurationError


def test_build_valid_config():
    config = BatcherConfig.build(max_batch_size=10, max_wait_time_ms=100, batch_endpoint="/api/batch")

    assert config.max_batch_size == 10
    assert config.max_wait_time_seconds == 0.1


@pytest.mark.parametrize(
    "values",
    [
        {"max_batch_size": 0, "max_wait_time_ms": 100, "batch_endpoint": "/api/batch"},
        {"max_batch_size": 1, "max_wait_time_ms": -5, "batch_endpoint": "/api/batch"},
        {"max_batch_size": 1, "max_wait_time_ms": 5},
        {"max_batch_size": 1, "max_wait_time_ms": 5, "batch_endpoint": "/b", "retries": 3},
    ],
)
def test_build_rejects_invalid_values(values: dict):
    with pytest.raises(ConfigurationError):
        BatcherConfig.build(**values)


def test_from_env_reads_prefixed_variables(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("COALESCER_MAX_BATCH_SIZE", "5")
    monkeypatch.setenv("COALESCER_MAX_WAIT_TIME_MS", "250")
    monkeypatch.setenv("COALESCER_BATCH_ENDPOINT", "https://backend.test/api/batch")

    config = BatcherConfig.from_env(dotenv=False)

    assert config == BatcherConfig(
        max_batch_size=5,
        max_wait_time_ms=250,
        batch_endpoint="https://backend.test/api/batch",
    )


def test_from_env_reports_missing_variables(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("COALESCER_MAX_BATCH_SIZE", "5")
    monkeypatch.delenv("COALESCER_MAX_WAIT_TIME_MS", raising=False)
    monkeypatch.delenv("COALESCER_BATCH_ENDPOINT", raising=False)

    with pytest.raises(ConfigurationError, match="COALESCER_MAX_WAIT_TIME_MS"):
        BatcherConfig.from_env(dotenv=False)


def test_from_env_rejects_non_integer(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("COALESCER_MAX_BATCH_SIZE", "many")
    monkeypatch.setenv("COALESCER_MAX_WAIT_TIME_MS", "100")
    monkeypatch.setenv("COALESCER_BATCH_ENDPOINT", "/api/batch")

    with pytest.raises(ConfigurationError):
        BatcherConfig.from_env(dotenv=False)


def test_from_env_loads_dotenv_file(monkeypatch: pytest.MonkeyPatch, tmp_path):
    variables = ["COALESCER_MAX_BATCH_SIZE", "COALESCER_MAX_WAIT_TIME_MS", "COALESCER_BATCH_ENDPOINT"]
    for variable in variables:
        monkeypatch.delenv(variable, raising=False)
    (tmp_path / ".env").write_text(
        "COALESCER_MAX_BATCH_SIZE=7\n"
        "COALESCER_MAX_WAIT_TIME_MS=20\n"
        "COALESCER_BATCH_ENDPOINT=/api/batch\n"
    )
    monkeypatch.chdir(tmp_path)

    try:
        config = BatcherConfig.from_env()
    finally:
        for variable in variables:
            os.environ.pop(variable, None)

    assert config.max_batch_size == 7
    assert config.max_wait_time_ms == 20
