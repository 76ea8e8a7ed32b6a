from __future__ import annotations

import pytest

from pyreconcile.config import ReconcileConfig, RetryPolicy
from pyreconcile.connection import PLACEHOLDER_CONNECTION_STRING
from pyreconcile.exceptions import ReconcileConfigError

_ENV_KEYS = (
    "IOTHUB_CONNECTION_STRING",
    "RECONCILE_DESIRED_STATE",
    "RECONCILE_REFRESH_INTERVAL",
    "RECONCILE_COMMAND_BROKER",
    "RECONCILE_RETRY_MAX_ATTEMPTS",
    "RECONCILE_RETRY_MULTIPLIER",
    "RECONCILE_RETRY_JITTER",
    "RECONCILE_RESTART_FAILED_PARTITIONS",
    "RECONCILE_START_OFFSET",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults_use_placeholder_credential_and_five_second_refresh() -> None:
    config = ReconcileConfig.from_env()
    assert config.connection_string == PLACEHOLDER_CONNECTION_STRING
    assert config.refresh_interval == 5.0
    assert config.desired_state_location == "expectedStates.json"
    assert config.restart_failed_partitions is True
    assert config.start_offset is None


def test_placeholder_credential_fails_to_parse() -> None:
    with pytest.raises(ReconcileConfigError):
        ReconcileConfig().parsed_connection()


def test_from_env_reads_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("IOTHUB_CONNECTION_STRING", "Endpoint=kafka://localhost:9092;EntityPath=telemetry")
    monkeypatch.setenv("RECONCILE_DESIRED_STATE", "https://example.test/states.json")
    monkeypatch.setenv("RECONCILE_REFRESH_INTERVAL", "2.5")
    monkeypatch.setenv("RECONCILE_RETRY_MAX_ATTEMPTS", "7")
    monkeypatch.setenv("RECONCILE_RESTART_FAILED_PARTITIONS", "off")
    monkeypatch.setenv("RECONCILE_START_OFFSET", "42")

    config = ReconcileConfig.from_env()

    assert config.parsed_connection().entity_path == "telemetry"
    assert config.desired_state_location == "https://example.test/states.json"
    assert config.refresh_interval == 2.5
    assert config.retry.max_attempts == 7
    assert config.restart_failed_partitions is False
    assert config.start_offset == 42


def test_retry_backoff_shape_is_read_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RECONCILE_RETRY_MULTIPLIER", "3")
    monkeypatch.setenv("RECONCILE_RETRY_JITTER", "0.25")

    config = ReconcileConfig.from_env()

    assert config.retry.multiplier == 3.0
    assert config.retry.jitter == 0.25


def test_overrides_win_over_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RECONCILE_REFRESH_INTERVAL", "2.5")
    monkeypatch.setenv("RECONCILE_DESIRED_STATE", "from-env.json")

    config = ReconcileConfig.from_env(refresh_interval=9.0, desired_state_location="cli.json")

    assert config.refresh_interval == 9.0
    assert config.desired_state_location == "cli.json"


def test_retry_override_accepts_mapping_or_policy() -> None:
    partial = ReconcileConfig.from_env(retry={"max_redirects": 1})
    assert partial.retry.max_redirects == 1
    assert partial.retry.max_attempts == RetryPolicy().max_attempts

    policy = RetryPolicy(max_attempts=2, initial_delay=0.5)
    assert ReconcileConfig.from_env(retry=policy).retry == policy


def test_retry_delay_grows_exponentially_and_is_capped() -> None:
    policy = RetryPolicy(initial_delay=1.0, multiplier=2.0, max_delay=10.0)
    assert [policy.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 10.0]
    assert policy.delay_for(0) == 0.0
