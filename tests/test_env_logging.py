from __future__ import annotations

import json
import logging

import pytest

from stakeops import env, metrics
from stakeops.structured_logging import log_event


def test_dotenv_loads_once_and_never_overrides(tmp_path, monkeypatch) -> None:
    p = tmp_path / "ops.env"
    p.write_text("STAKEOPS_WS=ws://from-file:9944\nSTAKEOPS_LOG_LEVEL=DEBUG\n", encoding="utf-8")
    monkeypatch.setattr(env, "_LOADED", False)
    monkeypatch.setenv("STAKEOPS_LOG_LEVEL", "WARNING")
    monkeypatch.delenv("STAKEOPS_WS", raising=False)

    assert env.load_dotenv_if_present(str(p)) is True
    assert env.env_str("STAKEOPS_WS") == "ws://from-file:9944"
    assert env.env_str("STAKEOPS_LOG_LEVEL") == "WARNING"
    assert env.load_dotenv_if_present(str(p)) is False


def test_missing_dotenv_is_fine(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(env, "_LOADED", False)
    assert env.load_dotenv_if_present(str(tmp_path / "absent.env")) is False


def test_env_helpers(monkeypatch) -> None:
    monkeypatch.setenv("X_FLOAT", "nope")
    assert env.env_float("X_FLOAT", 3.5) == 3.5
    monkeypatch.setenv("X_BOOL", "yes")
    assert env.env_bool("X_BOOL", False) is True
    assert env.env_str("X_UNSET_VALUE", "d") == "d"


def test_log_event_writes_one_json_object(caplog) -> None:
    logger = logging.getLogger("stakeops.test_logging")
    with caplog.at_level(logging.INFO, logger="stakeops.test_logging"):
        log_event(logger, "dry_run", ok=True, calls=2)
        log_event(logger, "odd", blob=object())

    first = json.loads(caplog.records[0].getMessage())
    assert first["event"] == "dry_run" and first["calls"] == 2 and "ts_ms" in first
    assert caplog.records[1].getMessage().startswith("event=odd ")


def test_run_summary_lists_every_counter() -> None:
    metrics.inc_counter(metrics.TX_SENT)
    metrics.inc_counter(metrics.TX_SENT, 2)
    metrics.set_gauge(metrics.LIST_POPULATION, 7)

    summary = metrics.run_summary()
    assert summary[metrics.TX_SENT] == 3
    assert summary[metrics.LIST_POPULATION] == 7
    assert summary[metrics.REBAG_LOWER] == 0
    assert set(metrics.COUNTERS) <= set(summary)
    assert "uptime_ms" not in summary

    metrics.reset()
    assert metrics.LIST_POPULATION not in metrics.run_summary()


def test_unknown_metric_names_are_rejected() -> None:
    with pytest.raises(ValueError):
        metrics.inc_counter("tx_sentt")
    with pytest.raises(ValueError):
        metrics.set_gauge("population", 1)


def test_metrics_flag(monkeypatch) -> None:
    monkeypatch.delenv("STAKEOPS_METRICS_ENABLED", raising=False)
    assert not metrics.metrics_enabled()
    monkeypatch.setenv("STAKEOPS_METRICS_ENABLED", "on")
    assert metrics.metrics_enabled()
    monkeypatch.setenv("STAKEOPS_METRICS_ENABLED", "0")
    assert not metrics.metrics_enabled()
