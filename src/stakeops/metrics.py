"""
Run counters for one CLI invocation.

The engines bump the names declared below. `run_summary()` is the flat
record the CLI logs at exit when STAKEOPS_METRICS_ENABLED is set; every
declared counter appears in it, zero when nothing touched it.
"""

from __future__ import annotations

from typing import Dict

from stakeops.env import env_bool

NODES_VISITED = "nodes_visited"
MISSING_LEDGERS = "missing_ledgers"
REBAG_HIGHER = "rebag_higher"
REBAG_LOWER = "rebag_lower"
DRY_RUNS_OK = "dry_runs_ok"
DRY_RUNS_FAILED = "dry_runs_failed"
TX_SENT = "tx_sent"
TX_FAILED = "tx_failed"
MIGRATION_BACKOFFS = "migration_backoffs"

LIST_POPULATION = "list_population"

COUNTERS = (
    NODES_VISITED,
    MISSING_LEDGERS,
    REBAG_HIGHER,
    REBAG_LOWER,
    DRY_RUNS_OK,
    DRY_RUNS_FAILED,
    TX_SENT,
    TX_FAILED,
    MIGRATION_BACKOFFS,
)
GAUGES = (LIST_POPULATION,)

_counters: Dict[str, int] = {}
_gauges: Dict[str, int] = {}


def metrics_enabled() -> bool:
    return env_bool("STAKEOPS_METRICS_ENABLED", False)


def inc_counter(name: str, value: int = 1) -> None:
    if name not in COUNTERS:
        raise ValueError(f"unknown counter {name!r}")
    _counters[name] = _counters.get(name, 0) + int(value)


def set_gauge(name: str, value: int) -> None:
    if name not in GAUGES:
        raise ValueError(f"unknown gauge {name!r}")
    _gauges[name] = int(value)


def run_summary() -> Dict[str, int]:
    """Counters first, then whichever gauges were set during the run."""
    out = {name: _counters.get(name, 0) for name in COUNTERS}
    out.update(_gauges)
    return out


def reset() -> None:
    _counters.clear()
    _gauges.clear()
