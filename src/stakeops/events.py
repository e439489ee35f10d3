"""Run events emitted by the engines, and the summary state folded from them.

Engines never print; they hand RunEvents to an optional sink. Renderers
(the CLI summary, a dashboard) consume the stream through `reduce`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional

from stakeops.structured_logging import log_event

BAG_VISITED = "bag_visited"
REBAG_NEEDED = "rebag_needed"
MISSING_LEDGER = "missing_ledger"
POPULATION_CHECKED = "population_checked"
SUBMIT_SKIPPED = "submit_skipped"
TX_STATUS = "tx_status"


@dataclass(frozen=True, slots=True)
class RunEvent:
    kind: str
    fields: Dict[str, Any] = field(default_factory=dict)
    level: int = logging.INFO


EventSink = Callable[[RunEvent], None]


def emit(sink: Optional[EventSink], kind: str, *, level: int = logging.INFO, **fields: Any) -> None:
    if sink is not None:
        sink(RunEvent(kind, fields, level))


@dataclass(frozen=True, slots=True)
class DisplayState:
    bags_visited: int = 0
    nodes_visited: int = 0
    needs_higher: int = 0
    needs_lower: int = 0
    missing_ledgers: int = 0
    population_ok: Optional[bool] = None
    last_bag: Optional[int] = None
    tx_status: Optional[str] = None
    skipped_reason: Optional[str] = None


def reduce(state: DisplayState, event: RunEvent) -> DisplayState:
    f = event.fields
    if event.kind == BAG_VISITED:
        return replace(
            state,
            bags_visited=state.bags_visited + 1,
            nodes_visited=state.nodes_visited + int(f.get("nodes", 0)),
            last_bag=f.get("upper"),
        )
    if event.kind == REBAG_NEEDED:
        if f.get("direction") == "lower":
            return replace(state, needs_lower=state.needs_lower + 1)
        return replace(state, needs_higher=state.needs_higher + 1)
    if event.kind == MISSING_LEDGER:
        return replace(state, missing_ledgers=state.missing_ledgers + 1)
    if event.kind == POPULATION_CHECKED:
        return replace(state, population_ok=bool(f.get("ok")))
    if event.kind == TX_STATUS:
        return replace(state, tx_status=f.get("status"))
    if event.kind == SUBMIT_SKIPPED:
        return replace(state, skipped_reason=f.get("reason"))
    return state


class EventRecorder:
    """Sink that keeps the folded DisplayState and mirrors each event to a logger."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.state = DisplayState()
        self.events: List[RunEvent] = []
        self._log = logger

    def __call__(self, event: RunEvent) -> None:
        self.events.append(event)
        self.state = reduce(self.state, event)
        if self._log is not None:
            log_event(self._log, event.kind, level=event.level, **event.fields)

    def kinds(self) -> List[str]:
        return [e.kind for e in self.events]
