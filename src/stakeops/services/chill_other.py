from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from stakeops.bags.weights import WeightOracle
from stakeops.chain.reader import PinnedState
from stakeops.chain.types import AccountId, Balance, Call
from stakeops.events import MISSING_LEDGER, EventSink, emit
from stakeops.metrics import MISSING_LEDGERS, inc_counter
from stakeops.structured_logging import log_event
from stakeops.tx.pipeline import BatchSubmitPipeline, SubmitResult

log = logging.getLogger("stakeops.staking")


@dataclass(frozen=True, slots=True)
class NominatorStake:
    stash: AccountId
    stake: Balance


@dataclass
class ChillPlan:
    """
    Who can be chilled right now.

    - below: nominators with stake strictly below MinNominatorBond, lightest first
    - max_chillable: how many can go before the count drops under
      ChillThreshold% of MaxNominatorsCount (0 when either is unset)
    - selected: below, cut to max_chillable and to the requested count
    """

    min_bond: Balance
    chill_threshold_pct: Optional[int]
    max_nominators: Optional[int]
    total: int
    below: List[NominatorStake] = field(default_factory=list)
    max_chillable: int = 0
    selected: List[NominatorStake] = field(default_factory=list)

    @property
    def ejected_stake(self) -> Balance:
        return sum(n.stake for n in self.below)

    def calls(self) -> List[Call]:
        return [Call("Staking", "chill_other", {"stash": n.stash}) for n in self.selected]


def plan_chill(
    state: PinnedState,
    *,
    count: Optional[int] = None,
    sink: Optional[EventSink] = None,
) -> ChillPlan:
    min_bond = int(state.read("Staking", "MinNominatorBond") or 0)
    pct = state.read("Staking", "ChillThreshold")
    max_nom = state.read("Staking", "MaxNominatorsCount")
    stashes = [str(k) for k, _ in state.read_entries("Staking", "Nominators")]

    batch = WeightOracle(state).weights_of(stashes)
    for stash, err in batch.missing.items():
        inc_counter(MISSING_LEDGERS)
        emit(sink, MISSING_LEDGER, level=logging.ERROR, who=stash, missing=err.missing)

    everyone = sorted(
        (NominatorStake(s, batch.weights[s]) for s in stashes if s in batch.weights),
        key=lambda n: (n.stake, n.stash),
    )
    plan = ChillPlan(
        min_bond=min_bond,
        chill_threshold_pct=None if pct is None else int(pct),
        max_nominators=None if max_nom is None else int(max_nom),
        total=len(everyone),
        below=[n for n in everyone if n.stake < min_bond],
    )
    if plan.chill_threshold_pct is not None and plan.max_nominators is not None:
        min_nominators = plan.chill_threshold_pct * plan.max_nominators // 100
        plan.max_chillable = max(0, plan.total - min_nominators)

    limit = min(len(plan.below), plan.max_chillable)
    if count is not None:
        limit = min(limit, int(count))
    plan.selected = plan.below[:limit]

    log_event(
        log,
        "chill_plan",
        min_bond=plan.min_bond,
        chill_threshold_pct=plan.chill_threshold_pct,
        max_nominators=plan.max_nominators,
        total=plan.total,
        below=len(plan.below),
        ejected_stake=plan.ejected_stake,
        max_chillable=plan.max_chillable,
        selected=len(plan.selected),
    )
    return plan


def chill_other(
    state: PinnedState,
    pipeline: BatchSubmitPipeline,
    signer: Any,
    *,
    send: bool,
    count: Optional[int] = None,
    sink: Optional[EventSink] = None,
) -> tuple[ChillPlan, Optional[SubmitResult]]:
    plan = plan_chill(state, count=count, sink=sink)
    return plan, pipeline.submit_calls(plan.calls(), signer, send=send)
