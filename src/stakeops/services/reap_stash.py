from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from stakeops.chain.reader import PinnedState
from stakeops.chain.types import AccountId, Balance, Call, StakingLedger
from stakeops.structured_logging import log_event
from stakeops.tx.pipeline import BatchSubmitPipeline, SubmitResult

log = logging.getLogger("stakeops.staking")


@dataclass(frozen=True, slots=True)
class StaleStash:
    stash: AccountId
    total: Balance
    slashing_spans: int


@dataclass
class ReapPlan:
    existential_deposit: Balance
    scanned: int = 0
    stale: List[StaleStash] = field(default_factory=list)

    def calls(self) -> List[Call]:
        return [
            Call("Staking", "reap_stash", {"stash": s.stash, "num_slashing_spans": s.slashing_spans})
            for s in self.stale
        ]


def slashing_span_count(spans: Any) -> int:
    """0 without a SlashingSpans record, else the prior spans plus the current one."""
    if spans is None:
        return 0
    return len(spans.get("prior") or []) + 1


def plan_reap(state: PinnedState, *, count: Optional[int] = None) -> ReapPlan:
    """Ledgers whose total is at or below the existential deposit, at most `count` of them."""
    ed = int(state.constant("Balances", "ExistentialDeposit") or 0)
    plan = ReapPlan(existential_deposit=ed)
    found: List[StakingLedger] = []
    for _ctrl, raw in state.read_entries("Staking", "Ledger"):
        if raw is None:
            continue
        plan.scanned += 1
        ledger = StakingLedger.from_value(raw)
        if ledger.total <= ed:
            found.append(ledger)
            if count is not None and len(found) >= count:
                break

    spans = state.read_many("Staking", "SlashingSpans", [[led.stash] for led in found])
    plan.stale = [StaleStash(led.stash, led.total, slashing_span_count(s)) for led, s in zip(found, spans)]
    log_event(log, "reap_plan", existential_deposit=ed, scanned=plan.scanned, stale=len(plan.stale), count=count)
    return plan


def reap_stash(
    state: PinnedState,
    pipeline: BatchSubmitPipeline,
    signer: Any,
    *,
    send: bool,
    count: Optional[int] = None,
) -> tuple[ReapPlan, Optional[SubmitResult]]:
    plan = plan_reap(state, count=count)
    return plan, pipeline.submit_calls(plan.calls(), signer, send=send)
