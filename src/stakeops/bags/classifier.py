from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from stakeops.bags.thresholds import ThresholdTable
from stakeops.bags.traversal import DEFAULT_LIST_PALLET, BagMembers, TraversalResult
from stakeops.bags.weights import WeightOracle
from stakeops.chain.types import AccountId, Balance, Call, ListNode
from stakeops.events import MISSING_LEDGER, REBAG_NEEDED, EventSink, emit
from stakeops.metrics import MISSING_LEDGERS, REBAG_HIGHER, REBAG_LOWER, inc_counter


class RebagAction(str, Enum):
    NONE = "none"
    REBAG_HIGHER = "rebag_higher"
    REBAG_LOWER = "rebag_lower"
    REPOSITION = "reposition"


@dataclass(frozen=True)
class CorrectiveAction:
    who: AccountId
    action: RebagAction
    stored_upper: Balance
    canonical_upper: Balance
    weight: Balance
    # Only for REPOSITION: the lighter node `who` should move in front of.
    in_front_of: Optional[AccountId] = None

    @property
    def needs_change(self) -> bool:
        return self.action is not RebagAction.NONE

    def to_call(self, pallet: str = DEFAULT_LIST_PALLET) -> Call:
        if self.action in (RebagAction.REBAG_HIGHER, RebagAction.REBAG_LOWER):
            return Call(pallet, "rebag", {"dislocated": self.who})
        if self.action is RebagAction.REPOSITION and self.in_front_of:
            return Call(pallet, "put_in_front_of_other", {"heavier": self.who, "lighter": self.in_front_of})
        raise ValueError(f"no call for {self.action.value} on {self.who}")


def classify(who: AccountId, stored_upper: Balance, weight: Balance, thresholds: ThresholdTable) -> CorrectiveAction:
    canonical = thresholds.canonical_bag_for(weight)
    if canonical > stored_upper:
        action = RebagAction.REBAG_HIGHER
    elif canonical < stored_upper:
        action = RebagAction.REBAG_LOWER
    else:
        action = RebagAction.NONE
    return CorrectiveAction(who=who, action=action, stored_upper=stored_upper, canonical_upper=canonical, weight=weight)


class RebagClassifier:
    """Compares each node's stored bag with the bag its recomputed weight maps to.

    rebag_lower is rare (active stake normally only drops after the unbonding
    delay, or through a slash) and is reported at warning level.
    """

    def __init__(self, thresholds: ThresholdTable, oracle: WeightOracle, *, sink: Optional[EventSink] = None) -> None:
        self.thresholds = thresholds
        self.oracle = oracle
        self.sink = sink

    def classify(self, node: ListNode, bag_upper: Balance) -> CorrectiveAction:
        """Single node. Raises MissingLedgerError."""
        action = classify(node.id, bag_upper, self.oracle.weight_of(node.id), self.thresholds)
        self._report(action)
        return action

    def classify_bag(self, bm: BagMembers) -> List[CorrectiveAction]:
        batch = self.oracle.weights_of(bm.ids())
        out: List[CorrectiveAction] = []
        for node in bm.members:
            err = batch.missing.get(node.id)
            if err is not None:
                inc_counter(MISSING_LEDGERS)
                emit(self.sink, MISSING_LEDGER, level=logging.ERROR, who=node.id, missing=err.missing, bag=bm.upper)
                continue
            action = classify(node.id, bm.upper, batch.weights[node.id], self.thresholds)
            self._report(action)
            out.append(action)
        return out

    def classify_all(self, result: TraversalResult) -> List[CorrectiveAction]:
        out: List[CorrectiveAction] = []
        for bm in result.bags:
            out.extend(self.classify_bag(bm))
        return out

    def _report(self, action: CorrectiveAction) -> None:
        if not action.needs_change:
            return
        lower = action.action is RebagAction.REBAG_LOWER
        inc_counter(REBAG_LOWER if lower else REBAG_HIGHER)
        emit(
            self.sink,
            REBAG_NEEDED,
            level=logging.WARNING if lower else logging.INFO,
            who=action.who,
            direction="lower" if lower else "higher",
            stored=action.stored_upper,
            canonical=action.canonical_upper,
            weight=action.weight,
        )

