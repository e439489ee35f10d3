from __future__ import annotations

import logging
from typing import Optional, Set

from stakeops.bags.classifier import CorrectiveAction, RebagAction
from stakeops.bags.thresholds import ThresholdTable
from stakeops.bags.traversal import BagTraversalEngine
from stakeops.bags.weights import WeightOracle
from stakeops.chain.types import AccountId, Bag
from stakeops.errors import MissingLedgerError, StakeOpsError, StructuralIntegrityError
from stakeops.events import MISSING_LEDGER, EventSink, emit


class RepositionFinder:
    """Finds the node a target should be moved in front of, inside its own bag.

    Scans from the bag head; the first node strictly lighter than the target
    is the answer. Reaching the target first, or the tail, means the target
    is already as far forward as it can go.
    """

    def __init__(
        self,
        engine: BagTraversalEngine,
        oracle: WeightOracle,
        *,
        sink: Optional[EventSink] = None,
    ) -> None:
        self.engine = engine
        self.oracle = oracle
        self.sink = sink

    @property
    def thresholds(self) -> ThresholdTable:
        return self.engine.thresholds

    def find_reorder_target(self, target: AccountId) -> Optional[AccountId]:
        node = self.engine.read_node(target)
        if node is None:
            raise StakeOpsError("not_in_list", f"{target} is not in {self.engine.pallet}")
        own = self.oracle.weight_of(target)

        raw = self.engine.state.read(self.engine.pallet, "ListBags", [node.bag_upper])
        bag = Bag.from_value(node.bag_upper, raw)
        if bag.head is None:
            raise StructuralIntegrityError(f"{target} claims bag {node.bag_upper} which is empty")

        budget = self.engine.population()
        seen: Set[AccountId] = set()
        current: Optional[AccountId] = bag.head
        while current is not None:
            if current == target:
                return None
            if current in seen or len(seen) >= budget:
                raise StructuralIntegrityError(f"bag {bag.upper} does not terminate while scanning for {target}")
            seen.add(current)
            try:
                weight = self.oracle.weight_of(current)
            except MissingLedgerError as e:
                emit(self.sink, MISSING_LEDGER, level=logging.ERROR, who=e.stash, missing=e.missing, bag=bag.upper)
            else:
                if weight < own:
                    return current
            nxt = self.engine.read_node(current)
            if nxt is None:
                raise StructuralIntegrityError(f"bag {bag.upper} links to missing node {current}")
            current = nxt.next
        return None

    def reposition_action(self, target: AccountId) -> CorrectiveAction:
        """A REPOSITION action when a lighter node sits ahead of `target`, else NONE."""
        lighter = self.find_reorder_target(target)
        node = self.engine.read_node(target)
        weight = self.oracle.weight_of(target)
        upper = node.bag_upper if node is not None else self.thresholds.canonical_bag_for(weight)
        if lighter is None:
            return CorrectiveAction(target, RebagAction.NONE, upper, upper, weight)
        return CorrectiveAction(target, RebagAction.REPOSITION, upper, upper, weight, in_front_of=lighter)
