from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from stakeops.bags.classifier import CorrectiveAction, RebagClassifier
from stakeops.bags.thresholds import ThresholdTable
from stakeops.bags.traversal import DEFAULT_LIST_PALLET, BagTraversalEngine, TraversalResult
from stakeops.bags.weights import WeightOracle
from stakeops.chain.reader import PinnedState
from stakeops.chain.types import AccountId
from stakeops.errors import StakeOpsError, StructuralIntegrityError
from stakeops.events import EventSink
from stakeops.structured_logging import log_event
from stakeops.tx.pipeline import BatchSubmitPipeline, SubmitResult

log = logging.getLogger("stakeops.bags")


@dataclass
class RebagReport:
    block_hash: str
    visited: int = 0
    complete: bool = False
    actions: List[CorrectiveAction] = field(default_factory=list)
    result: Optional[SubmitResult] = None

    @property
    def corrections(self) -> List[CorrectiveAction]:
        return [a for a in self.actions if a.needs_change]


def _engine(state: PinnedState, pallet: str, sink: Optional[EventSink]) -> tuple[BagTraversalEngine, RebagClassifier]:
    thresholds = ThresholdTable.load(state, pallet)
    engine = BagTraversalEngine(state, thresholds, pallet=pallet, sink=sink)
    classifier = RebagClassifier(thresholds, WeightOracle(state), sink=sink)
    return engine, classifier


def rebag_all(
    state: PinnedState,
    pipeline: BatchSubmitPipeline,
    signer: Any,
    *,
    send: bool,
    count: Optional[int] = None,
    pallet: str = DEFAULT_LIST_PALLET,
    sink: Optional[EventSink] = None,
) -> RebagReport:
    """Check every bag and submit one batch of rebags.

    With `count`, the walk stops as soon as `count` corrections are known and
    the batch carries at most that many. The population check runs whenever
    the walk reached the last bag, including when the count filled up there.
    """
    engine, classifier = _engine(state, pallet, sink)
    report = RebagReport(block_hash=state.block_hash)

    if count is None:
        traversal = engine.traverse_all()
        report.visited = traversal.total_nodes
        report.complete = True
        report.actions = classifier.classify_all(traversal)
    else:
        bags = engine.load_bags()
        walked = 0
        for bm in engine.iter_bags(bags):
            walked += 1
            report.visited += len(bm.members)
            report.actions.extend(classifier.classify_bag(bm))
            if len(report.corrections) >= count:
                break
        if walked == len(bags):
            engine.check_population(TraversalResult(block_hash=state.block_hash, total_nodes=report.visited))
            report.complete = True

    log_event(
        log,
        "rebag_plan",
        block_hash=state.block_hash,
        visited=report.visited,
        complete=report.complete,
        corrections=len(report.corrections),
        count=count,
    )
    report.result = pipeline.submit(report.actions, signer, send=send, count_limit=count)
    return report


def rebag_single(
    state: PinnedState,
    pipeline: BatchSubmitPipeline,
    signer: Any,
    who: AccountId,
    *,
    send: bool,
    pallet: str = DEFAULT_LIST_PALLET,
    sink: Optional[EventSink] = None,
) -> RebagReport:
    engine, classifier = _engine(state, pallet, sink)
    node = engine.read_node(who)
    if node is None:
        raise StakeOpsError("not_in_list", f"{who} is not in {pallet}")
    if not engine.thresholds.contains(node.bag_upper):
        raise StructuralIntegrityError(f"bag upper {node.bag_upper} of {who} not found in thresholds")

    action = classifier.classify(node, node.bag_upper)
    report = RebagReport(block_hash=state.block_hash, visited=1, actions=[action])
    report.result = pipeline.submit(report.actions, signer, send=send, count_limit=1)
    return report
