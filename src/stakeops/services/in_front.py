from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from stakeops.bags.classifier import CorrectiveAction
from stakeops.bags.reposition import RepositionFinder
from stakeops.bags.thresholds import ThresholdTable
from stakeops.bags.traversal import DEFAULT_LIST_PALLET, BagTraversalEngine
from stakeops.bags.weights import WeightOracle
from stakeops.chain.reader import PinnedState
from stakeops.chain.types import AccountId
from stakeops.events import EventSink
from stakeops.structured_logging import log_event
from stakeops.tx.pipeline import BatchSubmitPipeline, SubmitResult

log = logging.getLogger("stakeops.bags")


@dataclass
class InFrontReport:
    target: AccountId
    action: CorrectiveAction
    result: Optional[SubmitResult] = None

    @property
    def lighter(self) -> Optional[AccountId]:
        return self.action.in_front_of


def put_in_front(
    state: PinnedState,
    pipeline: BatchSubmitPipeline,
    signer: Any,
    target: AccountId,
    *,
    send: bool,
    pallet: str = DEFAULT_LIST_PALLET,
    sink: Optional[EventSink] = None,
) -> InFrontReport:
    """Move `target` ahead of the first lighter node in its bag, if there is one."""
    thresholds = ThresholdTable.load(state, pallet)
    engine = BagTraversalEngine(state, thresholds, pallet=pallet, sink=sink)
    finder = RepositionFinder(engine, WeightOracle(state), sink=sink)

    action = finder.reposition_action(target)
    log_event(log, "reposition_target", target=target, lighter=action.in_front_of, bag=action.stored_upper)
    report = InFrontReport(target=target, action=action)
    report.result = pipeline.submit([action], signer, send=send, count_limit=1)
    return report
