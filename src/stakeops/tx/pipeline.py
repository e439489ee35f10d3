# src/stakeops/tx/pipeline.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple

from stakeops.bags.classifier import CorrectiveAction
from stakeops.bags.traversal import DEFAULT_LIST_PALLET
from stakeops.chain.submitter import (
    STATUS_FINALIZED,
    STATUS_IN_BLOCK,
    DryRunOutcome,
    TransactionSubmitter,
)
from stakeops.chain.types import Call
from stakeops.errors import DryRunFailure, SubmissionFailure
from stakeops.events import SUBMIT_SKIPPED, TX_STATUS, EventSink, emit
from stakeops.metrics import DRY_RUNS_FAILED, DRY_RUNS_OK, TX_FAILED, TX_SENT, inc_counter
from stakeops.structured_logging import log_event

log = logging.getLogger("stakeops.tx")

SKIP_EMPTY = "empty"
SKIP_DRY_RUN_FAILED = "dry_run_failed"
SKIP_DRY_RUN_ONLY = "dry_run_only"


@dataclass
class SubmitResult:
    success: bool
    calls: int
    extrinsic_hash: Optional[str] = None
    block_hash: Optional[str] = None
    included_events: List[str] = field(default_factory=list)
    finalized_events: List[str] = field(default_factory=list)
    dispatch_error: Any = None


class BatchSubmitPipeline:
    """
    Turns a list of calls into at most one transaction.

    Commit protocol:
      1) nothing to do -> no chain call at all
      2) compose, wrap in Utility.batch_all, sign
      3) dry-run against current state; a failure is reported and nothing is sent
      4) only with send=True: broadcast, then watch in_block -> finalized

    `submit` returns None whenever nothing was broadcast; `last_dry_run`
    keeps the most recent simulation outcome for callers that need it.
    """

    def __init__(
        self,
        submitter: TransactionSubmitter,
        *,
        pallet: str = DEFAULT_LIST_PALLET,
        sink: Optional[EventSink] = None,
    ) -> None:
        self.submitter = submitter
        self.pallet = pallet
        self.sink = sink
        self.last_dry_run: Optional[DryRunOutcome] = None

    def submit(
        self,
        actions: Sequence[CorrectiveAction],
        signer: Any,
        *,
        send: bool,
        count_limit: Optional[int] = None,
    ) -> Optional[SubmitResult]:
        calls = [a.to_call(self.pallet) for a in actions if a.needs_change]
        if count_limit is not None:
            calls = calls[: max(0, int(count_limit))]
        return self.submit_calls(calls, signer, send=send)

    def submit_calls(self, calls: Sequence[Call], signer: Any, *, send: bool, batch: bool = True) -> Optional[SubmitResult]:
        if not calls:
            self.report_skip(SKIP_EMPTY, calls=0)
            return None

        signed, outcome = self.dry_run_calls(calls, signer, batch=batch)
        if not outcome.ok:
            self.report_skip(SKIP_DRY_RUN_FAILED, calls=len(calls), error=str(DryRunFailure(outcome)))
            return None
        if not send:
            self.report_skip(SKIP_DRY_RUN_ONLY, calls=len(calls))
            return None
        return self.broadcast(signed, len(calls))

    def dry_run_calls(self, calls: Sequence[Call], signer: Any, *, batch: bool = True) -> Tuple[Any, DryRunOutcome]:
        """Compose, sign and simulate. Returns the signed extrinsic with its outcome."""
        composed = [self.submitter.compose(c) for c in calls]
        if batch or len(composed) != 1:
            call = self.submitter.batch_all(composed)
        else:
            call = composed[0]
        signed = self.submitter.sign(call, signer)
        outcome = self.submitter.dry_run(signed)
        self.last_dry_run = outcome

        inc_counter(DRY_RUNS_OK if outcome.ok else DRY_RUNS_FAILED)
        log_event(
            log,
            "dry_run",
            level=logging.INFO if outcome.ok else logging.WARNING,
            ok=outcome.ok,
            calls=len(calls),
            labels=sorted({c.label() for c in calls}),
            outcome=outcome.describe(),
        )
        return signed, outcome

    def broadcast(self, signed: Any, calls: int) -> SubmitResult:
        result = SubmitResult(success=False, calls=calls)
        inc_counter(TX_SENT)
        try:
            for update in self.submitter.submit_and_watch(signed):
                result.extrinsic_hash = update.extrinsic_hash or result.extrinsic_hash
                result.block_hash = update.block_hash or result.block_hash
                emit(self.sink, TX_STATUS, status=update.status, extrinsic_hash=update.extrinsic_hash, block_hash=update.block_hash)

                if update.status == STATUS_IN_BLOCK:
                    result.included_events = list(update.events)
                    if update.dispatch_error is not None:
                        result.dispatch_error = update.dispatch_error
                        raise SubmissionFailure(f"dispatch failed in block: {update.dispatch_error}", result)
                elif update.status == STATUS_FINALIZED:
                    result.finalized_events = list(update.events)
                    result.success = True

            if not result.success:
                raise SubmissionFailure("transaction watch ended before finality", result)
        except SubmissionFailure:
            inc_counter(TX_FAILED)
            raise
        return result

    def report_skip(self, reason: str, **fields: Any) -> None:
        emit(self.sink, SUBMIT_SKIPPED, level=logging.WARNING if reason == SKIP_DRY_RUN_FAILED else logging.INFO, reason=reason, **fields)
