"""Signed state-trie migration rounds.

Each round submits one StateTrieMigration.continue_migrate against the
latest state. When the dry-run reports SizeUpperBoundExceeded (the next
keys do not fit in 2x the size limit) the item limit is halved and a fresh
call is built; any other dry-run error aborts the run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from stakeops.chain.reader import ChainStateReader
from stakeops.chain.types import Call
from stakeops.errors import ConfigurationError, DryRunFailure, MigrationAborted
from stakeops.metrics import MIGRATION_BACKOFFS, inc_counter
from stakeops.structured_logging import log_event
from stakeops.tx.pipeline import SKIP_DRY_RUN_ONLY, BatchSubmitPipeline, SubmitResult

log = logging.getLogger("stakeops.migration")

MIGRATION_PALLET = "StateTrieMigration"
SIZE_UPPER_BOUND_EXCEEDED = 3
SIZE_UPPER_BOUND_EXCEEDED_NAME = "SizeUpperBoundExceeded"


def next_limit(n: int) -> int:
    return int(n) // 2


@dataclass(frozen=True, slots=True)
class MigrationLimits:
    item: int
    size: int

    def to_param(self) -> dict:
        return {"size": int(self.size), "item": int(self.item)}


def is_complete(task: Any) -> bool:
    if not isinstance(task, dict):
        return False
    top = task.get("progress_top")
    if isinstance(top, dict):
        return "Complete" in top
    return top == "Complete"


@dataclass
class MigrationReport:
    rounds: int = 0
    completed: bool = False
    spent: List[int] = field(default_factory=list)
    results: List[SubmitResult] = field(default_factory=list)


class TrieMigrationRunner:
    def __init__(
        self,
        reader: ChainStateReader,
        pipeline: BatchSubmitPipeline,
        signer: Any,
        *,
        pallet: str = MIGRATION_PALLET,
    ) -> None:
        self.reader = reader
        self.pipeline = pipeline
        self.signer = signer
        self.pallet = pallet

    def check_limits(self, limits: MigrationLimits) -> None:
        raw = self.reader.read(self.pallet, "SignedMigrationMaxLimits")
        if raw is None:
            raise ConfigurationError("signed migration max limits not set on chain")
        max_size = int(raw.get("size", raw.get("size_", 0)))
        max_item = int(raw.get("item", 0))
        if limits.size > max_size or limits.item > max_item:
            raise ConfigurationError(
                "limits exceed the signed migration maximum",
                {"max": {"item": max_item, "size": max_size}, "requested": limits.to_param()},
            )

    def current_task(self) -> Any:
        return self.reader.read(self.pallet, "MigrationProcess")

    def free_balance(self) -> int:
        account = self.reader.read("System", "Account", [self.signer.ss58_address]) or {}
        return int((account.get("data") or {}).get("free") or 0)

    def build_call(self, limits: MigrationLimits) -> Call:
        return Call(
            self.pallet,
            "continue_migrate",
            {
                "limits": limits.to_param(),
                "real_size_upper": 2 * int(limits.size),
                "witness_task": self.current_task(),
            },
        )

    def run_round(self, limits: MigrationLimits, *, send: bool) -> Optional[SubmitResult]:
        item = int(limits.item)
        for _ in range(item.bit_length() + 1):
            attempt = MigrationLimits(item=item, size=limits.size)
            signed, outcome = self.pipeline.dry_run_calls([self.build_call(attempt)], self.signer, batch=False)
            if outcome.ok:
                if not send:
                    self.pipeline.report_skip(SKIP_DRY_RUN_ONLY, calls=1, item=item, size=limits.size)
                    return None
                result = self.pipeline.broadcast(signed, 1)
                for ev in result.included_events:
                    if "migrat" in ev.lower():
                        log_event(log, "migration_event", event_label=ev)
                return result

            if not outcome.is_module_error(SIZE_UPPER_BOUND_EXCEEDED, name=SIZE_UPPER_BOUND_EXCEEDED_NAME):
                raise DryRunFailure(outcome)

            smaller = next_limit(item)
            inc_counter(MIGRATION_BACKOFFS)
            log_event(log, "migration_backoff", level=logging.WARNING, item_from=item, item_to=smaller)
            if smaller < 1:
                raise MigrationAborted(
                    "cannot migrate even one storage key within the size limit; rerun with a higher size limit",
                    {"size": limits.size},
                )
            item = smaller
        raise MigrationAborted("item limit backoff exhausted", {"item": limits.item, "size": limits.size})

    def run(self, limits: MigrationLimits, *, send: bool, count: Optional[int] = None) -> MigrationReport:
        self.check_limits(limits)
        report = MigrationReport()
        task = self.current_task()
        while not is_complete(task):
            log_event(log, "migration_round", round=report.rounds + 1, task=task)
            before = self.free_balance()
            result = self.run_round(limits, send=send)
            report.rounds += 1
            if result is None:
                # Dry-run only: state does not advance, one round is all there is to see.
                break
            report.results.append(result)
            spent = before - self.free_balance()
            report.spent.append(spent)
            log_event(log, "migration_fee", round=report.rounds, spent=spent)
            task = self.current_task()
            if count is not None and report.rounds >= count:
                log_event(log, "migration_count_reached", count=count)
                break
        report.completed = is_complete(task)
        log_event(log, "migration_done", rounds=report.rounds, completed=report.completed)
        return report
