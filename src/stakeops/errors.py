from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:  # pragma: no cover
    from stakeops.chain.submitter import DryRunOutcome
    from stakeops.tx.pipeline import SubmitResult


@dataclass
class StakeOpsError(Exception):
    """Canonical error type for every failure the toolkit reports."""

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class StructuralIntegrityError(StakeOpsError):
    """The on-chain list does not match its own invariants. Fatal for the run."""

    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("structural_integrity", reason, details)


class MissingLedgerError(StakeOpsError):
    """A list member lacks its controller or its ledger."""

    def __init__(self, stash: str, missing: str) -> None:
        super().__init__("missing_ledger", f"{stash} has no {missing}", {"stash": stash, "missing": missing})
        self.stash = stash
        self.missing = missing


class DryRunFailure(StakeOpsError):
    def __init__(self, outcome: "DryRunOutcome") -> None:
        super().__init__("dry_run_failed", outcome.describe(), outcome.detail)
        self.outcome = outcome


class SubmissionFailure(StakeOpsError):
    """Broadcast and included, but dispatch failed (state moved since the dry-run)."""

    def __init__(self, reason: str, result: Optional["SubmitResult"] = None) -> None:
        details = None
        if result is not None:
            details = {"block_hash": result.block_hash, "events": list(result.included_events)}
        super().__init__("submission_failed", reason, details)
        self.result = result


class FinalityTimeout(StakeOpsError):
    def __init__(self, block_hash: str, timeout_s: float) -> None:
        super().__init__("finality_timeout", f"block {block_hash} not finalized after {timeout_s:.0f}s")


class ConfigurationError(StakeOpsError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("configuration", reason, details)


class MigrationAborted(StakeOpsError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("migration_aborted", reason, details)
