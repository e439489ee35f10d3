"""
Transaction submission: compose, sign, dry-run, broadcast, watch.

The dry-run is a non-committing `system_dryRun` against current (unpinned)
state. Submission is a single commit per call; this layer never retries.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Iterator, List, Optional, Protocol, Sequence, runtime_checkable

from substrateinterface import Keypair, SubstrateInterface
from substrateinterface.exceptions import SubstrateRequestException

from stakeops.chain.reader import ChainStateReader
from stakeops.chain.types import Call
from stakeops.env import env_float
from stakeops.errors import FinalityTimeout, SubmissionFailure
from stakeops.structured_logging import log_event

log = logging.getLogger("stakeops.tx")

STATUS_BROADCAST = "broadcast"
STATUS_IN_BLOCK = "in_block"
STATUS_FINALIZED = "finalized"


@dataclass(frozen=True, slots=True)
class DryRunOutcome:
    """Decoded ApplyExtrinsicResult.

    kind:
      - "ok": the call would dispatch successfully
      - "dispatch_error": valid transaction, failing call (module error etc.)
      - "invalid": the transaction itself would be rejected by the pool
    """

    ok: bool
    kind: str
    module_index: Optional[int] = None
    error_index: Optional[int] = None
    error_name: Optional[str] = None
    detail: Any = None

    def is_module_error(self, error_index: int, *, name: Optional[str] = None) -> bool:
        if self.kind != "dispatch_error" or self.error_index is None:
            return False
        if self.error_index != int(error_index):
            return False
        return name is None or self.error_name is None or self.error_name == name

    def describe(self) -> str:
        if self.ok:
            return "ok"
        if self.error_name:
            return f"{self.kind}:{self.error_name}"
        if self.error_index is not None:
            return f"{self.kind}:module[{self.module_index}].error[{self.error_index}]"
        return f"{self.kind}:{self.detail!r}"


@dataclass(frozen=True, slots=True)
class TxStatusUpdate:
    status: str
    extrinsic_hash: Optional[str] = None
    block_hash: Optional[str] = None
    events: List[str] = field(default_factory=list)
    dispatch_error: Any = None


@runtime_checkable
class TransactionSubmitter(Protocol):
    def compose(self, call: Call) -> Any: ...

    def batch_all(self, calls: Sequence[Any]) -> Any: ...

    def sign(self, call: Any, keypair: Keypair) -> Any: ...

    def dry_run(self, signed: Any) -> DryRunOutcome: ...

    def submit_and_watch(self, signed: Any) -> Iterator[TxStatusUpdate]: ...


def parse_dispatch_error(err: Any) -> tuple[Optional[int], Optional[int]]:
    """(module_index, error_index) for a decoded DispatchError::Module, else (None, None)."""
    if not isinstance(err, dict) or "Module" not in err:
        return None, None
    m = err["Module"]
    if isinstance(m, (tuple, list)):
        module_index, error_index = m[0], m[1]
    else:
        module_index, error_index = m.get("index"), m.get("error")
    if isinstance(error_index, str):
        # [u8; 4] encoding: the pallet error index is the first byte.
        error_index = int(error_index[2:4], 16)
    elif isinstance(error_index, (bytes, list)):
        error_index = int(error_index[0])
    return (None if module_index is None else int(module_index)), (None if error_index is None else int(error_index))


def outcome_from_apply_result(value: Any) -> DryRunOutcome:
    """Interpret the decoded value of an ApplyExtrinsicResult."""
    if isinstance(value, dict) and "Err" in value:
        return DryRunOutcome(ok=False, kind="invalid", detail=value["Err"])
    inner = value.get("Ok") if isinstance(value, dict) else value
    if isinstance(inner, dict) and "Err" in inner:
        module_index, error_index = parse_dispatch_error(inner["Err"])
        return DryRunOutcome(
            ok=False,
            kind="dispatch_error",
            module_index=module_index,
            error_index=error_index,
            detail=inner["Err"],
        )
    return DryRunOutcome(ok=True, kind="ok", detail=value)


def _event_label(record: Any) -> str:
    v = getattr(record, "value", record)
    ev = v.get("event", v) if isinstance(v, dict) else {}
    return f"{ev.get('module_id', '?')}::{ev.get('event_id', '?')}"


def _request_error(exc: SubstrateRequestException) -> Any:
    """The JSON-RPC error object a node sent back, or the exception text."""
    return exc.args[0] if exc.args else str(exc)


class SubstrateSubmitter:
    """TransactionSubmitter over substrate-interface.

    `chain` answers the finality questions (finalized head, block numbers,
    canonical hash at a height) after inclusion; it is normally the
    SubstrateStateReader sharing this connection.
    """

    def __init__(
        self,
        substrate: SubstrateInterface,
        chain: ChainStateReader,
        *,
        era_period: int = 64,
        finality_timeout_s: Optional[float] = None,
        poll_interval_s: float = 2.0,
    ) -> None:
        self.substrate = substrate
        self.chain = chain
        self.era_period = int(era_period)
        self.finality_timeout_s = (
            float(finality_timeout_s)
            if finality_timeout_s is not None
            else env_float("STAKEOPS_FINALITY_TIMEOUT_S", 180.0)
        )
        self.poll_interval_s = float(poll_interval_s)

    def compose(self, call: Call) -> Any:
        return self.substrate.compose_call(call_module=call.module, call_function=call.function, call_params=call.params)

    def batch_all(self, calls: Sequence[Any]) -> Any:
        return self.substrate.compose_call(call_module="Utility", call_function="batch_all", call_params={"calls": list(calls)})

    def sign(self, call: Any, keypair: Keypair) -> Any:
        return self.substrate.create_signed_extrinsic(call=call, keypair=keypair, era={"period": self.era_period})

    def dry_run(self, signed: Any) -> DryRunOutcome:
        # Public endpoints refuse system_dryRun as an unsafe RPC.
        try:
            resp = self.substrate.rpc_request("system_dryRun", [str(signed.data.to_hex())])
        except SubstrateRequestException as e:
            log_event(log, "dry_run_rejected", level=logging.WARNING, error=_request_error(e))
            return DryRunOutcome(ok=False, kind="invalid", detail=_request_error(e))

        raw = resp.get("result")
        if raw is None:
            return DryRunOutcome(ok=False, kind="invalid", detail=resp.get("error", "empty dry-run response"))
        try:
            value = self.substrate.decode_scale("ApplyExtrinsicResult", raw)
        except ValueError as e:
            return DryRunOutcome(ok=False, kind="invalid", detail=f"undecodable dry-run result: {e}")

        outcome = outcome_from_apply_result(value)
        if outcome.module_index is None or outcome.error_index is None:
            return outcome
        name = self.module_error_name(outcome.module_index, outcome.error_index)
        return outcome if name is None else replace(outcome, error_name=name)

    def module_error_name(self, module_index: int, error_index: int) -> Optional[str]:
        """Pallet error name from runtime metadata; None when the index is unknown."""
        try:
            err = self.substrate.metadata.get_module_error(module_index=module_index, error_index=error_index)
        except (IndexError, KeyError):
            return None
        return None if err is None else str(err.name)

    def submit_and_watch(self, signed: Any) -> Iterator[TxStatusUpdate]:
        try:
            receipt = self.substrate.submit_extrinsic(signed, wait_for_inclusion=True)
        except SubstrateRequestException as e:
            raise SubmissionFailure(f"transaction pool rejected the extrinsic: {_request_error(e)}") from e
        yield TxStatusUpdate(STATUS_BROADCAST, extrinsic_hash=receipt.extrinsic_hash)

        events = [_event_label(e) for e in receipt.triggered_events]
        yield TxStatusUpdate(
            STATUS_IN_BLOCK,
            extrinsic_hash=receipt.extrinsic_hash,
            block_hash=receipt.block_hash,
            events=events,
            dispatch_error=None if receipt.is_success else receipt.error_message,
        )

        self._wait_finalized(str(receipt.block_hash))
        yield TxStatusUpdate(
            STATUS_FINALIZED,
            extrinsic_hash=receipt.extrinsic_hash,
            block_hash=receipt.block_hash,
            events=events,
            dispatch_error=None if receipt.is_success else receipt.error_message,
        )

    def _wait_finalized(self, block_hash: str) -> None:
        number = self.chain.block_number(block_hash)
        deadline = time.monotonic() + self.finality_timeout_s
        while True:
            if self.chain.block_number(self.chain.finalized_head()) >= number:
                break
            if time.monotonic() >= deadline:
                raise FinalityTimeout(block_hash, self.finality_timeout_s)
            time.sleep(self.poll_interval_s)

        canonical = self.chain.block_hash(number)
        if canonical != block_hash:
            log_event(log, "inclusion_retracted", block_hash=block_hash, canonical=canonical, level=logging.ERROR)
            raise SubmissionFailure(f"inclusion block {block_hash} was retracted; finalized #{number} is {canonical}")
