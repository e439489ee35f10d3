from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, List, Mapping, Optional, Sequence, Tuple

from stakeops.chain.memory import InMemoryChainState
from stakeops.chain.submitter import (
    STATUS_BROADCAST,
    STATUS_FINALIZED,
    STATUS_IN_BLOCK,
    DryRunOutcome,
    TxStatusUpdate,
)
from stakeops.chain.types import Call

OK = DryRunOutcome(ok=True, kind="ok")


def module_error(module_index: int, error_index: int, name: Optional[str] = None) -> DryRunOutcome:
    """TEST ONLY. A dry-run outcome failing with DispatchError::Module."""
    return DryRunOutcome(
        ok=False,
        kind="dispatch_error",
        module_index=module_index,
        error_index=error_index,
        error_name=name,
        detail={"Module": {"index": module_index, "error": error_index}},
    )


@dataclass(frozen=True, slots=True)
class FakeSigner:
    ss58_address: str = "5SignerTestAccount"


def put_staker(
    chain: InMemoryChainState,
    stash: str,
    active: int,
    *,
    total: Optional[int] = None,
    controller: Optional[str] = None,
    block_hash: Optional[str] = None,
) -> None:
    ctrl = controller or f"ctrl-{stash}"
    chain.put("Staking", "Bonded", [stash], ctrl, block_hash=block_hash)
    chain.put(
        "Staking",
        "Ledger",
        [ctrl],
        {"stash": stash, "total": active if total is None else total, "active": active, "unlocking": []},
        block_hash=block_hash,
    )


def build_bags_state(
    ladder: Sequence[int],
    bags: Mapping[int, Sequence[Tuple[str, int]]],
    *,
    pallet: str = "VoterList",
    chain: Optional[InMemoryChainState] = None,
) -> InMemoryChainState:
    """
    TEST ONLY. A well-formed list at the finalized block.

    bags maps a bag upper to its members head -> tail as (stash, active stake).
    The stake is written to the staking ledger only; where a node sits is
    purely what `bags` says, so misplaced nodes are easy to express.
    """
    chain = chain or InMemoryChainState()
    chain.set_constant(pallet, "BagThresholds", list(ladder))
    population = 0
    for upper, members in bags.items():
        ids = [m[0] for m in members]
        if not ids:
            continue
        chain.put(pallet, "ListBags", [upper], {"head": ids[0], "tail": ids[-1]})
        for i, (who, active) in enumerate(members):
            chain.put(
                pallet,
                "ListNodes",
                [who],
                {
                    "id": who,
                    "prev": ids[i - 1] if i > 0 else None,
                    "next": ids[i + 1] if i + 1 < len(ids) else None,
                    "bag_upper": upper,
                    "score": active,
                },
            )
            put_staker(chain, who, active)
            population += 1
    chain.put(pallet, "CounterForListNodes", [], population)
    return chain


@dataclass
class RecordingSubmitter:
    """
    TransactionSubmitter fake used for unit tests.

    - compose/batch_all/sign return inspectable tuples, no metadata needed
    - dry_run pops queued outcomes (OK once the queue is empty)
    - submit_and_watch records what was broadcast and replays broadcast ->
      in_block -> finalized; `dispatch_error` makes the in_block stage fail
    - `on_broadcast` lets a test mutate chain state as a real block would
    """

    outcomes: List[DryRunOutcome] = field(default_factory=list)
    events: List[str] = field(default_factory=lambda: ["Utility::BatchCompleted", "System::ExtrinsicSuccess"])
    dispatch_error: Any = None
    on_broadcast: Optional[Callable[[Any], None]] = None

    dry_runs: List[Any] = field(default_factory=list)
    broadcasts: List[Any] = field(default_factory=list)

    def compose(self, call: Call) -> Any:
        return ("call", call)

    def batch_all(self, calls: Sequence[Any]) -> Any:
        return ("batch_all", list(calls))

    def sign(self, call: Any, keypair: Any) -> Any:
        return ("signed", call, getattr(keypair, "ss58_address", None))

    def dry_run(self, signed: Any) -> DryRunOutcome:
        self.dry_runs.append(signed)
        if self.outcomes:
            return self.outcomes.pop(0)
        return OK

    def submit_and_watch(self, signed: Any) -> Iterator[TxStatusUpdate]:
        self.broadcasts.append(signed)
        n = len(self.broadcasts)
        xt, block = f"0xe{n:03d}", f"0xb{n:03d}"
        if self.on_broadcast is not None:
            self.on_broadcast(signed)
        yield TxStatusUpdate(STATUS_BROADCAST, extrinsic_hash=xt)
        yield TxStatusUpdate(STATUS_IN_BLOCK, extrinsic_hash=xt, block_hash=block, events=list(self.events), dispatch_error=self.dispatch_error)
        yield TxStatusUpdate(STATUS_FINALIZED, extrinsic_hash=xt, block_hash=block, events=list(self.events))

    # ---- helpers for tests ----

    def broadcast_calls(self, index: int = -1) -> List[Call]:
        """The Calls inside a recorded broadcast, unwrapping batch_all."""
        return unwrap_calls(self.broadcasts[index])

    def dry_run_calls(self, index: int = -1) -> List[Call]:
        return unwrap_calls(self.dry_runs[index])


def unwrap_calls(signed: Any) -> List[Call]:
    _, call, _signer = signed
    if call[0] == "batch_all":
        return [c[1] for c in call[1]]
    return [call[1]]
