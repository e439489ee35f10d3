from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Set

from stakeops.chain.reader import PinnedState
from stakeops.chain.types import AccountId, Balance, StakingLedger
from stakeops.errors import MissingLedgerError


@dataclass
class WeightBatch:
    weights: Dict[AccountId, Balance] = field(default_factory=dict)
    missing: Dict[AccountId, MissingLedgerError] = field(default_factory=dict)


class WeightOracle:
    """Active stake of a stash: Staking.Bonded(stash) -> controller -> Staking.Ledger(ctrl).active.

    Results are memoised, so one oracle must only ever serve one PinnedState.
    Every list member is expected to have both hops; a miss is a state bug,
    reported as MissingLedgerError.
    """

    def __init__(self, state: PinnedState, *, staking_pallet: str = "Staking") -> None:
        self.state = state
        self.pallet = staking_pallet
        self._cache: Dict[AccountId, Balance] = {}

    def weight_of(self, stash: AccountId) -> Balance:
        if stash in self._cache:
            return self._cache[stash]
        ctrl = self.state.read(self.pallet, "Bonded", [stash])
        if ctrl is None:
            raise MissingLedgerError(stash, "controller")
        raw = self.state.read(self.pallet, "Ledger", [ctrl])
        if raw is None:
            raise MissingLedgerError(stash, "ledger")
        return self._remember(stash, StakingLedger.from_value(raw))

    def weights_of(self, stashes: Sequence[AccountId]) -> WeightBatch:
        """Batched weight_of: one multi-key read per hop for everything not cached."""
        out = WeightBatch()
        todo: List[AccountId] = []
        queued: Set[AccountId] = set()
        for s in stashes:
            if s in self._cache:
                out.weights[s] = self._cache[s]
            elif s not in queued:
                queued.add(s)
                todo.append(s)
        if not todo:
            return out

        ctrls = self.state.read_many(self.pallet, "Bonded", [[s] for s in todo])
        bonded: List[AccountId] = []
        bonded_ctrls: List[str] = []
        for stash, ctrl in zip(todo, ctrls):
            if ctrl is None:
                out.missing[stash] = MissingLedgerError(stash, "controller")
                continue
            bonded.append(stash)
            bonded_ctrls.append(str(ctrl))

        ledgers = self.state.read_many(self.pallet, "Ledger", [[c] for c in bonded_ctrls])
        for stash, raw in zip(bonded, ledgers):
            if raw is None:
                out.missing[stash] = MissingLedgerError(stash, "ledger")
                continue
            out.weights[stash] = self._remember(stash, StakingLedger.from_value(raw))
        return out

    def _remember(self, stash: AccountId, ledger: StakingLedger) -> Balance:
        self._cache[stash] = ledger.active
        return ledger.active
