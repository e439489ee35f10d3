from __future__ import annotations

import bisect
from dataclasses import dataclass
from typing import Iterable, Tuple

from stakeops.chain.reader import PinnedState
from stakeops.chain.types import MAX_BAG_UPPER, Balance
from stakeops.errors import StructuralIntegrityError


@dataclass(frozen=True)
class ThresholdTable:
    """The bag upper bounds configured by the runtime, ascending.

    An entry with weight w belongs to the smallest threshold strictly greater
    than w. Weights exactly on a threshold go to the bag above it.
    """

    thresholds: Tuple[Balance, ...]

    @staticmethod
    def from_values(values: Iterable[int]) -> "ThresholdTable":
        ladder = tuple(int(v) for v in values)
        if any(b <= a for a, b in zip(ladder, ladder[1:])):
            raise StructuralIntegrityError("bag thresholds are not strictly ascending", list(ladder))
        return ThresholdTable(ladder)

    @staticmethod
    def load(state: PinnedState, pallet: str) -> "ThresholdTable":
        raw = state.constant(pallet, "BagThresholds")
        if raw is None:
            raise StructuralIntegrityError(f"{pallet}.BagThresholds not found at {state.block_hash}")
        return ThresholdTable.from_values(raw)

    def canonical_bag_for(self, weight: Balance) -> Balance:
        i = bisect.bisect_right(self.thresholds, int(weight))
        if i >= len(self.thresholds):
            return MAX_BAG_UPPER
        return self.thresholds[i]

    def contains(self, upper: Balance) -> bool:
        # The unbounded top bag exists even when the ladder does not list u64::MAX.
        if int(upper) == MAX_BAG_UPPER:
            return True
        i = bisect.bisect_left(self.thresholds, int(upper))
        return i < len(self.thresholds) and self.thresholds[i] == int(upper)

    def __len__(self) -> int:
        return len(self.thresholds)
