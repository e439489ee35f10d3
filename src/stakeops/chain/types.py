"""
Decoded staking / bags-list records.

Everything here is a frozen snapshot of chain state at one block. Absent
links (bag head/tail, node prev/next) are Optional and must be checked
explicitly by callers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

AccountId = str  # ss58 address
Balance = int

# Upper bound of the top bag when the weight exceeds every threshold (u64::MAX).
MAX_BAG_UPPER: Balance = 2**64 - 1


def _opt_str(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


@dataclass(frozen=True, slots=True)
class Bag:
    upper: Balance
    head: Optional[AccountId]
    tail: Optional[AccountId]

    @property
    def is_empty(self) -> bool:
        return self.head is None and self.tail is None

    @property
    def is_consistent(self) -> bool:
        """Head and tail are both present or both absent."""
        return (self.head is None) == (self.tail is None)

    @staticmethod
    def from_value(upper: Any, value: Optional[Mapping[str, Any]]) -> "Bag":
        value = value or {}
        return Bag(upper=int(upper), head=_opt_str(value.get("head")), tail=_opt_str(value.get("tail")))


@dataclass(frozen=True, slots=True)
class ListNode:
    id: AccountId
    prev: Optional[AccountId]
    next: Optional[AccountId]
    bag_upper: Balance
    score: Optional[Balance] = None

    @staticmethod
    def from_value(value: Mapping[str, Any]) -> "ListNode":
        score = value.get("score")
        return ListNode(
            id=str(value["id"]),
            prev=_opt_str(value.get("prev")),
            next=_opt_str(value.get("next")),
            bag_upper=int(value["bag_upper"]),
            score=None if score is None else int(score),
        )


@dataclass(frozen=True, slots=True)
class StakingLedger:
    stash: AccountId
    total: Balance
    active: Balance

    @staticmethod
    def from_value(value: Mapping[str, Any]) -> "StakingLedger":
        return StakingLedger(
            stash=str(value["stash"]),
            total=int(value.get("total") or 0),
            active=int(value.get("active") or 0),
        )


@dataclass(frozen=True, slots=True)
class Call:
    """A runtime call, not yet encoded against metadata."""

    module: str
    function: str
    params: Dict[str, Any]

    def label(self) -> str:
        return f"{self.module}.{self.function}"
