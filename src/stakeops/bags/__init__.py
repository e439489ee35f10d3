"""
stakeops: bags-list engine

  - thresholds: the runtime's bag upper bounds + canonical bag lookup
  - weights: active stake recomputed from Staking.Bonded / Staking.Ledger
  - traversal: validated walk of every bag at one pinned block
  - classifier: stored bag vs canonical bag -> corrective action
  - reposition: in-bag reorder target for put_in_front_of_other
"""

from __future__ import annotations

__all__ = [
    "thresholds",
    "weights",
    "traversal",
    "classifier",
    "reposition",
]
