# src/stakeops/chain/__init__.py
"""
stakeops: chain access package

  - types: decoded staking / bags-list records (frozen dataclasses)
  - reader: ChainStateReader protocol + PinnedState (one block per run)
  - substrate: websocket RPC reader over substrate-interface
  - memory: dict-backed reader for tests and offline fixtures
  - signer: keypair resolution (seed file, raw seed, env, dev account)
  - submitter: compose / sign / dry-run / submit-and-watch

Higher layers (bags, tx, services) depend on reader.PinnedState and
submitter.TransactionSubmitter only, never on substrate-interface directly.
"""

from __future__ import annotations

__all__ = [
    "types",
    "reader",
    "substrate",
    "memory",
    "signer",
    "submitter",
]
