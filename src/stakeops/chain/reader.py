"""
stakeops: chain state access (abstract layer)

The rest of the toolkit only sees chain state through ChainStateReader,
and reads that must be mutually consistent go through a PinnedState bound
to one block hash. Backends:
  - substrate.SubstrateStateReader: websocket RPC via substrate-interface
  - memory.InMemoryChainState: dict-backed snapshots for tests/fixtures
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from stakeops.structured_logging import log_event

log = logging.getLogger("stakeops.chain")

Params = Sequence[Any]

DEFAULT_KEY_PAGE_SIZE = 1000


@runtime_checkable
class ChainStateReader(Protocol):
    """Decoded storage access at an optional block pin.

    Absent storage decodes to None; callers decide whether that is an error.
    """

    def read(self, module: str, item: str, params: Optional[Params] = None, *, block_hash: Optional[str] = None) -> Any: ...

    def read_many(
        self, module: str, item: str, params_list: Sequence[Params], *, block_hash: Optional[str] = None
    ) -> List[Any]: ...

    def read_entries(
        self, module: str, item: str, params: Optional[Params] = None, *, block_hash: Optional[str] = None
    ) -> List[Tuple[Any, Any]]: ...

    def read_paged_keys(
        self, prefix: str, page_size: int, start_key: Optional[str] = None, *, block_hash: Optional[str] = None
    ) -> List[str]: ...

    def constant(self, module: str, name: str, *, block_hash: Optional[str] = None) -> Any: ...

    def finalized_head(self) -> str: ...

    def block_number(self, block_hash: str) -> int: ...

    def block_hash(self, number: int) -> Optional[str]: ...

    def pin_to(self, block_hash: str) -> "PinnedState": ...


class PinnedState:
    """A reader bound to one block: every read sees the same snapshot."""

    def __init__(self, reader: ChainStateReader, block_hash: str) -> None:
        if not str(block_hash or "").strip():
            raise ValueError("block_hash must be a non-empty string")
        self.reader = reader
        self.block_hash = str(block_hash)

    def read(self, module: str, item: str, params: Optional[Params] = None) -> Any:
        return self.reader.read(module, item, params, block_hash=self.block_hash)

    def read_many(self, module: str, item: str, params_list: Sequence[Params]) -> List[Any]:
        if not params_list:
            return []
        return self.reader.read_many(module, item, params_list, block_hash=self.block_hash)

    def read_entries(self, module: str, item: str, params: Optional[Params] = None) -> List[Tuple[Any, Any]]:
        return self.reader.read_entries(module, item, params, block_hash=self.block_hash)

    def read_paged_keys(self, prefix: str, page_size: int, start_key: Optional[str] = None) -> List[str]:
        return self.reader.read_paged_keys(prefix, page_size, start_key, block_hash=self.block_hash)

    def constant(self, module: str, name: str) -> Any:
        return self.reader.constant(module, name, block_hash=self.block_hash)

    def __repr__(self) -> str:
        return f"PinnedState(block_hash={self.block_hash!r})"


def pin_finalized(reader: ChainStateReader, at: Optional[str] = None) -> PinnedState:
    """Pin to an explicit block hash, or to the current finalized head."""
    block_hash = str(at or "").strip() or reader.finalized_head()
    log_event(log, "state_pinned", block_hash=block_hash, explicit=bool(at))
    return reader.pin_to(block_hash)


def scrape_prefix_keys(state: PinnedState, prefix: str, page_size: int = DEFAULT_KEY_PAGE_SIZE) -> List[str]:
    """All storage keys under `prefix`, paging until a short page comes back."""
    if page_size <= 0:
        raise ValueError("page_size must be > 0")
    keys: List[str] = []
    start_key: Optional[str] = None
    while True:
        page = state.read_paged_keys(prefix, page_size, start_key)
        keys.extend(page)
        if len(page) < page_size:
            break
        start_key = page[-1]
    return keys
