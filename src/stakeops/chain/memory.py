from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional, Sequence, Tuple

from stakeops.chain.reader import PinnedState, Params

Storage = Dict[Tuple[str, str], Dict[Tuple[Any, ...], Any]]


class InMemoryChainState:
    """
    Dict-backed chain state used for unit tests and offline fixtures.

    - Holds one storage snapshot per block hash
    - Values use the same decoded shapes substrate-interface returns
    - Counts round trips so tests can assert on batching
    """

    def __init__(self, *, finalized: str = "0xf1") -> None:
        self._blocks: Dict[str, Storage] = {finalized: {}}
        self._constants: Dict[Tuple[str, str], Any] = {}
        self._raw_keys: Dict[str, List[str]] = {finalized: []}
        self._numbers: Dict[str, int] = {finalized: 1}
        self._finalized = finalized
        self.round_trips = 0

    # ---- reader surface ----

    def _storage(self, block_hash: Optional[str]) -> Storage:
        h = block_hash or self._finalized
        if h not in self._blocks:
            raise KeyError(f"unknown block {h}")
        return self._blocks[h]

    def read(self, module: str, item: str, params: Optional[Params] = None, *, block_hash: Optional[str] = None) -> Any:
        self.round_trips += 1
        items = self._storage(block_hash).get((module, item), {})
        return copy.deepcopy(items.get(tuple(params or ())))

    def read_many(
        self, module: str, item: str, params_list: Sequence[Params], *, block_hash: Optional[str] = None
    ) -> List[Any]:
        self.round_trips += 1
        items = self._storage(block_hash).get((module, item), {})
        return [copy.deepcopy(items.get(tuple(p))) for p in params_list]

    def read_entries(
        self, module: str, item: str, params: Optional[Params] = None, *, block_hash: Optional[str] = None
    ) -> List[Tuple[Any, Any]]:
        self.round_trips += 1
        prefix = tuple(params or ())
        out: List[Tuple[Any, Any]] = []
        for key, value in self._storage(block_hash).get((module, item), {}).items():
            if key[: len(prefix)] != prefix:
                continue
            rest = key[len(prefix) :]
            out.append((rest[0] if len(rest) == 1 else rest, copy.deepcopy(value)))
        return out

    def read_paged_keys(
        self, prefix: str, page_size: int, start_key: Optional[str] = None, *, block_hash: Optional[str] = None
    ) -> List[str]:
        self.round_trips += 1
        keys = sorted(k for k in self._raw_keys.get(block_hash or self._finalized, []) if k.startswith(prefix))
        if start_key is not None:
            keys = [k for k in keys if k > start_key]
        return keys[:page_size]

    def constant(self, module: str, name: str, *, block_hash: Optional[str] = None) -> Any:
        self.round_trips += 1
        return copy.deepcopy(self._constants.get((module, name)))

    def finalized_head(self) -> str:
        return self._finalized

    def block_number(self, block_hash: str) -> int:
        return self._numbers[block_hash]

    def block_hash(self, number: int) -> Optional[str]:
        for h, n in self._numbers.items():
            if n == number:
                return h
        return None

    def pin_to(self, block_hash: str) -> PinnedState:
        self._storage(block_hash)
        return PinnedState(self, block_hash)

    # ---- fixture helpers ----

    def put(self, module: str, item: str, key: Params, value: Any, *, block_hash: Optional[str] = None) -> None:
        self._storage(block_hash).setdefault((module, item), {})[tuple(key)] = value

    def remove(self, module: str, item: str, key: Params, *, block_hash: Optional[str] = None) -> None:
        self._storage(block_hash).get((module, item), {}).pop(tuple(key), None)

    def set_constant(self, module: str, name: str, value: Any) -> None:
        self._constants[(module, name)] = value

    def add_raw_keys(self, keys: Sequence[str], *, block_hash: Optional[str] = None) -> None:
        self._raw_keys.setdefault(block_hash or self._finalized, []).extend(keys)

    def add_block(self, block_hash: str, *, copy_from: Optional[str] = None, finalize: bool = False) -> None:
        base = self._blocks.get(copy_from or self._finalized, {})
        self._blocks[block_hash] = copy.deepcopy(base)
        self._numbers[block_hash] = max(self._numbers.values()) + 1
        if finalize:
            self._finalized = block_hash
