from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from substrateinterface import SubstrateInterface

from stakeops.chain.reader import PinnedState, Params
from stakeops.structured_logging import log_event

log = logging.getLogger("stakeops.chain")

# Most public RPC nodes cap both state_queryStorageAt and state_getKeysPaged at 1000.
MULTI_QUERY_CHUNK = 500
ENTRIES_PAGE_SIZE = 1000


def _value(obj: Any) -> Any:
    return getattr(obj, "value", obj)


class SubstrateStateReader:
    """ChainStateReader over a substrate-interface websocket connection.

    Reads issued here are plain request/response calls; batching
    (query_multi, query_map pages) is what keeps a full-list walk tractable.
    """

    def __init__(
        self, url: str, *, ss58_format: Optional[int] = None, substrate: Optional[SubstrateInterface] = None
    ) -> None:
        self.url = url
        self.substrate = substrate if substrate is not None else SubstrateInterface(url=url, ss58_format=ss58_format)
        log_event(
            log,
            "connected",
            url=url,
            chain=str(self.substrate.chain),
            ss58_format=self.substrate.ss58_format,
            runtime=str(self.substrate.runtime_version),
        )

    def read(self, module: str, item: str, params: Optional[Params] = None, *, block_hash: Optional[str] = None) -> Any:
        obj = self.substrate.query(module, item, list(params or []), block_hash=block_hash)
        return _value(obj)

    def read_many(
        self, module: str, item: str, params_list: Sequence[Params], *, block_hash: Optional[str] = None
    ) -> List[Any]:
        out: List[Any] = []
        for i in range(0, len(params_list), MULTI_QUERY_CHUNK):
            chunk = params_list[i : i + MULTI_QUERY_CHUNK]
            keys = [self.substrate.create_storage_key(module, item, list(p), block_hash=block_hash) for p in chunk]
            by_key: Dict[str, Any] = {}
            for storage_key, obj in self.substrate.query_multi(keys, block_hash=block_hash):
                by_key[storage_key.to_hex()] = _value(obj)
            # query_multi only promises one result per key, not request order.
            out.extend(by_key.get(k.to_hex()) for k in keys)
        return out

    def read_entries(
        self, module: str, item: str, params: Optional[Params] = None, *, block_hash: Optional[str] = None
    ) -> List[Tuple[Any, Any]]:
        result = self.substrate.query_map(
            module, item, list(params or []), block_hash=block_hash, page_size=ENTRIES_PAGE_SIZE
        )
        return [(_value(k), _value(v)) for k, v in result]

    def read_paged_keys(
        self, prefix: str, page_size: int, start_key: Optional[str] = None, *, block_hash: Optional[str] = None
    ) -> List[str]:
        resp = self.substrate.rpc_request("state_getKeysPaged", [prefix, int(page_size), start_key, block_hash])
        return [str(k) for k in (resp.get("result") or [])]

    def constant(self, module: str, name: str, *, block_hash: Optional[str] = None) -> Any:
        obj = self.substrate.get_constant(module, name, block_hash=block_hash)
        return None if obj is None else _value(obj)

    def finalized_head(self) -> str:
        return str(self.substrate.get_chain_finalised_head())

    def block_number(self, block_hash: str) -> int:
        return int(self.substrate.get_block_number(block_hash))

    def block_hash(self, number: int) -> Optional[str]:
        h = self.substrate.get_block_hash(int(number))
        return None if h is None else str(h)

    def pin_to(self, block_hash: str) -> PinnedState:
        return PinnedState(self, block_hash)

    def close(self) -> None:
        self.substrate.close()
