"""Per-command configuration models.

Each CLI subcommand builds exactly one of these at the boundary, before any
network activity. Invalid combinations surface as ConfigurationError (exit 2).

Env defaults:
    STAKEOPS_WS           websocket endpoint (default wss://rpc.polkadot.io)
    STAKEOPS_LIST_PALLET  list pallet name (default VoterList; BagsList on older runtimes)
"""

from __future__ import annotations

import re
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from stakeops.chain.reader import DEFAULT_KEY_PAGE_SIZE
from stakeops.env import DEFAULT_WS, env_str
from stakeops.errors import ConfigurationError

_BLOCK_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
_COUNT_RE = re.compile(r"^[0-9]+$")
_KEY_PREFIX_RE = re.compile(r"^0x(?:[0-9a-fA-F]{2})*$")

M = TypeVar("M", bound=BaseModel)


class _StrictModel(BaseModel):
    """Strict model: reject unknown keys."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class ConnectionConfig(_StrictModel):
    ws: str = Field(default_factory=lambda: env_str("STAKEOPS_WS", DEFAULT_WS))
    seed: Optional[str] = None
    at: Optional[str] = None
    list_pallet: str = Field(default_factory=lambda: env_str("STAKEOPS_LIST_PALLET", "VoterList"), min_length=1)

    @field_validator("ws")
    @classmethod
    def _ws_scheme(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("ws://", "wss://")):
            raise ValueError("ws endpoint must start with ws:// or wss://")
        return v

    @field_validator("at")
    @classmethod
    def _block_hash(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        v = v.strip()
        if not _BLOCK_HASH_RE.match(v):
            raise ValueError("--at must be a 0x-prefixed 32 byte block hash")
        return v


class RebagConfig(_StrictModel):
    """target is "all", a positive count, or a single account."""

    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    send_tx: bool = False
    target: str = "all"

    @field_validator("target")
    @classmethod
    def _target(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("target must be 'all', a count, or an account")
        if _COUNT_RE.match(v) and int(v) < 1:
            raise ValueError("count target must be >= 1")
        return v

    @property
    def count(self) -> Optional[int]:
        return int(self.target) if _COUNT_RE.match(self.target) else None

    @property
    def account(self) -> Optional[str]:
        if self.target == "all" or self.count is not None:
            return None
        return self.target


class InFrontConfig(_StrictModel):
    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    send_tx: bool = False
    target: str = Field(..., min_length=1)


class ChillOtherConfig(_StrictModel):
    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    send_tx: bool = False
    count: Optional[int] = Field(default=None, ge=1)


class ReapStashConfig(_StrictModel):
    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    send_tx: bool = False
    count: Optional[int] = Field(default=None, ge=1)


class TrieMigrationConfig(_StrictModel):
    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    send_tx: bool = False
    item_limit: int = Field(..., ge=1)
    size_limit: int = Field(..., ge=1)
    count: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _unpinned(self) -> "TrieMigrationConfig":
        if self.connection.at is not None:
            raise ValueError("state-trie-migration always runs against the latest state; --at is not allowed")
        return self


class ScrapeKeysConfig(_StrictModel):
    """Raw storage keys under a hex prefix, read at the pinned block."""

    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    prefix: str = Field(..., min_length=2)
    page_size: int = Field(default=DEFAULT_KEY_PAGE_SIZE, ge=1, le=DEFAULT_KEY_PAGE_SIZE)

    @field_validator("prefix")
    @classmethod
    def _hex_prefix(cls, v: str) -> str:
        v = v.strip().lower()
        if not _KEY_PREFIX_RE.match(v):
            raise ValueError("prefix must be 0x-prefixed hex with whole bytes")
        return v


def build_config(model: Type[M], values: Dict[str, Any]) -> M:
    """Validate `values` into `model`; None values fall back to field defaults."""
    clean = {k: v for k, v in values.items() if v is not None}
    conn = clean.get("connection")
    if isinstance(conn, dict):
        clean["connection"] = {k: v for k, v in conn.items() if v is not None}
    try:
        return model(**clean)
    except ValidationError as ve:
        errors = [
            {"loc": ".".join(str(p) for p in e.get("loc", ())), "msg": e.get("msg")}
            for e in ve.errors()
        ]
        raise ConfigurationError(f"invalid {model.__name__}", {"errors": errors}) from ve
