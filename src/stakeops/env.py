# src/stakeops/env.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

_LOADED = False

DEFAULT_WS = "wss://rpc.polkadot.io"


def load_dotenv_if_present(dotenv_path: Optional[str] = None) -> bool:
    """
    Load operator settings from a .env file, once per process.

    Path rules:
        1) If dotenv_path arg provided, use it.
        2) Else if STAKEOPS_DOTENV_PATH is set, use that.
        3) Else default to ".env" in current working directory.

    Existing environment variables always win over the file.

    Returns True if a dotenv file was found AND loaded, else False.
    """
    global _LOADED
    if _LOADED:
        return False

    path = Path(dotenv_path or os.getenv("STAKEOPS_DOTENV_PATH", ".env")).expanduser()
    _LOADED = True
    if not path.is_file():
        return False

    load_dotenv(dotenv_path=str(path), override=False)
    return True


def env_str(name: str, default: str = "") -> str:
    v = os.environ.get(name)
    if v is None or not v.strip():
        return default
    return v.strip()


def env_bool(name: str, default: bool) -> bool:
    v = os.environ.get(name)
    if v is None:
        return bool(default)
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, str(default)))
    except ValueError:
        return float(default)


def seed_from_env() -> Optional[str]:
    """STAKEOPS_SEED, falling back to the legacy SEED variable."""
    for name in ("STAKEOPS_SEED", "SEED"):
        v = env_str(name)
        if v:
            return v
    return None
