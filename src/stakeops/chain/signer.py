from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Tuple

from substrateinterface import Keypair, KeypairType

from stakeops.env import seed_from_env
from stakeops.structured_logging import log_event

log = logging.getLogger("stakeops.signer")

DEV_ACCOUNT_URI = "//Alice"


def _read_secret(path: Path) -> str:
    return path.read_text(encoding="utf-8").strip()


def resolve_suri(seed_or_path: Optional[str]) -> Tuple[str, str]:
    """Return (secret uri, source) for a seed file path, raw seed, env var or dev fallback.

    source is one of "file", "arg", "env", "dev" and is safe to log.
    """
    raw = str(seed_or_path or "").strip()
    source = "arg"
    if not raw:
        raw = seed_from_env() or ""
        source = "env"
    if not raw:
        return DEV_ACCOUNT_URI, "dev"

    p = Path(raw).expanduser()
    try:
        if p.is_file():
            return _read_secret(p), "file"
    except OSError:
        # Long mnemonics can trip path length limits; treat as seed data.
        pass
    return raw, source


def load_keypair(seed_or_path: Optional[str] = None, *, ss58_format: Optional[int] = None) -> Keypair:
    suri, source = resolve_suri(seed_or_path)
    if source == "dev":
        log_event(log, "dev_account_fallback", uri=DEV_ACCOUNT_URI, level=logging.WARNING)
    kp = Keypair.create_from_uri(suri, ss58_format=ss58_format if ss58_format is not None else 42, crypto_type=KeypairType.SR25519)
    log_event(log, "signer_loaded", address=kp.ss58_address, source=source)
    return kp
