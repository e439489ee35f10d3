from __future__ import annotations

import argparse
import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional

from stakeops.chain.reader import ChainStateReader, pin_finalized, scrape_prefix_keys
from stakeops.chain.submitter import TransactionSubmitter
from stakeops.config import (
    ChillOtherConfig,
    ConnectionConfig,
    InFrontConfig,
    ReapStashConfig,
    RebagConfig,
    ScrapeKeysConfig,
    TrieMigrationConfig,
    build_config,
)
from stakeops.env import load_dotenv_if_present
from stakeops.errors import ConfigurationError, StakeOpsError
from stakeops.events import EventRecorder
from stakeops.metrics import metrics_enabled, run_summary
from stakeops.services.chill_other import chill_other
from stakeops.services.in_front import put_in_front
from stakeops.services.reap_stash import reap_stash
from stakeops.services.rebag import rebag_all, rebag_single
from stakeops.services.state_trie_migration import MigrationLimits, TrieMigrationRunner
from stakeops.structured_logging import configure_structured_logging, log_event
from stakeops.tx.pipeline import BatchSubmitPipeline

log = logging.getLogger("stakeops.cli")


@dataclass
class Runtime:
    reader: ChainStateReader
    submitter: TransactionSubmitter
    signer: Any
    close: Optional[Callable[[], None]] = None


Connector = Callable[[ConnectionConfig], Runtime]


def connect_substrate(conn: ConnectionConfig) -> Runtime:
    from stakeops.chain.signer import load_keypair
    from stakeops.chain.submitter import SubstrateSubmitter
    from stakeops.chain.substrate import SubstrateStateReader

    reader = SubstrateStateReader(conn.ws)
    signer = load_keypair(conn.seed, ss58_format=reader.substrate.ss58_format)
    return Runtime(reader=reader, submitter=SubstrateSubmitter(reader.substrate, reader), signer=signer, close=reader.close)


def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="stakeops", description="Staking operator toolkit: bags-list rebag, chill, reap, trie migration and key scraping")
    p.add_argument("--ws", default=None, help="websocket endpoint (env STAKEOPS_WS)")
    p.add_argument("--seed", default=None, help="seed file path or raw seed/mnemonic (env STAKEOPS_SEED)")
    p.add_argument("--at", default=None, help="pin reads to this block hash instead of the finalized head")
    p.add_argument("--list-pallet", dest="list_pallet", default=None, help="VoterList or BagsList (env STAKEOPS_LIST_PALLET)")
    p.add_argument("--log-level", dest="log_level", default=None)

    sub = p.add_subparsers(dest="command", required=True)

    sp = sub.add_parser("rebag", help="check the bags list and optionally rebag misplaced nodes")
    sp.add_argument("--send-tx", dest="send_tx", action="store_true")
    sp.add_argument("--target", default="all", help="'all', a max number of rebags, or one account")

    sp = sub.add_parser("in-front", help="move an account ahead of the first lighter node in its bag")
    sp.add_argument("--send-tx", dest="send_tx", action="store_true")
    sp.add_argument("--target", default=None)

    sp = sub.add_parser("chill-other", help="chill nominators below the minimum bond")
    sp.add_argument("--send-tx", dest="send_tx", action="store_true")
    sp.add_argument("--count", type=int, default=None)

    sp = sub.add_parser("reap-stash", help="reap stashes whose ledger is at or below the existential deposit")
    sp.add_argument("--send-tx", dest="send_tx", action="store_true")
    sp.add_argument("--count", type=int, default=None)

    sp = sub.add_parser("state-trie-migration", help="run signed state-trie migration rounds")
    sp.add_argument("--send-tx", dest="send_tx", action="store_true")
    sp.add_argument("--item-limit", dest="item_limit", type=int, default=None)
    sp.add_argument("--size-limit", dest="size_limit", type=int, default=None)
    sp.add_argument("--count", type=int, default=None)

    sp = sub.add_parser("scrape-keys", help="print every raw storage key under a hex prefix at the pinned block")
    sp.add_argument("--prefix", default=None, help="0x-prefixed storage key prefix")
    sp.add_argument("--page-size", dest="page_size", type=int, default=None)
    return p


_MODELS: Dict[str, Any] = {
    "rebag": (RebagConfig, ("send_tx", "target")),
    "in-front": (InFrontConfig, ("send_tx", "target")),
    "chill-other": (ChillOtherConfig, ("send_tx", "count")),
    "reap-stash": (ReapStashConfig, ("send_tx", "count")),
    "state-trie-migration": (TrieMigrationConfig, ("send_tx", "item_limit", "size_limit", "count")),
    "scrape-keys": (ScrapeKeysConfig, ("prefix", "page_size")),
}


def config_from_args(args: argparse.Namespace) -> Any:
    model, fields = _MODELS[args.command]
    values: Dict[str, Any] = {f: getattr(args, f) for f in fields}
    values["connection"] = {"ws": args.ws, "seed": args.seed, "at": args.at, "list_pallet": args.list_pallet}
    return build_config(model, values)


def _run(command: str, cfg: Any, rt: Runtime, recorder: EventRecorder) -> None:
    conn: ConnectionConfig = cfg.connection
    pipeline = BatchSubmitPipeline(rt.submitter, pallet=conn.list_pallet, sink=recorder)

    if command == "state-trie-migration":
        runner = TrieMigrationRunner(rt.reader, pipeline, rt.signer)
        runner.run(MigrationLimits(item=cfg.item_limit, size=cfg.size_limit), send=cfg.send_tx, count=cfg.count)
        return

    state = pin_finalized(rt.reader, conn.at)
    if command == "rebag":
        if cfg.account is not None:
            rebag_single(state, pipeline, rt.signer, cfg.account, send=cfg.send_tx, pallet=conn.list_pallet, sink=recorder)
        else:
            rebag_all(state, pipeline, rt.signer, send=cfg.send_tx, count=cfg.count, pallet=conn.list_pallet, sink=recorder)
    elif command == "in-front":
        put_in_front(state, pipeline, rt.signer, cfg.target, send=cfg.send_tx, pallet=conn.list_pallet, sink=recorder)
    elif command == "chill-other":
        chill_other(state, pipeline, rt.signer, send=cfg.send_tx, count=cfg.count, sink=recorder)
    elif command == "reap-stash":
        reap_stash(state, pipeline, rt.signer, send=cfg.send_tx, count=cfg.count)
    elif command == "scrape-keys":
        keys = scrape_prefix_keys(state, cfg.prefix, page_size=cfg.page_size)
        log_event(log, "keys_scraped", block_hash=state.block_hash, prefix=cfg.prefix, keys=len(keys))
        for key in keys:
            print(key)


def main(argv: Optional[List[str]] = None, *, connect: Optional[Connector] = None) -> int:
    load_dotenv_if_present()
    args = _parser().parse_args(argv)
    configure_structured_logging(args.log_level)

    try:
        cfg = config_from_args(args)
    except ConfigurationError as e:
        print(f"error: {e}")
        log_event(log, "run_failed", level=logging.ERROR, command=args.command, code=e.code, reason=e.reason)
        return 2

    recorder = EventRecorder(logging.getLogger("stakeops.run"))
    rt: Optional[Runtime] = None
    try:
        rt = (connect or connect_substrate)(cfg.connection)
        _run(args.command, cfg, rt, recorder)
    except StakeOpsError as e:
        print(f"error: {e}")
        log_event(log, "run_failed", level=logging.ERROR, command=args.command, code=e.code, reason=e.reason)
        return 2 if isinstance(e, ConfigurationError) else 1
    finally:
        if rt is not None and rt.close is not None:
            rt.close()
        log_event(log, "run_summary", command=args.command, **asdict(recorder.state))
        if metrics_enabled():
            log_event(log, "metrics", **run_summary())

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
