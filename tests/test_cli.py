from __future__ import annotations

from stakeops.chain.memory import InMemoryChainState
from stakeops.chain.types import MAX_BAG_UPPER, Call
from stakeops.cli import Runtime, main
from stakeops.testing.fixtures import FakeSigner, RecordingSubmitter, build_bags_state

LADDER = [50, 100, 200, MAX_BAG_UPPER]


class _Connector:
    def __init__(self, chain: InMemoryChainState, sub: RecordingSubmitter) -> None:
        self.chain = chain
        self.sub = sub
        self.calls = 0
        self.closed = 0

    def __call__(self, conn) -> Runtime:
        self.calls += 1
        return Runtime(reader=self.chain, submitter=self.sub, signer=FakeSigner(), close=self._close)

    def _close(self) -> None:
        self.closed += 1


def test_rebag_send_submits_single_correction() -> None:
    chain = build_bags_state(LADDER, {100: [("a", 60), ("grown", 150)]})
    conn = _Connector(chain, RecordingSubmitter())

    assert main(["rebag", "--send-tx"], connect=conn) == 0
    assert conn.sub.broadcast_calls() == [Call("VoterList", "rebag", {"dislocated": "grown"})]
    assert conn.closed == 1


def test_rebag_single_account_target() -> None:
    chain = build_bags_state(LADDER, {100: [("a", 60), ("grown", 150)]})
    conn = _Connector(chain, RecordingSubmitter())

    assert main(["rebag", "--target", "a"], connect=conn) == 0
    assert conn.sub.dry_runs == []

    assert main(["rebag", "--target", "grown"], connect=conn) == 0
    assert conn.sub.dry_run_calls() == [Call("VoterList", "rebag", {"dislocated": "grown"})]
    assert conn.sub.broadcasts == []


def test_configuration_error_exits_2_before_connecting(capsys) -> None:
    conn = _Connector(InMemoryChainState(), RecordingSubmitter())

    assert main(["--ws", "http://nope", "rebag"], connect=conn) == 2
    assert main(["state-trie-migration", "--size-limit", "10"], connect=conn) == 2
    assert conn.calls == 0
    assert "error: configuration:" in capsys.readouterr().out


def test_structural_failure_exits_1_and_prints_error(capsys) -> None:
    chain = build_bags_state(LADDER, {100: [("a", 60)]})
    chain.put("VoterList", "CounterForListNodes", [], 2)
    conn = _Connector(chain, RecordingSubmitter())

    assert main(["rebag"], connect=conn) == 1
    assert "structural_integrity" in capsys.readouterr().out
    assert conn.closed == 1


def test_in_front_dry_run() -> None:
    chain = build_bags_state([50, 200, 1000], {200: [("A", 100), ("B", 80), ("C", 60), ("D", 90)]})
    conn = _Connector(chain, RecordingSubmitter())

    assert main(["in-front", "--target", "D"], connect=conn) == 0
    assert conn.sub.dry_run_calls() == [Call("VoterList", "put_in_front_of_other", {"heavier": "D", "lighter": "B"})]


def test_list_pallet_flag_selects_storage() -> None:
    chain = build_bags_state(LADDER, {100: [("grown", 150)]}, pallet="BagsList")
    conn = _Connector(chain, RecordingSubmitter())

    assert main(["--list-pallet", "BagsList", "rebag"], connect=conn) == 0
    assert conn.sub.dry_run_calls() == [Call("BagsList", "rebag", {"dislocated": "grown"})]


def test_scrape_keys_prints_every_key_under_prefix(capsys) -> None:
    chain = InMemoryChainState()
    chain.add_raw_keys(["0xaa00", "0xaa01", "0xaa02", "0xbb00"])
    conn = _Connector(chain, RecordingSubmitter())

    assert main(["scrape-keys", "--prefix", "0xAA", "--page-size", "2"], connect=conn) == 0
    assert capsys.readouterr().out.split() == ["0xaa00", "0xaa01", "0xaa02"]
    assert conn.sub.dry_runs == []


def test_scrape_keys_rejects_odd_length_prefix() -> None:
    conn = _Connector(InMemoryChainState(), RecordingSubmitter())

    assert main(["scrape-keys", "--prefix", "0xa"], connect=conn) == 2
    assert main(["scrape-keys"], connect=conn) == 2
    assert conn.calls == 0
