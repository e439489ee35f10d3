from __future__ import annotations

import pytest
from substrateinterface.exceptions import SubstrateRequestException

from stakeops.bags.classifier import CorrectiveAction, RebagAction
from stakeops.chain.memory import InMemoryChainState
from stakeops.chain.submitter import (
    DryRunOutcome,
    SubstrateSubmitter,
    outcome_from_apply_result,
    parse_dispatch_error,
)
from stakeops.chain.types import Call
from stakeops.errors import DryRunFailure, FinalityTimeout, SubmissionFailure
from stakeops.events import EventRecorder
from stakeops.metrics import DRY_RUNS_FAILED, TX_FAILED, run_summary
from stakeops.testing.fixtures import FakeSigner
from stakeops.tx.pipeline import BatchSubmitPipeline

MIGRATION_ERRORS = ["MaxSignedLimits", "KeyLimit", "BadWitness", "SizeUpperBoundExceeded"]
UNSAFE_RPC = {"code": -32601, "message": "RPC call is unsafe to be called externally"}


def test_parse_dispatch_error_shapes() -> None:
    assert parse_dispatch_error({"Module": {"index": 70, "error": "0x03000000"}}) == (70, 3)
    assert parse_dispatch_error({"Module": {"index": 70, "error": 3}}) == (70, 3)
    assert parse_dispatch_error({"Module": (37, 2)}) == (37, 2)
    assert parse_dispatch_error("BadOrigin") == (None, None)
    assert parse_dispatch_error({"Token": "FundsUnavailable"}) == (None, None)


def test_outcome_from_apply_result() -> None:
    ok = outcome_from_apply_result({"Ok": {"Ok": None}})
    assert ok.ok and ok.kind == "ok"

    failed = outcome_from_apply_result({"Ok": {"Err": {"Module": {"index": 70, "error": "0x03000000"}}}})
    assert not failed.ok
    assert failed.kind == "dispatch_error"
    assert failed.is_module_error(3)
    assert not failed.is_module_error(2)

    invalid = outcome_from_apply_result({"Err": {"Invalid": "Payment"}})
    assert invalid.kind == "invalid"
    assert not invalid.is_module_error(3)


def test_module_error_name_must_match_when_known() -> None:
    o = DryRunOutcome(ok=False, kind="dispatch_error", module_index=70, error_index=3, error_name="SizeUpperBoundExceeded")
    assert o.is_module_error(3, name="SizeUpperBoundExceeded")
    assert not o.is_module_error(3, name="Other")
    assert o.describe() == "dispatch_error:SizeUpperBoundExceeded"
    assert str(DryRunFailure(o)).startswith("dry_run_failed:dispatch_error:SizeUpperBoundExceeded")


# ---- dry-run and broadcast over a scripted substrate connection ----


class _Bytes:
    def __init__(self, hex_str: str) -> None:
        self.hex_str = hex_str

    def to_hex(self) -> str:
        return self.hex_str


class _Signed:
    data = _Bytes("0x4502")


class _ModuleError:
    def __init__(self, name: str) -> None:
        self.name = name


class _Metadata:
    """Pallet errors by module index; an unknown error index raises IndexError like the real lookup."""

    def __init__(self, errors) -> None:
        self.errors = errors

    def get_module_error(self, module_index, error_index):
        names = self.errors.get(module_index)
        if names is None:
            return None
        return _ModuleError(names[error_index])


class _ScriptedSubstrate:
    def __init__(self, *, result=None, reject_dry_run=None, reject_submit=None, errors=None) -> None:
        self.result = result
        self.reject_dry_run = reject_dry_run
        self.reject_submit = reject_submit
        self.metadata = _Metadata(errors or {})
        self.requests = []
        self.submitted = []

    def compose_call(self, call_module, call_function, call_params):
        return (call_module, call_function, call_params)

    def create_signed_extrinsic(self, call, keypair, era=None):
        return _Signed()

    def rpc_request(self, method, params):
        self.requests.append((method, params))
        if self.reject_dry_run is not None:
            raise SubstrateRequestException(self.reject_dry_run)
        return {"jsonrpc": "2.0", "result": "0x0000", "id": 1}

    def decode_scale(self, type_string, scale_bytes):
        assert type_string == "ApplyExtrinsicResult"
        return self.result

    def submit_extrinsic(self, extrinsic, wait_for_inclusion=False):
        self.submitted.append(extrinsic)
        raise SubstrateRequestException(self.reject_submit)


def _submitter(sub: _ScriptedSubstrate) -> SubstrateSubmitter:
    return SubstrateSubmitter(sub, InMemoryChainState(), finality_timeout_s=0, poll_interval_s=0)


def test_dry_run_ok_sends_signed_bytes() -> None:
    sub = _ScriptedSubstrate(result={"Ok": {"Ok": None}})
    outcome = _submitter(sub).dry_run(_Signed())

    assert outcome.ok and outcome.kind == "ok"
    assert sub.requests == [("system_dryRun", ["0x4502"])]


def test_dry_run_resolves_module_error_name() -> None:
    sub = _ScriptedSubstrate(
        result={"Ok": {"Err": {"Module": {"index": 70, "error": "0x03000000"}}}},
        errors={70: MIGRATION_ERRORS},
    )
    outcome = _submitter(sub).dry_run(_Signed())

    assert outcome.kind == "dispatch_error"
    assert outcome.error_name == "SizeUpperBoundExceeded"
    assert outcome.is_module_error(3, name="SizeUpperBoundExceeded")


def test_dry_run_keeps_indices_when_error_is_not_in_metadata() -> None:
    sub = _ScriptedSubstrate(
        result={"Ok": {"Err": {"Module": {"index": 70, "error": "0x09000000"}}}},
        errors={70: MIGRATION_ERRORS},
    )
    outcome = _submitter(sub).dry_run(_Signed())

    assert outcome.error_name is None
    assert outcome.describe() == "dispatch_error:module[70].error[9]"


def test_dry_run_refused_by_node_is_an_invalid_outcome() -> None:
    sub = _ScriptedSubstrate(reject_dry_run=UNSAFE_RPC)
    outcome = _submitter(sub).dry_run(_Signed())

    assert not outcome.ok
    assert outcome.kind == "invalid"
    assert outcome.detail == UNSAFE_RPC


def test_pipeline_reports_refused_dry_run_and_sends_nothing() -> None:
    sub = _ScriptedSubstrate(reject_dry_run=UNSAFE_RPC)
    rec = EventRecorder()
    pipe = BatchSubmitPipeline(_submitter(sub), sink=rec)
    act = CorrectiveAction("a", RebagAction.REBAG_HIGHER, 100, 200, 150)

    assert pipe.submit([act], FakeSigner(), send=True) is None
    assert rec.state.skipped_reason == "dry_run_failed"
    assert sub.submitted == []
    assert run_summary()[DRY_RUNS_FAILED] == 1


def test_pool_rejection_raises_submission_failure() -> None:
    sub = _ScriptedSubstrate(
        result={"Ok": {"Ok": None}},
        reject_submit={"code": 1010, "message": "Invalid Transaction", "data": "Transaction is outdated"},
    )
    pipe = BatchSubmitPipeline(_submitter(sub))

    with pytest.raises(SubmissionFailure, match="pool rejected"):
        pipe.submit_calls([Call("VoterList", "rebag", {"dislocated": "a"})], FakeSigner(), send=True)
    assert len(sub.submitted) == 1
    assert run_summary()[TX_FAILED] == 1


# ---- finality wait ----


class _FakeChain:
    """Finality answers only: scripted finalized heads, block numbers and canonical hashes."""

    def __init__(self, *, numbers, finalized_heads, canonical) -> None:
        self.numbers = numbers
        self.heads = list(finalized_heads)
        self.canonical = canonical

    def block_number(self, block_hash):
        return self.numbers[block_hash]

    def finalized_head(self):
        return self.heads.pop(0) if len(self.heads) > 1 else self.heads[0]

    def block_hash(self, number):
        return self.canonical.get(number)


def test_wait_finalized_polls_until_inclusion_block_is_final() -> None:
    chain = _FakeChain(numbers={"0xb": 10, "0xh9": 9, "0xh10": 10}, finalized_heads=["0xh9", "0xh9", "0xh10"], canonical={10: "0xb"})
    SubstrateSubmitter(object(), chain, finality_timeout_s=5, poll_interval_s=0)._wait_finalized("0xb")
    assert chain.heads == ["0xh10"]


def test_wait_finalized_detects_retracted_block() -> None:
    chain = _FakeChain(numbers={"0xb": 10, "0xh10": 10}, finalized_heads=["0xh10"], canonical={10: "0xother"})
    with pytest.raises(SubmissionFailure, match="retracted"):
        SubstrateSubmitter(object(), chain, finality_timeout_s=5, poll_interval_s=0)._wait_finalized("0xb")


def test_wait_finalized_times_out() -> None:
    chain = _FakeChain(numbers={"0xb": 10, "0xh9": 9}, finalized_heads=["0xh9"], canonical={})
    with pytest.raises(FinalityTimeout):
        SubstrateSubmitter(object(), chain, finality_timeout_s=0, poll_interval_s=0)._wait_finalized("0xb")


def test_wait_finalized_against_memory_chain() -> None:
    chain = InMemoryChainState()
    chain.add_block("0xb2", finalize=True)
    SubstrateSubmitter(object(), chain, finality_timeout_s=0, poll_interval_s=0)._wait_finalized("0xb2")


def test_finality_timeout_from_env(monkeypatch) -> None:
    monkeypatch.setenv("STAKEOPS_FINALITY_TIMEOUT_S", "42")
    assert SubstrateSubmitter(object(), InMemoryChainState()).finality_timeout_s == 42.0
