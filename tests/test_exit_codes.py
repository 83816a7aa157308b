"""Outcome to exit-code mapping."""

import pytest

from zkpip.batch import BatchResult
from zkpip.codeseal import SealCheck
from zkpip.config import ConfigManager
from zkpip.errors import ErrorKind, Stage, VerifyOutcome
from zkpip.exitcodes import ExitCode, finalize, map_outcome


@pytest.mark.parametrize(
    "code,expected",
    [
        (ErrorKind.VERIFICATION_FAILED, 1),
        (ErrorKind.WRONG_ADAPTER, 1),
        (ErrorKind.ADAPTER_ERROR, 1),
        (ErrorKind.EXCEPTION_DURING_VERIFY, 1),
        (ErrorKind.NOT_IMPLEMENTED, 1),
        (ErrorKind.INVALID_INPUT, 1),
        (ErrorKind.SIGNATURE_INVALID, 1),
        (ErrorKind.URN_MISMATCH, 1),
        (ErrorKind.IO_ERROR, 2),
        (ErrorKind.PUBLIC_KEY_NOT_FOUND, 2),
        (ErrorKind.SCHEMA_INVALID, 3),
        (ErrorKind.ALGO_UNSUPPORTED, 3),
        (ErrorKind.ADAPTER_NOT_FOUND, 4),
    ],
)
def test_code_table(code, expected):
    assert map_outcome(VerifyOutcome.failure(code)) == expected
    assert map_outcome({"ok": False, "code": code.value}) == expected


def test_success_is_zero():
    assert map_outcome(VerifyOutcome.success("mock-groth16")) is ExitCode.OK
    assert map_outcome(SealCheck(ok=True)) == 0
    assert map_outcome({"ok": True, "code": "io_error"}) == 0


def test_stage_outranks_code():
    out = VerifyOutcome.failure(ErrorKind.ADAPTER_NOT_FOUND, stage=Stage.SCHEMA)
    assert map_outcome(out) == ExitCode.SCHEMA_INVALID
    assert map_outcome({"ok": False, "code": "verification_failed", "stage": "io"}) == 2
    assert map_outcome(VerifyOutcome.failure(ErrorKind.ADAPTER_NOT_FOUND, stage=Stage.ADAPTER)) == 4


def test_adapter_stage_maps_to_adapter_not_found():
    assert map_outcome({"ok": False, "stage": "adapter"}) == ExitCode.ADAPTER_NOT_FOUND
    assert map_outcome(VerifyOutcome.failure(ErrorKind.INVALID_INPUT, stage=Stage.ADAPTER)) == 4
    # verify and keystore stages defer to the code
    assert map_outcome({"ok": False, "stage": "verify", "code": "io_error"}) == 2
    assert map_outcome({"ok": False, "stage": "keystore"}) == 1


def test_mapping_accepts_error_key():
    assert map_outcome({"ok": False, "error": "adapter_not_found"}) == 4
    assert map_outcome({"ok": False}) == 1


def test_seal_check_mapping():
    assert map_outcome(SealCheck(ok=False, reason=ErrorKind.PUBLIC_KEY_NOT_FOUND)) == 2
    assert map_outcome(SealCheck(ok=False, reason=ErrorKind.URN_MISMATCH)) == 1


def test_batch_maps_first_failure():
    results = [
        VerifyOutcome.success("a"),
        VerifyOutcome.failure(ErrorKind.ADAPTER_NOT_FOUND, stage=Stage.ADAPTER),
        VerifyOutcome.failure(ErrorKind.SCHEMA_INVALID, stage=Stage.SCHEMA),
    ]
    batch = BatchResult(adapter="auto", total=3, passed=1, failed=2, results=results)
    assert map_outcome(batch) == 4
    assert map_outcome(BatchResult(adapter="auto", total=0, passed=0, failed=0)) == 0


def test_unknown_type_is_rejected():
    with pytest.raises(TypeError):
        map_outcome(42)


def test_finalize_returns_code_by_default():
    assert finalize(3) == 3
    assert finalize(ExitCode.OK) == 0


def test_finalize_hard_exit(monkeypatch):
    monkeypatch.setenv("ZKPIP_HARD_EXIT", "1")
    assert finalize(0) == 0
    with pytest.raises(SystemExit) as ei:
        finalize(2)
    assert ei.value.code == 2


def test_finalize_hard_exit_from_config():
    cfg = ConfigManager()
    cfg.set("runtime.hard_exit", True)
    with pytest.raises(SystemExit):
        finalize(1, cfg)
