"""Adapter normalization, routing and dispatch."""

import pytest

from zkpip.adapters import (
    Adapter,
    AdapterRegistry,
    BackendAdapter,
    Framework,
    MockAdapter,
    ProofBundle,
    ProofSystem,
    default_registry,
    dispatch,
    normalize_bundle,
    resolve_kind,
    verify_with_registry,
)
from zkpip.core import PACKAGE_ROOT
from zkpip.errors import BundleError, ErrorKind, Stage, VerifyOutcome
from zkpip.schema import build_core_registry


class RecordingAdapter(Adapter):
    """Counts verify calls; optionally raises."""

    def __init__(self, proof_system=ProofSystem.GROTH16, raise_with=None):
        self.id = f"recording-{proof_system.value}"
        self.proof_system = proof_system
        self.framework = Framework.MOCK
        self.calls = 0
        self.raise_with = raise_with

    def verify(self, bundle):
        self.calls += 1
        if self.raise_with is not None:
            raise self.raise_with
        return VerifyOutcome.success(self.id, bundle.id)


def _full(kind="groth16", **extra):
    raw = {
        "id": "b1",
        "proofSystem": kind,
        "verificationKey": {"protocol": kind},
        "proof": {"pi_a": ["1"]},
        "publicSignals": ["33"],
    }
    raw.update(extra)
    return raw


# =============================================================================
# normalization
# =============================================================================

def test_kind_resolution_precedence():
    raw = {"adapter": "plonk", "proofSystem": "groth16", "meta": {"proofSystem": "stark"}, "system": "x"}
    assert resolve_kind(raw) == ("plonk", "adapter")
    del raw["adapter"]
    assert resolve_kind(raw) == ("groth16", "proofSystem")
    del raw["proofSystem"]
    assert resolve_kind(raw) == ("stark", "meta.proofSystem")
    del raw["meta"]
    assert resolve_kind(raw) == ("x", "system")
    assert resolve_kind({}) is None


def test_blank_tag_falls_through():
    assert resolve_kind({"adapter": "  ", "system": "plonk"}) == ("plonk", "system")


def test_adapter_id_tag_splits_framework():
    b = normalize_bundle({"adapter": "snarkjs-groth16"})
    assert b.kind == "groth16"
    assert b.framework == "snarkjs"
    assert b.kind_source == "adapter"


def test_explicit_framework_wins_over_tag():
    b = normalize_bundle({"adapter": "snarkjs-plonk", "meta": {"framework": "ZoKrates"}})
    assert b.kind == "plonk"
    assert b.framework == "zokrates"


def test_artifacts_found_in_nested_containers():
    b = normalize_bundle({
        "id": 7,
        "system": "Groth16",
        "artifacts": {"bundle": {"vkey": {"k": 1}, "proof": "p", "publics": ("1", "2")}},
    })
    assert b.id == "7"
    assert b.kind == "groth16"
    assert b.verification_key == {"k": 1}
    assert b.proof == "p"
    assert b.public_signals == ["1", "2"]
    assert b.missing_artifacts() == []


def test_top_level_artifacts_win():
    b = normalize_bundle({"proofSystem": "plonk", "proof": "top", "bundle": {"proof": "nested"}})
    assert b.proof == "top"
    assert b.missing_artifacts() == ["verificationKey", "publicSignals"]


@pytest.mark.parametrize("raw", [None, [], "groth16", {"id": "x"}, {"meta": {"framework": "snarkjs"}}])
def test_untagged_input_is_rejected(raw):
    with pytest.raises(BundleError):
        normalize_bundle(raw)


def test_normalize_is_idempotent_on_bundles():
    b = normalize_bundle(_full())
    assert normalize_bundle(b) is b


# =============================================================================
# dispatch
# =============================================================================

def test_wrong_adapter_is_never_called():
    adapter = RecordingAdapter(ProofSystem.GROTH16)
    out = dispatch(adapter, _full("plonk"))

    assert not out.ok
    assert out.code is ErrorKind.WRONG_ADAPTER
    assert out.message == "Expected groth16, got plonk"
    assert out.adapter == adapter.id
    assert out.bundle_id == "b1"
    assert adapter.calls == 0


def test_adapter_exception_becomes_adapter_error(caplog):
    adapter = RecordingAdapter(raise_with=RuntimeError("boom"))
    out = dispatch(adapter, _full())

    assert out.code is ErrorKind.ADAPTER_ERROR
    assert out.stage is None
    assert "boom" in out.message
    assert adapter.calls == 1
    assert any(r.levelname == "WARNING" for r in caplog.records)


def test_dispatch_returns_adapter_outcome_unchanged():
    adapter = MockAdapter(ProofSystem.PLONK)
    out = dispatch(adapter, _full("plonk"))
    assert out.ok
    assert out.adapter == "mock-plonk"
    assert out.metrics == {"mock": "1"}


def test_dispatch_untagged_is_invalid_input():
    out = dispatch(MockAdapter(), {"id": "nope"})
    assert out.code is ErrorKind.INVALID_INPUT
    assert out.bundle_id == "nope"


# =============================================================================
# backend adapters
# =============================================================================

def test_backend_receives_artifacts():
    seen = {}

    def backend(vkey, publics, proof):
        seen.update(vkey=vkey, publics=publics, proof=proof)
        return True

    adapter = BackendAdapter("snarkjs-groth16", ProofSystem.GROTH16, Framework.SNARKJS, backend)
    out = dispatch(adapter, _full())

    assert out.ok
    assert seen == {"vkey": {"protocol": "groth16"}, "publics": ["33"], "proof": {"pi_a": ["1"]}}


@pytest.mark.parametrize(
    "backend,code",
    [
        (None, ErrorKind.NOT_IMPLEMENTED),
        (lambda v, p, pr: False, ErrorKind.VERIFICATION_FAILED),
        (lambda v, p, pr: "yes", ErrorKind.VERIFICATION_FAILED),
    ],
)
def test_backend_failures(backend, code):
    adapter = BackendAdapter("snarkjs-groth16", ProofSystem.GROTH16, Framework.SNARKJS, backend)
    out = dispatch(adapter, _full())
    assert out.code is code
    assert out.stage is Stage.VERIFY


def test_backend_exception_is_exception_during_verify():
    def backend(vkey, publics, proof):
        raise ValueError("curve mismatch")

    adapter = BackendAdapter("snarkjs-groth16", ProofSystem.GROTH16, Framework.SNARKJS, backend)
    out = dispatch(adapter, _full())
    assert out.code is ErrorKind.EXCEPTION_DURING_VERIFY
    assert "curve mismatch" in out.message


def test_backend_missing_artifacts_is_invalid_input():
    adapter = BackendAdapter("snarkjs-groth16", ProofSystem.GROTH16, Framework.SNARKJS, lambda *a: True)
    out = dispatch(adapter, {"proofSystem": "groth16", "proof": {}})
    assert out.code is ErrorKind.INVALID_INPUT
    assert "verificationKey" in out.message


# =============================================================================
# registry
# =============================================================================

def test_pick_is_first_match_in_registration_order():
    first = MockAdapter(ProofSystem.GROTH16, id="first")
    second = MockAdapter(ProofSystem.GROTH16, id="second")
    reg = AdapterRegistry([first, second])

    assert reg.pick(_full()) is first
    assert reg.pick(_full("stark")) is None
    assert reg.pick({"id": "untagged"}) is None


def test_pick_respects_framework():
    reg = default_registry()
    assert reg.pick({"adapter": "zokrates-groth16"}).id == "zokrates-groth16"
    assert reg.pick({"proofSystem": "groth16"}).id == "snarkjs-groth16"
    assert reg.pick({"proofSystem": "plonk", "framework": "zokrates"}) is None


def test_pick_skips_adapter_that_raises():
    class Broken(MockAdapter):
        def can_handle(self, bundle):
            raise RuntimeError("broken")

    fallback = MockAdapter(id="fallback")
    reg = AdapterRegistry([Broken(id="broken"), fallback])
    assert reg.pick(_full()) is fallback


def test_registry_lookup_and_duplicates():
    reg = default_registry()
    assert reg.ids() == ["snarkjs-groth16", "snarkjs-plonk", "zokrates-groth16"]
    assert reg.get("snarkjs_plonk").id == "snarkjs-plonk"
    assert reg.get("gnark-groth16") is None
    assert len(reg) == 3
    assert reg.describe()[1] == {"id": "snarkjs-plonk", "proofSystem": "plonk", "framework": "snarkjs"}
    with pytest.raises(ValueError):
        reg.register(MockAdapter(id="snarkjs-groth16"))


def test_default_registry_uses_given_backends():
    reg = default_registry({"snarkjs-plonk": lambda *a: True})
    assert verify_with_registry(reg, _full("plonk")).ok
    assert verify_with_registry(reg, _full()).code is ErrorKind.NOT_IMPLEMENTED


# =============================================================================
# verify_with_registry
# =============================================================================

def test_no_adapter_is_adapter_not_found():
    out = verify_with_registry(AdapterRegistry([MockAdapter()]), _full("stark"))
    assert out.code is ErrorKind.ADAPTER_NOT_FOUND
    assert out.stage is Stage.ADAPTER

    out = verify_with_registry(AdapterRegistry(), _full(), adapter_id="missing")
    assert out.code is ErrorKind.ADAPTER_NOT_FOUND
    assert "missing" in out.message


def test_explicit_adapter_id_still_checks_kind():
    reg = AdapterRegistry([MockAdapter(ProofSystem.GROTH16), MockAdapter(ProofSystem.PLONK)])
    out = verify_with_registry(reg, _full("plonk"), adapter_id="mock-groth16")
    assert out.code is ErrorKind.WRONG_ADAPTER


def test_schema_failure_stops_before_routing():
    schemas = build_core_registry(PACKAGE_ROOT / "schemas")
    reg = AdapterRegistry([MockAdapter()])

    out = verify_with_registry(reg, {"id": "b9", "proof": {}}, schemas=schemas)
    assert out.code is ErrorKind.SCHEMA_INVALID
    assert out.stage is Stage.SCHEMA
    assert out.bundle_id == "b9"

    assert verify_with_registry(reg, _full(), schemas=schemas).ok


def test_untagged_without_schemas_is_invalid_input():
    out = verify_with_registry(AdapterRegistry([MockAdapter()]), {"id": "u"})
    assert out.code is ErrorKind.INVALID_INPUT
    assert out.stage is None


def test_proof_bundle_equality_ignores_raw():
    a = ProofBundle(id="x", kind="groth16", raw={"a": 1})
    b = ProofBundle(id="x", kind="groth16", raw={"b": 2})
    assert a == b
