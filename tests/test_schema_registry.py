"""Schema registry: canonical ids, aliases, drift detection, validation."""

import json
import shutil

import pytest

from zkpip.core import PACKAGE_ROOT
from zkpip.errors import SchemaRegistryError
from zkpip.schema import (
    CANONICAL_IDS,
    SchemaNotRegistered,
    SchemaRegistry,
    build_core_registry,
    core_aliases,
    default_schemas_dir,
    pick_schema_id,
)

BUNDLED = PACKAGE_ROOT / "schemas"


@pytest.fixture(scope="module")
def registry():
    return build_core_registry(BUNDLED)


@pytest.fixture
def schemas_copy(tmp_path):
    dst = tmp_path / "schemas"
    shutil.copytree(BUNDLED, dst)
    return dst


def test_bundled_core_schemas_register(registry):
    for cid in CANONICAL_IDS.values():
        assert cid in registry
        assert registry.canonical_id(cid) == cid


@pytest.mark.parametrize(
    "alias,name",
    [
        ("mvs.proofEnvelope", "proofEnvelope"),
        ("mvs/proof-envelope", "proofEnvelope"),
        ("mvs.proof-envelope.schema.json", "proofEnvelope"),
        ("urn:zkpip:mvs.proof-envelopes.schema.json", "proofEnvelope"),
        ("mvs/verification/proofBundle", "proofEnvelope"),
        ("https://zkpip.org/schemas/cir.schema.json", "cir"),
        ("mvs/cir", "cir"),
        ("mvs.core", "core"),
        ("mvs/seal.v1", "seal"),
        ("urn:zkpip:schema:seal", "seal"),
    ],
)
def test_alias_returns_the_same_validator(registry, alias, name):
    cid = CANONICAL_IDS[name]
    assert registry.canonical_id(alias) == cid
    assert registry.resolve(alias) is registry.resolve(cid)


def test_unknown_id_resolves_to_none(registry):
    assert registry.resolve("mvs/nope") is None
    assert "mvs/nope" not in registry
    assert registry.document("mvs/nope") is None
    with pytest.raises(SchemaNotRegistered):
        registry.validate("mvs/nope", {})


def test_core_alias_family_is_bounded():
    aliases = core_aliases("proofEnvelope")
    assert len(aliases) == len(set(aliases))
    assert "mvs.proofEnvelope" in aliases
    assert "mvs.proof-envelope" in aliases
    assert "mvs/proof-bundle" in aliases
    assert not any("cir" in a for a in aliases)


def test_alias_collision_is_an_error():
    reg = build_core_registry(BUNDLED)
    with pytest.raises(SchemaRegistryError, match="mvs/cir"):
        reg.register({"$id": "urn:test:other", "type": "object"}, aliases=["mvs/cir"])


def test_alias_equal_to_registered_id_is_an_error():
    reg = SchemaRegistry()
    reg.register({"$id": "urn:test:a", "type": "object"})
    reg.register({"$id": "urn:test:b", "type": "object"})
    with pytest.raises(SchemaRegistryError):
        reg.add_alias("urn:test:a", "urn:test:b")
    with pytest.raises(SchemaRegistryError):
        reg.add_alias("urn:test:missing", "x")


def test_same_alias_twice_for_same_schema_is_fine():
    reg = SchemaRegistry()
    reg.register({"$id": "urn:test:a"}, aliases=["a"])
    reg.add_alias("urn:test:a", "a")
    assert reg.aliases_of("urn:test:a") == ["a"]


def test_duplicate_id_is_an_error():
    reg = SchemaRegistry()
    reg.register({"$id": "urn:test:a"}, source="one.schema.json")
    with pytest.raises(SchemaRegistryError, match="duplicate"):
        reg.register({"$id": "urn:test:a"}, source="two.schema.json")


@pytest.mark.parametrize("doc", [{}, {"$id": ""}, {"$id": 3}, []])
def test_missing_id_is_an_error(doc):
    with pytest.raises(SchemaRegistryError):
        SchemaRegistry().register(doc)


def test_invalid_schema_is_an_error():
    with pytest.raises(SchemaRegistryError, match="invalid schema"):
        SchemaRegistry().register({"$id": "urn:test:bad", "type": 12})


def test_drifted_core_id_is_detected(schemas_copy):
    path = schemas_copy / "mvs.cir.schema.json"
    doc = json.loads(path.read_text(encoding="utf-8"))
    doc["$id"] = "urn:zkpip:mvs:schemas:cir-v2.schema.json"
    path.write_text(json.dumps(doc), encoding="utf-8")

    with pytest.raises(SchemaRegistryError, match="missing core schema"):
        build_core_registry(schemas_copy)


def test_missing_core_file_is_detected(schemas_copy):
    (schemas_copy / "seal.v1.schema.json").unlink()
    with pytest.raises(SchemaRegistryError, match="missing core schema"):
        build_core_registry(schemas_copy)


def test_missing_directory(tmp_path):
    with pytest.raises(SchemaRegistryError, match="not found"):
        build_core_registry(tmp_path / "absent")


def test_extra_schema_gets_path_aliases(schemas_copy):
    extra = schemas_copy / "ext" / "fooBar.schema.json"
    extra.parent.mkdir()
    extra.write_text(json.dumps({"$id": "urn:test:foo-bar", "type": "object"}), encoding="utf-8")

    reg = build_core_registry(schemas_copy)
    assert reg.canonical_id("ext/fooBar") == "urn:test:foo-bar"
    assert reg.canonical_id("ext/foo-bar.schema.json") == "urn:test:foo-bar"


def test_schemas_dir_from_environment(schemas_copy, monkeypatch):
    monkeypatch.setenv("ZKPIP_SCHEMAS_DIR", str(schemas_copy))
    assert default_schemas_dir() == schemas_copy
    assert len(build_core_registry()) == len(CANONICAL_IDS)


def test_validate_reports_paths(registry):
    errors = registry.validate("mvs/cir", {"circuit": ""})

    assert errors[0] == "$: 'id' is a required property"
    assert errors[1].startswith("$.circuit: ")
    assert registry.validate("mvs/cir", {"id": "c1", "circuit": "multiplier"}) == []


def test_cross_document_refs_resolve(registry):
    errors = registry.validate("mvs/proofEnvelope", {"adapter": "x", "framework": "gnark"})
    assert len(errors) == 1
    assert errors[0].startswith("$.framework: ")

    ok = {"proofSystem": "groth16", "publicSignals": ["1", 2]}
    assert registry.validate("mvs.proofEnvelope", ok) == []


def test_envelope_needs_a_proof_system_tag(registry):
    assert registry.validate("mvs/proofEnvelope", {"proof": {}})
    assert registry.validate("mvs/proofEnvelope", {"meta": {"proofSystem": "plonk"}}) == []


def test_sealed_document_schema(registry):
    sealed = {
        "vector": {"a": 1},
        "seal": {
            "id": "0" * 64,
            "urn": "urn:zkpip:vector:sha256:" + "0" * 64,
            "signer": "abcdefghijklmnop",
            "timestamp": "2024-01-01T00:00:00.000Z",
            "signature": "AAAA",
            "algo": "ed25519",
        },
    }
    assert registry.validate("seal.v1", sealed) == []
    del sealed["seal"]["urn"]
    assert registry.validate("seal.v1", sealed)


@pytest.mark.parametrize(
    "filename,name",
    [
        ("groth16-proof-envelope.json", "proofEnvelope"),
        ("bundle.valid.json", "proofEnvelope"),
        ("circuit-mul.json", "cir"),
        ("verification-error.json", "verification"),
        ("issue-42.json", "issue"),
        ("ecosystem.json", "ecosystem"),
        ("random.json", "core"),
    ],
)
def test_pick_schema_id(filename, name):
    assert pick_schema_id(f"vectors/{filename}") == CANONICAL_IDS[name]
