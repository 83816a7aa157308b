#!/usr/bin/env python3
"""ZKPIP command line.

    zkpip keys generate|list|show
    zkpip vectors sign|verify-seal|push|pull
    zkpip verify --adapter ID --verification FILE
    zkpip batch [--adapter ID] FILE...
    zkpip adapters
    zkpip validate [--schema ID] FILE
    zkpip canon FILE

Every handler returns an exit code from `zkpip.exitcodes`. With
``ZKPIP_HARD_EXIT=1`` a failing command exits the process instead of
returning.
"""

from __future__ import annotations

import argparse
import json
import pathlib
import sys
from typing import Any, Dict, List, Optional

from zkpip import __version__
from zkpip.adapters import AdapterRegistry, MockAdapter, ProofSystem, default_registry, verify_with_registry
from zkpip.batch import seal_batch, verify_batch
from zkpip.canonical import canonicalize, digest, is_vector_urn
from zkpip.codeseal import seal_document, verify_sealed_document
from zkpip.config import ConfigManager
from zkpip.core import load_json, write_json_atomic
from zkpip.errors import (
    CanonicalizationError,
    ConfigError,
    ErrorKind,
    PullGuardError,
    SchemaRegistryError,
    Stage,
    VectorIOError,
    VerifyOutcome,
)
from zkpip.exitcodes import ExitCode, finalize, map_outcome
from zkpip.keystore import Keystore
from zkpip.observability import configure_logging
from zkpip.schema import SchemaNotRegistered, build_core_registry, pick_schema_id
from zkpip.vector_store import DiskStore, pull_vector, resolve_url_from_id, urllib_fetcher


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------

def _config(args: argparse.Namespace) -> ConfigManager:
    return args.config_manager


def _keystore(args: argparse.Namespace) -> Keystore:
    cfg = _config(args)
    # --keystore outranks ZKPIP_KEYSTORE_DIR
    root = args.keystore or cfg.get("keystore.store_dir")
    return Keystore(root, cfg.get("keystore.key_id_length"))


def _registry() -> AdapterRegistry:
    registry = default_registry()
    registry.register(MockAdapter(ProofSystem.GROTH16))
    registry.register(MockAdapter(ProofSystem.PLONK))
    return registry


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, separators=(",", ":")))


def _emit(args: argparse.Namespace, payload: Dict[str, Any], text: str) -> None:
    if args.json:
        _print_json(payload)
    else:
        print(text)


def _fail(args: argparse.Namespace, outcome: VerifyOutcome) -> int:
    if args.json:
        _print_json(outcome.to_dict())
    else:
        code = outcome.code.value if outcome.code else "error"
        print(f"FAIL {code}: {outcome.message}", file=sys.stderr)
    return int(map_outcome(outcome))


def _io_failure(message: str) -> VerifyOutcome:
    return VerifyOutcome.failure(ErrorKind.IO_ERROR, message, stage=Stage.IO)


def _read_json(path: str) -> Any:
    p = pathlib.Path(path)
    try:
        return load_json(p)
    except (OSError, ValueError) as ex:
        raise VectorIOError(f"cannot read {p}: {ex}") from ex


# ---------------------------------------------------------------------------
# keys
# ---------------------------------------------------------------------------

def cmd_keys_generate(args: argparse.Namespace) -> int:
    ks = _keystore(args)
    try:
        record = ks.generate(label=args.label or None, overwrite=args.overwrite)
    except (OSError, ValueError) as ex:
        return _fail(args, _io_failure(str(ex)))
    _emit(args, {"ok": True, **record.to_dict()}, record.key_id)
    return 0


def cmd_keys_list(args: argparse.Namespace) -> int:
    records = _keystore(args).list_keys()
    if args.json:
        _print_json({"ok": True, "keys": [r.to_dict() for r in records]})
        return 0
    for r in records:
        kind = "private" if r.has_private else "public"
        print(f"{r.key_id}\t{kind}\t{r.created_at}\t{r.label}".rstrip())
    return 0


def cmd_keys_show(args: argparse.Namespace) -> int:
    ks = _keystore(args)
    record = ks.load_record(args.key_id)
    if record is None:
        return _fail(
            args,
            VerifyOutcome.failure(
                ErrorKind.PUBLIC_KEY_NOT_FOUND, f"no key matching {args.key_id!r}", stage=Stage.KEYSTORE
            ),
        )
    if args.public:
        print(record.public_pem_path.read_text(encoding="utf-8"), end="")
        return 0
    _emit(args, {"ok": True, **record.to_dict()}, json.dumps(record.to_dict(), indent=2))
    return 0


# ---------------------------------------------------------------------------
# vectors
# ---------------------------------------------------------------------------

def cmd_vectors_sign(args: argparse.Namespace) -> int:
    try:
        vector = _read_json(args.input)
    except VectorIOError as ex:
        return _fail(args, _io_failure(str(ex)))

    ks = _keystore(args)
    record = ks.load_record(args.key_id)
    private_pem = ks.read_private_pem(args.key_id)
    if record is None or private_pem is None:
        return _fail(args, _io_failure(f"no private key matching {args.key_id!r}"))

    try:
        document = seal_document(vector, private_pem, signer=record.key_id)
    except CanonicalizationError as ex:
        return _fail(args, VerifyOutcome.failure(ErrorKind.SCHEMA_INVALID, str(ex), stage=Stage.SCHEMA))

    in_path = pathlib.Path(args.input)
    out_path = pathlib.Path(args.out) if args.out else in_path.with_name(in_path.stem + ".sealed.json")
    try:
        write_json_atomic(out_path, document)
    except OSError as ex:
        return _fail(args, _io_failure(f"cannot write {out_path}: {ex}"))
    urn = document["seal"]["urn"]
    _emit(args, {"ok": True, "urn": urn, "out": str(out_path)}, f"{urn} -> {out_path}")
    return 0


def cmd_vectors_verify_seal(args: argparse.Namespace) -> int:
    try:
        document = _read_json(args.input)
    except VectorIOError as ex:
        return _fail(args, _io_failure(str(ex)))

    public_pem: Optional[str] = None
    if args.public_key:
        try:
            public_pem = pathlib.Path(args.public_key).read_text(encoding="utf-8")
        except OSError as ex:
            return _fail(args, _io_failure(f"cannot read public key: {ex}"))

    try:
        check = verify_sealed_document(document, public_key_pem=public_pem, keystore=_keystore(args))
    except CanonicalizationError as ex:
        return _fail(args, VerifyOutcome.failure(ErrorKind.SCHEMA_INVALID, str(ex), stage=Stage.SCHEMA))

    if args.json:
        _print_json(check.to_dict())
    elif check.ok:
        print(f"OK   {check.urn}")
    else:
        print(f"FAIL {check.reason.value if check.reason else 'error'}: {check.message}", file=sys.stderr)
    return int(map_outcome(check))


def cmd_vectors_push(args: argparse.Namespace) -> int:
    try:
        data = _read_json(args.input)
    except VectorIOError as ex:
        return _fail(args, _io_failure(str(ex)))

    vector_id = args.id
    if not vector_id:
        seal = data.get("seal") if isinstance(data, dict) else None
        if isinstance(seal, dict) and is_vector_urn(seal.get("urn")):
            vector_id = seal["urn"]
        else:
            try:
                vector_id = digest(data).to_urn()
            except CanonicalizationError as ex:
                return _fail(args, VerifyOutcome.failure(ErrorKind.SCHEMA_INVALID, str(ex), stage=Stage.SCHEMA))

    store = DiskStore(args.store_dir or _config(args).get("vectors.store_dir"))
    try:
        path = store.put_vector(vector_id, json.dumps(data, indent=2, ensure_ascii=False) + "\n")
    except OSError as ex:
        return _fail(args, _io_failure(str(ex)))
    _emit(args, {"ok": True, "id": vector_id, "path": str(path)}, vector_id)
    return 0


def cmd_vectors_pull(args: argparse.Namespace) -> int:
    cfg = _config(args)
    if args.url:
        source = args.url
    elif args.id:
        try:
            source = resolve_url_from_id(args.id, args.base_url) if args.base_url else resolve_url_from_id(args.id)
        except ValueError as ex:
            return _fail(args, VerifyOutcome.failure(ErrorKind.INVALID_INPUT, str(ex)))
    else:
        return _fail(args, VerifyOutcome.failure(ErrorKind.INVALID_INPUT, "one of --url or --id is required"))

    allow_http = args.allow_http or cfg.get("vectors.allow_http")
    fetcher = urllib_fetcher(timeout=cfg.get("vectors.fetch_timeout_seconds"))
    try:
        sha = pull_vector(source, args.out, fetcher=fetcher, allow_http=allow_http)
    except PullGuardError as ex:
        return _fail(args, VerifyOutcome.failure(ErrorKind.INVALID_INPUT, f"{ex.code}: {ex}"))
    except VectorIOError as ex:
        return _fail(args, _io_failure(str(ex)))
    _emit(args, {"ok": True, "out": args.out, "sha256": sha}, args.out)
    return 0


# ---------------------------------------------------------------------------
# verification
# ---------------------------------------------------------------------------

def cmd_verify(args: argparse.Namespace) -> int:
    try:
        raw = _read_json(args.verification)
    except VectorIOError as ex:
        return _fail(args, _io_failure(str(ex)))

    schemas = None
    if args.validate:
        try:
            schemas = build_core_registry(_config(args).get("schemas.schemas_dir"))
        except SchemaRegistryError as ex:
            return _fail(args, VerifyOutcome.failure(ErrorKind.SCHEMA_INVALID, str(ex), stage=Stage.SCHEMA))

    outcome = verify_with_registry(_registry(), raw, adapter_id=args.adapter or None, schemas=schemas)
    if not outcome.ok:
        return _fail(args, outcome)
    _emit(args, outcome.to_dict(), f"OK   {outcome.adapter} {outcome.bundle_id}".rstrip())
    return 0


def cmd_batch(args: argparse.Namespace) -> int:
    bundles: List[Any] = []
    for path in args.files:
        try:
            bundles.append(_read_json(path))
        except VectorIOError as ex:
            return _fail(args, _io_failure(str(ex)))

    registry = _registry()
    if args.adapter:
        adapter = registry.get(args.adapter)
        if adapter is None:
            return _fail(
                args,
                VerifyOutcome.failure(
                    ErrorKind.ADAPTER_NOT_FOUND, f"unknown adapter {args.adapter!r}", stage=Stage.ADAPTER
                ),
            )
        result = seal_batch(adapter, bundles)
    else:
        result = verify_batch(registry, bundles)

    if args.json:
        _print_json(result.to_dict())
    else:
        for r in result.results:
            status = "OK  " if r.ok else f"FAIL {r.code.value if r.code else 'error'}"
            print(f"{status} {r.bundle_id}".rstrip())
        print(f"{result.passed}/{result.total} passed")
    return int(map_outcome(result))


def cmd_adapters(args: argparse.Namespace) -> int:
    rows = _registry().describe()
    if args.json:
        _print_json({"ok": True, "adapters": rows})
        return 0
    for row in rows:
        print(f"{row['id']}\t{row['proofSystem']}\t{row['framework']}")
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    try:
        instance = _read_json(args.input)
    except VectorIOError as ex:
        return _fail(args, _io_failure(str(ex)))

    try:
        registry = build_core_registry(_config(args).get("schemas.schemas_dir"))
    except SchemaRegistryError as ex:
        return _fail(args, VerifyOutcome.failure(ErrorKind.SCHEMA_INVALID, str(ex), stage=Stage.SCHEMA))

    schema_id = args.schema or pick_schema_id(args.input)
    try:
        errors = registry.validate(schema_id, instance)
    except SchemaNotRegistered:
        return _fail(
            args,
            VerifyOutcome.failure(ErrorKind.SCHEMA_INVALID, f"schema not registered: {schema_id}", stage=Stage.SCHEMA),
        )
    if errors:
        return _fail(args, VerifyOutcome.failure(ErrorKind.SCHEMA_INVALID, "; ".join(errors), stage=Stage.SCHEMA))

    canonical = registry.canonical_id(schema_id)
    _emit(args, {"ok": True, "schema": canonical}, f"OK   {canonical}")
    return 0


def cmd_canon(args: argparse.Namespace) -> int:
    try:
        value = _read_json(args.input)
    except VectorIOError as ex:
        return _fail(args, _io_failure(str(ex)))
    try:
        text = canonicalize(value)
    except CanonicalizationError as ex:
        return _fail(args, VerifyOutcome.failure(ErrorKind.SCHEMA_INVALID, str(ex), stage=Stage.SCHEMA))
    d = digest(value)
    _emit(args, {"ok": True, "canonical": text, "sha256": d.hex, "urn": d.to_urn()}, text)
    return 0


# ---------------------------------------------------------------------------
# entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="zkpip")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    ap.add_argument("--json", action="store_true", help="Single-line JSON output")
    ap.add_argument("--config", default="", help="YAML config file")
    ap.add_argument("--keystore", default="", help="Keystore directory")
    sub = ap.add_subparsers(dest="cmd", required=True)

    keys = sub.add_parser("keys")
    keys_sub = keys.add_subparsers(dest="keys_cmd", required=True)

    kg = keys_sub.add_parser("generate")
    kg.add_argument("--label", default="")
    kg.add_argument("--overwrite", action="store_true")
    kg.set_defaults(func=cmd_keys_generate)

    kl = keys_sub.add_parser("list")
    kl.set_defaults(func=cmd_keys_list)

    ks = keys_sub.add_parser("show")
    ks.add_argument("key_id")
    ks.add_argument("--public", action="store_true", help="Print the public PEM")
    ks.set_defaults(func=cmd_keys_show)

    vectors = sub.add_parser("vectors")
    vec_sub = vectors.add_subparsers(dest="vectors_cmd", required=True)

    vs = vec_sub.add_parser("sign")
    vs.add_argument("input")
    vs.add_argument("--key-id", required=True)
    vs.add_argument("--out", default="", help="Output path (default: <input>.sealed.json)")
    vs.set_defaults(func=cmd_vectors_sign)

    vv = vec_sub.add_parser("verify-seal")
    vv.add_argument("input")
    vv.add_argument("--public-key", default="", help="Public key PEM (default: keystore lookup by signer)")
    vv.set_defaults(func=cmd_vectors_verify_seal)

    vp = vec_sub.add_parser("push")
    vp.add_argument("input")
    vp.add_argument("--id", default="")
    vp.add_argument("--store-dir", default="")
    vp.set_defaults(func=cmd_vectors_push)

    vl = vec_sub.add_parser("pull")
    vl.add_argument("--url", default="")
    vl.add_argument("--id", default="")
    vl.add_argument("--base-url", default="")
    vl.add_argument("--out", required=True)
    vl.add_argument("--allow-http", action="store_true")
    vl.set_defaults(func=cmd_vectors_pull)

    v = sub.add_parser("verify")
    v.add_argument("--adapter", default="")
    v.add_argument("--verification", required=True)
    v.add_argument("--validate", action="store_true", help="Validate against the proof envelope schema first")
    v.set_defaults(func=cmd_verify)

    b = sub.add_parser("batch")
    b.add_argument("files", nargs="+")
    b.add_argument("--adapter", default="")
    b.set_defaults(func=cmd_batch)

    a = sub.add_parser("adapters")
    a.set_defaults(func=cmd_adapters)

    va = sub.add_parser("validate")
    va.add_argument("input")
    va.add_argument("--schema", default="")
    va.set_defaults(func=cmd_validate)

    c = sub.add_parser("canon")
    c.add_argument("input")
    c.set_defaults(func=cmd_canon)

    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    cfg = ConfigManager()
    try:
        if args.config:
            cfg.load_from_file(args.config)
        else:
            cfg.load_defaults()
    except ConfigError as ex:
        print(f"config error: {ex}", file=sys.stderr)
        return finalize(ExitCode.IO_ERROR, cfg)
    problems = cfg.validate()
    if problems:
        for problem in problems:
            print(f"config error: {problem}", file=sys.stderr)
        return finalize(ExitCode.IO_ERROR, cfg)
    args.config_manager = cfg

    configure_logging(cfg.get("observability.log_level"), cfg.get("observability.log_format"))
    return finalize(args.func(args), cfg)


if __name__ == "__main__":
    sys.exit(main())
