"""JSON Schema registry with canonical ids and aliases.

Every schema document is registered under its own ``$id`` (the canonical
id). Aliases are lookup-only names pointing at exactly one canonical id;
resolving an alias returns the very same compiled validator as resolving the
canonical id.

Registration fails loudly (`SchemaRegistryError`) on:
- a document without a non-empty ``$id``
- a ``$id`` registered twice
- an alias already claimed by a different canonical schema
- a schema directory missing a core schema, or holding one whose ``$id``
  drifted from the expected value

Validation:
- Draft 2020-12 via jsonschema
- ``$ref`` across registered documents resolved through a referencing
  registry
- errors reported as ``"<json path>: <message>"``
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from zkpip.config import SchemasConfig
from zkpip.core import load_json
from zkpip.errors import SchemaRegistryError

logger = logging.getLogger(__name__)

HTTPS_ALIAS_BASE = "https://zkpip.org/schemas/"


@dataclass(frozen=True)
class CoreSchema:
    """A schema every deployment must ship."""
    name: str
    filename: str
    canonical_id: str


CORE_SCHEMAS: Tuple[CoreSchema, ...] = (
    CoreSchema("core", "mvs.core.schema.json", "urn:zkpip:mvs:schemas:core.schema.json"),
    CoreSchema("ecosystem", "mvs.ecosystem.schema.json", "urn:zkpip:mvs:schemas:ecosystem.schema.json"),
    CoreSchema("issue", "mvs.issue.schema.json", "urn:zkpip:mvs:schemas:issue.schema.json"),
    CoreSchema("verification", "mvs.verification.schema.json", "urn:zkpip:mvs:schemas:verification.schema.json"),
    CoreSchema("proofEnvelope", "mvs.proofEnvelope.schema.json", "urn:zkpip:mvs:schemas:proofEnvelope.schema.json"),
    CoreSchema("cir", "mvs.cir.schema.json", "urn:zkpip:mvs:schemas:cir.schema.json"),
    CoreSchema("seal", "seal.v1.schema.json", "urn:zkpip:schema:seal.v1"),
)

CANONICAL_IDS: Dict[str, str] = {c.name: c.canonical_id for c in CORE_SCHEMAS}

# Legacy names kept resolvable for documents produced by older tooling.
_LEGACY_ALIASES: Dict[str, Tuple[str, ...]] = {
    "proofEnvelope": (
        "urn:zkpip:mvs.proof-envelopes.schema.json",
        "mvs/verification/proofEnvelope",
        "mvs.proof-bundle",
        "mvs/proof-bundle",
        "mvs/verification/proofBundle",
    ),
    "cir": ("mvs/verification/cir",),
    "seal": (
        "urn:zkpip:schema:seal",
        "mvs/seal",
        "mvs/seal.v1",
        "mvs/seal.schema.json",
        "mvs/seal.v1.schema.json",
        "seal.schema.json",
        "seal.v1",
    ),
}

_SCHEMA_SUFFIX = ".schema.json"


class SchemaNotRegistered(LookupError):
    """No schema is registered under the requested id or alias."""


def _to_kebab(name: str) -> str:
    return re.sub(r"([a-z0-9])([A-Z])", r"\1-\2", name).replace("_", "-").lower()


def core_aliases(name: str) -> List[str]:
    """The bounded alias family for one core schema name."""
    if name == "seal":
        return list(_LEGACY_ALIASES["seal"])

    names = [name]
    kebab = _to_kebab(name)
    if kebab != name:
        names.append(kebab)

    out: List[str] = []
    for n in names:
        out.extend([
            f"mvs.{n}",
            f"mvs/{n}",
            f"mvs.{n}{_SCHEMA_SUFFIX}",
            f"mvs/{n}{_SCHEMA_SUFFIX}",
            f"urn:zkpip:mvs.{n}{_SCHEMA_SUFFIX}",
        ])
    out.append(f"{HTTPS_ALIAS_BASE}{name}{_SCHEMA_SUFFIX}")
    out.extend(_LEGACY_ALIASES.get(name, ()))
    # de-duplicate, keep order
    return list(dict.fromkeys(out))


class SchemaRegistry:
    """Registered schema documents, their aliases and compiled validators."""

    def __init__(self) -> None:
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._sources: Dict[str, str] = {}
        self._aliases: Dict[str, str] = {}
        self._validators: Dict[str, Draft202012Validator] = {}
        self._refs: Optional[Registry] = None

    def __contains__(self, id_or_alias: object) -> bool:
        return isinstance(id_or_alias, str) and self.canonical_id(id_or_alias) is not None

    def __len__(self) -> int:
        return len(self._documents)

    def register(
        self,
        document: Dict[str, Any],
        aliases: Iterable[str] = (),
        source: Optional[str] = None,
    ) -> str:
        """Register a schema under its ``$id`` and return that id."""
        where = f" ({source})" if source else ""
        if not isinstance(document, dict):
            raise SchemaRegistryError(f"schema document must be a JSON object{where}")
        schema_id = document.get("$id")
        if not isinstance(schema_id, str) or not schema_id.strip():
            raise SchemaRegistryError(f"schema document has no $id{where}")
        if schema_id in self._documents:
            prev = self._sources.get(schema_id)
            raise SchemaRegistryError(
                f"duplicate $id {schema_id!r}{where}" + (f", first registered from {prev}" if prev else "")
            )
        if schema_id in self._aliases:
            raise SchemaRegistryError(
                f"$id {schema_id!r}{where} is already an alias of {self._aliases[schema_id]!r}"
            )
        try:
            Draft202012Validator.check_schema(document)
        except SchemaError as ex:
            raise SchemaRegistryError(f"invalid schema {schema_id!r}{where}: {ex.message}") from ex

        self._documents[schema_id] = document
        if source:
            self._sources[schema_id] = source
        self._refs = None
        self._validators.clear()

        for alias in aliases:
            self.add_alias(schema_id, alias)
        return schema_id

    def add_alias(self, canonical_id: str, alias: str) -> None:
        """Make `alias` resolve to `canonical_id`."""
        if canonical_id not in self._documents:
            raise SchemaRegistryError(f"cannot alias unregistered schema {canonical_id!r}")
        if not alias or alias == canonical_id:
            return
        if alias in self._documents:
            raise SchemaRegistryError(f"alias {alias!r} collides with a registered $id")
        owner = self._aliases.get(alias)
        if owner is not None and owner != canonical_id:
            raise SchemaRegistryError(
                f"alias {alias!r} claimed by both {owner!r} and {canonical_id!r}"
            )
        self._aliases[alias] = canonical_id
        if alias.startswith(("urn:", "https:")):
            self._refs = None
            self._validators.clear()

    def canonical_id(self, id_or_alias: str) -> Optional[str]:
        if id_or_alias in self._documents:
            return id_or_alias
        return self._aliases.get(id_or_alias)

    def aliases_of(self, canonical_id: str) -> List[str]:
        return sorted(a for a, c in self._aliases.items() if c == canonical_id)

    def ids(self) -> List[str]:
        return sorted(self._documents)

    def document(self, id_or_alias: str) -> Optional[Dict[str, Any]]:
        cid = self.canonical_id(id_or_alias)
        return self._documents.get(cid) if cid else None

    def _referencing_registry(self) -> Registry:
        if self._refs is None:
            resources = []
            for schema_id, doc in self._documents.items():
                resources.append((schema_id, Resource.from_contents(doc, default_specification=DRAFT202012)))
            for alias, schema_id in self._aliases.items():
                # only absolute URIs can appear as $ref targets
                if alias.startswith(("urn:", "https:")):
                    doc = self._documents[schema_id]
                    resources.append((alias, Resource.from_contents(doc, default_specification=DRAFT202012)))
            self._refs = Registry().with_resources(resources)
        return self._refs

    def resolve(self, id_or_alias: str) -> Optional[Draft202012Validator]:
        """Compiled validator for an id or alias, or None if not registered."""
        cid = self.canonical_id(id_or_alias)
        if cid is None:
            return None
        validator = self._validators.get(cid)
        if validator is None:
            validator = Draft202012Validator(self._documents[cid], registry=self._referencing_registry())
            self._validators[cid] = validator
        return validator

    def validate(self, id_or_alias: str, instance: Any) -> List[str]:
        """Validate `instance`.

        Returns:
            List of validation error messages (empty if valid)
        """
        validator = self.resolve(id_or_alias)
        if validator is None:
            raise SchemaNotRegistered(id_or_alias)
        errors = sorted(validator.iter_errors(instance), key=lambda e: (e.json_path, e.message))
        return [f"{e.json_path}: {e.message}" for e in errors]


def default_schemas_dir() -> Path:
    """Schema root: ZKPIP_SCHEMAS_DIR when set, else the bundled documents."""
    return Path(SchemasConfig().schemas_dir.get()).expanduser()


def _schema_files(schemas_dir: Path) -> List[Path]:
    return sorted(p for p in schemas_dir.rglob(f"*{_SCHEMA_SUFFIX}") if p.is_file())


def _path_aliases(rel: str) -> List[str]:
    stem = rel[: -len(_SCHEMA_SUFFIX)]
    out = [stem, rel]
    head, _, base = stem.rpartition("/")
    kebab = f"{head}/{_to_kebab(base)}" if head else _to_kebab(base)
    if kebab != stem:
        out.extend([kebab, f"{kebab}{_SCHEMA_SUFFIX}"])
    return out


def build_core_registry(schemas_dir: Optional[Union[str, Path]] = None) -> SchemaRegistry:
    """Load every ``*.schema.json`` below `schemas_dir` into a new registry.

    The core schemas must all be present with their expected ``$id``;
    anything else is a deployment error and raises `SchemaRegistryError`.
    """
    root = Path(schemas_dir).expanduser() if schemas_dir is not None else default_schemas_dir()
    if not root.is_dir():
        raise SchemaRegistryError(f"schema directory not found: {root}")

    core_by_file = {c.filename: c for c in CORE_SCHEMAS}
    for core in CORE_SCHEMAS:
        path = root / core.filename
        if not path.is_file():
            raise SchemaRegistryError(f"missing core schema {core.filename!r} in {root}")
        try:
            declared = load_json(path).get("$id")
        except (ValueError, AttributeError) as ex:
            raise SchemaRegistryError(f"missing core schema {core.filename!r}: unreadable ({ex})") from ex
        if declared != core.canonical_id:
            raise SchemaRegistryError(
                f"missing core schema {core.canonical_id!r}: {core.filename} declares $id {declared!r}"
            )

    registry = SchemaRegistry()
    pending: List[Tuple[str, str]] = []
    for path in _schema_files(root):
        rel = path.relative_to(root).as_posix()
        try:
            document = load_json(path)
        except ValueError as ex:
            raise SchemaRegistryError(f"unreadable schema {rel}: {ex}") from ex
        schema_id = registry.register(document, source=rel)
        pending.append((schema_id, rel))

    # aliases after all documents so an alias can never shadow a later $id
    for schema_id, rel in pending:
        core = core_by_file.get(rel)
        if core is not None:
            for alias in core_aliases(core.name):
                registry.add_alias(schema_id, alias)
        for alias in _path_aliases(rel):
            registry.add_alias(schema_id, alias)

    logger.debug(
        "registered %d schemas from %s",
        len(registry),
        root,
        extra={"operation": "schema.register", "context": {"schemas": registry.ids()}},
    )
    return registry


# Filename keyword table, first match wins.
_PICK_TABLE: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("proof-envelope", "proofenvelope", "proof-set", "bundle", "manifest"), "proofEnvelope"),
    (("cir", "circuit"), "cir"),
    (("verification", "verify", "error"), "verification"),
    (("issue",), "issue"),
    (("ecosystem", "eco"), "ecosystem"),
)


def pick_schema_id(path: Union[str, Path]) -> str:
    """Choose the canonical schema id for a vector file from its name.

    Falls back to the core schema.
    """
    name = Path(path).name.lower()
    for keywords, schema_name in _PICK_TABLE:
        if any(k in name for k in keywords):
            return CANONICAL_IDS[schema_name]
    return CANONICAL_IDS["core"]
