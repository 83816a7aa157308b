"""
ZKPIP Adapter Registry and Dispatch

Adapters wrap an external proof-verification backend behind one contract:
given a normalized `ProofBundle`, return a `VerifyOutcome`. The proof math
lives in the backend (``verify(vkey, publics, proof) -> bool``); this module
only routes bundles and interprets the boolean.

Routing:
    - Raw bundles are normalized once by `normalize_bundle`, which resolves
      the proof-system tag through an explicit precedence table.
    - `AdapterRegistry.pick` returns the first registered adapter that
      claims a bundle. Registration order is part of the contract.
    - `dispatch` refuses a bundle whose kind differs from the adapter's
      (WRONG_ADAPTER, adapter not called) and turns any exception escaping
      `Adapter.verify` into an ``adapter_error`` outcome.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from zkpip.errors import BundleError, ErrorKind, Stage, VerifyOutcome

logger = logging.getLogger(__name__)


# =============================================================================
# PROOF SYSTEMS
# =============================================================================

class ProofSystem(Enum):
    """Proof systems an adapter can declare."""
    GROTH16 = "groth16"
    PLONK = "plonk"
    STARK = "stark"


class Framework(Enum):
    """Libraries that produce and verify proofs."""
    SNARKJS = "snarkjs"
    ZOKRATES = "zokrates"
    MOCK = "mock"


_PROOF_SYSTEMS = {p.value for p in ProofSystem}


# =============================================================================
# BUNDLE NORMALIZATION
# =============================================================================

# Where the proof-system tag may live, highest precedence first.
KIND_RESOLUTION: Tuple[Tuple[str, ...], ...] = (
    ("adapter",),
    ("proofSystem",),
    ("meta", "proofSystem"),
    ("system",),
)

# Accepted spellings per artifact piece, in order.
ARTIFACT_FIELDS: Dict[str, Tuple[str, ...]] = {
    "verification_key": ("verificationKey", "verification_key", "vkey"),
    "proof": ("proof",),
    "public_signals": ("publicSignals", "publics", "public"),
}

# Containers searched for artifact pieces, in order.
ARTIFACT_CONTAINERS: Tuple[Tuple[str, ...], ...] = (
    (),
    ("bundle",),
    ("artifacts",),
    ("artifacts", "bundle"),
)

_MISSING = object()


@dataclass(frozen=True)
class ProofBundle:
    """A bundle with its tag and artifact pieces resolved."""
    id: str
    kind: str
    framework: Optional[str] = None
    verification_key: Any = None
    proof: Any = None
    public_signals: Optional[List[Any]] = None
    kind_source: str = ""
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)

    def missing_artifacts(self) -> List[str]:
        missing = []
        if self.verification_key is None:
            missing.append("verificationKey")
        if self.proof is None:
            missing.append("proof")
        if self.public_signals is None:
            missing.append("publicSignals")
        return missing


def _lookup(obj: Any, path: Sequence[str]) -> Any:
    cur = obj
    for part in path:
        if not isinstance(cur, Mapping) or part not in cur:
            return _MISSING
        cur = cur[part]
    return cur


def resolve_kind(raw: Mapping[str, Any]) -> Optional[Tuple[str, str]]:
    """Return ``(tag, source)`` from the first populated KIND_RESOLUTION entry."""
    for path in KIND_RESOLUTION:
        value = _lookup(raw, path)
        if isinstance(value, str) and value.strip():
            return value.strip(), ".".join(path)
    return None


def _resolve_artifact(raw: Mapping[str, Any], names: Tuple[str, ...]) -> Any:
    for container in ARTIFACT_CONTAINERS:
        holder = _lookup(raw, container) if container else raw
        if not isinstance(holder, Mapping):
            continue
        for name in names:
            if name in holder and holder[name] is not None:
                return holder[name]
    return None


def _bundle_id(raw: Any) -> str:
    if isinstance(raw, Mapping):
        v = raw.get("id")
        if isinstance(v, (str, int)) and not isinstance(v, bool):
            return str(v)
    return ""


def normalize_bundle(raw: Any) -> ProofBundle:
    """Resolve tag, framework and artifacts of a raw bundle.

    A tag may be a bare proof system (``groth16``) or an adapter id
    (``snarkjs-groth16``), in which case the prefix names the framework.

    Raises:
        BundleError: not an object, or no tag in any KIND_RESOLUTION slot
    """
    if isinstance(raw, ProofBundle):
        return raw
    if not isinstance(raw, Mapping):
        raise BundleError("bundle must be a JSON object")

    resolved = resolve_kind(raw)
    if resolved is None:
        sources = ", ".join(".".join(p) for p in KIND_RESOLUTION)
        raise BundleError(f"bundle has no proof-system tag (looked at {sources})")
    tag, source = resolved

    kind = tag.lower()
    tag_framework: Optional[str] = None
    prefix, sep, suffix = kind.rpartition("-")
    if sep and suffix in _PROOF_SYSTEMS:
        kind, tag_framework = suffix, prefix

    framework = None
    for path in (("framework",), ("meta", "framework")):
        v = _lookup(raw, path)
        if isinstance(v, str) and v.strip():
            framework = v.strip().lower()
            break
    framework = framework or tag_framework

    publics = _resolve_artifact(raw, ARTIFACT_FIELDS["public_signals"])
    return ProofBundle(
        id=_bundle_id(raw),
        kind=kind,
        framework=framework,
        verification_key=_resolve_artifact(raw, ARTIFACT_FIELDS["verification_key"]),
        proof=_resolve_artifact(raw, ARTIFACT_FIELDS["proof"]),
        public_signals=list(publics) if isinstance(publics, (list, tuple)) else None,
        kind_source=source,
        raw=raw,
    )


# =============================================================================
# ADAPTERS
# =============================================================================

VerifyBackend = Callable[[Any, List[Any], Any], bool]


class Adapter(ABC):
    """Base class for verifier-backend wrappers."""

    id: str
    proof_system: ProofSystem
    framework: Framework

    @property
    def kind(self) -> str:
        return self.proof_system.value

    def can_handle(self, bundle: ProofBundle) -> bool:
        """Claim bundles of our proof system whose framework is ours or unset."""
        if bundle.kind != self.kind:
            return False
        return bundle.framework is None or bundle.framework == self.framework.value

    @abstractmethod
    def verify(self, bundle: ProofBundle) -> VerifyOutcome:
        """Verify one bundle; expected failures are returned, not raised."""

    def describe(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "proofSystem": self.proof_system.value,
            "framework": self.framework.value,
        }


class BackendAdapter(Adapter):
    """Adapter delegating to a ``verify(vkey, publics, proof) -> bool`` callable.

    Without a backend the adapter stays registered and reports
    ``not_implemented``.
    """

    def __init__(
        self,
        id: str,
        proof_system: ProofSystem,
        framework: Framework,
        backend: Optional[VerifyBackend] = None,
    ):
        self.id = id
        self.proof_system = proof_system
        self.framework = framework
        self.backend = backend

    def verify(self, bundle: ProofBundle) -> VerifyOutcome:
        if self.backend is None:
            return VerifyOutcome.failure(
                ErrorKind.NOT_IMPLEMENTED,
                f"no verification backend configured for {self.id}",
                adapter=self.id,
                bundle_id=bundle.id,
                stage=Stage.VERIFY,
            )

        missing = bundle.missing_artifacts()
        if missing:
            return VerifyOutcome.failure(
                ErrorKind.INVALID_INPUT,
                f"missing {', '.join(missing)}",
                adapter=self.id,
                bundle_id=bundle.id,
            )

        try:
            ok = self.backend(bundle.verification_key, list(bundle.public_signals or []), bundle.proof)
        except Exception as ex:
            logger.warning(
                "backend for %s raised on bundle %r",
                self.id,
                bundle.id,
                exc_info=True,
                extra={"operation": "adapter.verify", "error_code": ErrorKind.EXCEPTION_DURING_VERIFY.value},
            )
            return VerifyOutcome.failure(
                ErrorKind.EXCEPTION_DURING_VERIFY,
                f"{type(ex).__name__}: {ex}",
                adapter=self.id,
                bundle_id=bundle.id,
                stage=Stage.VERIFY,
            )

        if ok is True:
            return VerifyOutcome.success(self.id, bundle.id)
        return VerifyOutcome.failure(
            ErrorKind.VERIFICATION_FAILED,
            "backend rejected the proof",
            adapter=self.id,
            bundle_id=bundle.id,
            stage=Stage.VERIFY,
        )


class MockAdapter(Adapter):
    """Accepts every bundle of its proof system. For dry runs and tests."""

    def __init__(self, proof_system: ProofSystem = ProofSystem.GROTH16, id: Optional[str] = None):
        self.proof_system = proof_system
        self.framework = Framework.MOCK
        self.id = id or f"mock-{proof_system.value}"

    def can_handle(self, bundle: ProofBundle) -> bool:
        return bundle.kind == self.kind

    def verify(self, bundle: ProofBundle) -> VerifyOutcome:
        return VerifyOutcome.success(self.id, bundle.id, metrics={"mock": "1"})


# =============================================================================
# DISPATCH
# =============================================================================

def dispatch(adapter: Adapter, bundle: Union[ProofBundle, Mapping[str, Any]]) -> VerifyOutcome:
    """Run `bundle` through `adapter`.

    The adapter's outcome is returned unchanged. Only a kind mismatch, an
    untagged bundle, or an exception escaping `Adapter.verify` produce an
    outcome here.
    """
    if not isinstance(bundle, ProofBundle):
        try:
            bundle = normalize_bundle(bundle)
        except BundleError as ex:
            return VerifyOutcome.failure(
                ErrorKind.INVALID_INPUT,
                str(ex),
                adapter=adapter.id,
                bundle_id=_bundle_id(bundle),
            )

    if bundle.kind != adapter.kind:
        logger.debug("bundle %r is %s, adapter %s expects %s", bundle.id, bundle.kind, adapter.id, adapter.kind)
        return VerifyOutcome.failure(
            ErrorKind.WRONG_ADAPTER,
            f"Expected {adapter.kind}, got {bundle.kind}",
            adapter=adapter.id,
            bundle_id=bundle.id,
        )

    logger.debug("dispatching bundle %r to %s", bundle.id, adapter.id)
    try:
        return adapter.verify(bundle)
    except Exception as ex:
        logger.warning(
            "adapter %s raised on bundle %r",
            adapter.id,
            bundle.id,
            exc_info=True,
            extra={"operation": "adapter.dispatch", "error_code": ErrorKind.ADAPTER_ERROR.value},
        )
        return VerifyOutcome.failure(
            ErrorKind.ADAPTER_ERROR,
            f"{type(ex).__name__}: {ex}",
            adapter=adapter.id,
            bundle_id=bundle.id,
        )


# =============================================================================
# REGISTRY
# =============================================================================

class AdapterRegistry:
    """Ordered adapter list. Build one at startup and pass it around."""

    def __init__(self, adapters: Sequence[Adapter] = ()):
        self._adapters: List[Adapter] = []
        for a in adapters:
            self.register(a)

    def register(self, adapter: Adapter) -> None:
        if self.get(adapter.id) is not None:
            raise ValueError(f"adapter {adapter.id!r} already registered")
        self._adapters.append(adapter)

    def get(self, adapter_id: str) -> Optional[Adapter]:
        """Look up by id; ``snarkjs_groth16`` finds ``snarkjs-groth16``."""
        wanted = adapter_id.replace("_", "-")
        for a in self._adapters:
            if a.id == adapter_id or a.id == wanted:
                return a
        return None

    def ids(self) -> List[str]:
        return [a.id for a in self._adapters]

    def __iter__(self) -> Iterator[Adapter]:
        return iter(list(self._adapters))

    def __len__(self) -> int:
        return len(self._adapters)

    def pick(self, bundle: Union[ProofBundle, Mapping[str, Any]]) -> Optional[Adapter]:
        """First adapter (registration order) whose `can_handle` accepts `bundle`."""
        try:
            normalized = normalize_bundle(bundle)
        except BundleError:
            return None
        for a in self._adapters:
            try:
                if a.can_handle(normalized):
                    logger.debug("picked %s for bundle %r", a.id, normalized.id)
                    return a
            except Exception:
                logger.debug("can_handle of %s raised; skipping", a.id, exc_info=True)
        return None

    def describe(self) -> List[Dict[str, str]]:
        return [a.describe() for a in self._adapters]


def default_registry(backends: Optional[Mapping[str, VerifyBackend]] = None) -> AdapterRegistry:
    """The shipped adapters, in pick order.

    `backends` maps adapter id to a verify callable. Adapters without one
    report ``not_implemented``.
    """
    backends = backends or {}
    specs = (
        ("snarkjs-groth16", ProofSystem.GROTH16, Framework.SNARKJS),
        ("snarkjs-plonk", ProofSystem.PLONK, Framework.SNARKJS),
        ("zokrates-groth16", ProofSystem.GROTH16, Framework.ZOKRATES),
    )
    return AdapterRegistry([BackendAdapter(i, ps, fw, backends.get(i)) for i, ps, fw in specs])


def verify_with_registry(
    registry: AdapterRegistry,
    raw: Any,
    adapter_id: Optional[str] = None,
    schemas: Any = None,
    schema_id: str = "mvs.proofEnvelope",
) -> VerifyOutcome:
    """Validate, normalize, route and verify one raw bundle.

    `schemas` is an optional `zkpip.schema.SchemaRegistry`; when given, the
    raw bundle must validate against `schema_id` first.
    """
    bundle_id = _bundle_id(raw)

    if schemas is not None:
        errors = schemas.validate(schema_id, raw)
        if errors:
            return VerifyOutcome.failure(
                ErrorKind.SCHEMA_INVALID,
                "; ".join(errors),
                bundle_id=bundle_id,
                stage=Stage.SCHEMA,
            )

    try:
        bundle = normalize_bundle(raw)
    except BundleError as ex:
        return VerifyOutcome.failure(ErrorKind.INVALID_INPUT, str(ex), bundle_id=bundle_id)

    adapter = registry.get(adapter_id) if adapter_id else registry.pick(bundle)
    if adapter is None:
        wanted = adapter_id or bundle.kind
        return VerifyOutcome.failure(
            ErrorKind.ADAPTER_NOT_FOUND,
            f"no adapter for {wanted!r} (registered: {', '.join(registry.ids()) or 'none'})",
            bundle_id=bundle.id,
            stage=Stage.ADAPTER,
        )
    return dispatch(adapter, bundle)
