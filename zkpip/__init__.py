"""ZKPIP: proof-vector interchange toolkit.

Architecture:
    zkpip/
    ├── __init__.py      # Package entry, version, public API
    ├── core.py          # Primitives: sha256, JSON, YAML, atomic writes
    ├── canonical.py     # Canonical JSON and content addressing
    ├── keystore.py      # Ed25519 keystore (keyId = hash of SPKI)
    ├── codeseal.py      # Seals over canonical payloads
    ├── schema.py        # JSON Schema registry with aliases
    ├── adapters.py      # Verifier adapters and dispatch
    ├── batch.py         # Ordered batch verification
    ├── exitcodes.py     # Outcome -> process exit code
    ├── vector_store.py  # Local vector store and remote pulls
    ├── config.py        # Layered configuration
    ├── observability.py # Logging setup
    └── cli.py           # Command-line interface
"""

__version__ = "0.3.0"

from zkpip.canonical import (
    CanonicalDigest,
    canonical_bytes,
    canonicalize,
    digest,
    to_vector_urn,
)
from zkpip.errors import (
    CanonicalizationError,
    ErrorKind,
    SchemaRegistryError,
    Stage,
    VerifyOutcome,
    ZkpipError,
)
from zkpip.keystore import Keystore, KeyRecord
from zkpip.codeseal import Seal, SealCheck, sign, verify, verify_seal
from zkpip.schema import SchemaRegistry, build_core_registry
from zkpip.adapters import AdapterRegistry, ProofBundle, default_registry, dispatch
from zkpip.batch import BatchResult, seal_batch, verify_batch
from zkpip.exitcodes import ExitCode, map_outcome

__all__ = [
    "__version__",
    "CanonicalDigest",
    "canonical_bytes",
    "canonicalize",
    "digest",
    "to_vector_urn",
    "CanonicalizationError",
    "ErrorKind",
    "SchemaRegistryError",
    "Stage",
    "VerifyOutcome",
    "ZkpipError",
    "Keystore",
    "KeyRecord",
    "Seal",
    "SealCheck",
    "sign",
    "verify",
    "verify_seal",
    "SchemaRegistry",
    "build_core_registry",
    "AdapterRegistry",
    "ProofBundle",
    "default_registry",
    "dispatch",
    "BatchResult",
    "seal_batch",
    "verify_batch",
    "ExitCode",
    "map_outcome",
]
