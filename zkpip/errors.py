"""Error taxonomy and outcome records.

Expected failures (a bundle that does not verify, a tampered seal, a file
that cannot be read) are carried as values: a `VerifyOutcome` with a named
`ErrorKind`. Exceptions are reserved for programmer and configuration
errors: malformed input to the canonical codec, a misconfigured schema
directory, an invalid config value.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Every terminal failure kind a caller can branch on."""

    # dispatch / adapters
    WRONG_ADAPTER = "WRONG_ADAPTER"
    NOT_IMPLEMENTED = "not_implemented"
    VERIFICATION_FAILED = "verification_failed"
    INVALID_INPUT = "invalid_input"
    EXCEPTION_DURING_VERIFY = "exception_during_verify"
    ADAPTER_ERROR = "adapter_error"
    ADAPTER_NOT_FOUND = "adapter_not_found"

    # io / schema
    IO_ERROR = "io_error"
    SCHEMA_INVALID = "schema_invalid"

    # CodeSeal
    SIGNATURE_INVALID = "SIGNATURE_INVALID"
    URN_MISMATCH = "URN_MISMATCH"
    ALGO_UNSUPPORTED = "ALGO_UNSUPPORTED"
    PUBLIC_KEY_NOT_FOUND = "PUBLIC_KEY_NOT_FOUND"


class Stage(Enum):
    """Pipeline stage where a failure surfaced."""

    IO = "io"
    SCHEMA = "schema"
    ADAPTER = "adapter"
    KEYSTORE = "keystore"
    VERIFY = "verify"


@dataclass(frozen=True)
class VerifyOutcome:
    """Result of verifying one bundle.

    `ok` is True only when `code` is None. `adapter` and `bundle_id` are
    empty when the failure happened before an adapter was chosen.
    """

    ok: bool
    adapter: str = ""
    bundle_id: str = ""
    code: Optional[ErrorKind] = None
    stage: Optional[Stage] = None
    message: str = ""
    metrics: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(
        cls,
        adapter: str,
        bundle_id: str = "",
        metrics: Optional[Dict[str, Any]] = None,
    ) -> "VerifyOutcome":
        return cls(ok=True, adapter=adapter, bundle_id=bundle_id, metrics=dict(metrics or {}))

    @classmethod
    def failure(
        cls,
        code: ErrorKind,
        message: str = "",
        *,
        adapter: str = "",
        bundle_id: str = "",
        stage: Optional[Stage] = None,
    ) -> "VerifyOutcome":
        return cls(
            ok=False,
            adapter=adapter,
            bundle_id=bundle_id,
            code=code,
            stage=stage,
            message=message,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding empty values."""
        d: Dict[str, Any] = {"ok": self.ok}
        if self.adapter:
            d["adapter"] = self.adapter
        if self.bundle_id:
            d["bundleId"] = self.bundle_id
        if self.code is not None:
            d["code"] = self.code.value
        if self.stage is not None:
            d["stage"] = self.stage.value
        if self.message:
            d["message"] = self.message
        if self.metrics:
            d["metrics"] = dict(self.metrics)
        return d


class ZkpipError(Exception):
    """Base class for errors raised (not returned) by zkpip."""


class CanonicalizationError(ZkpipError, ValueError):
    """Input cannot be canonicalized without coercion.

    `code` is a stable machine token, `path` the offending position
    (`$`, `$.a`, `$.items[3]`).
    """

    def __init__(self, code: str, path: str, detail: str = ""):
        self.code = code
        self.path = path
        msg = f"{code} at {path}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class BundleError(ZkpipError, ValueError):
    """A proof bundle carries no usable proof-system tag."""


class SchemaRegistryError(ZkpipError):
    """Schema registry is misconfigured (missing $id, duplicates, drift)."""


class ConfigError(ZkpipError):
    """Configuration error."""


class ConfigValidationError(ConfigError):
    """Configuration validation error."""


class VectorIOError(ZkpipError, OSError):
    """Opaque I/O failure from a store or the remote fetch collaborator."""


class PullGuardError(ZkpipError, ValueError):
    """A vector source URI was rejected before any fetch happened."""

    def __init__(self, code: str, message: str):
        self.code = code
        super().__init__(message)
