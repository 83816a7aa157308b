"""CodeSeal: Ed25519 seals over canonical JSON.

A seal binds a payload's canonical digest to a signer::

    {"id": <sha256 hex>, "urn": "urn:zkpip:vector:sha256:<hex>",
     "signer": <keyId>, "timestamp": <ISO8601>, "signature": <base64>,
     "algo": "ed25519"}

The signed message is the canonical UTF-8 string itself; Ed25519 has no
separate pre-hash step. Verification recomputes the digest from the
presented payload and never trusts `seal.id`. Checks run in order and the
first failing one names the result:

1. ``algo`` must be ``ed25519``             -> ALGO_UNSUPPORTED
2. recomputed id/urn must match the seal   -> URN_MISMATCH
3. signature over the canonical bytes      -> SIGNATURE_INVALID

A sealed document on disk is ``{"vector": <payload>, "seal": <seal>}``.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from zkpip.canonical import canonicalize, sha256_hex, to_vector_urn
from zkpip.core import now_iso8601
from zkpip.errors import ErrorKind
from zkpip.keystore import Keystore, load_private_key_pem, load_public_key_pem

logger = logging.getLogger(__name__)

SEAL_ALGO = "ed25519"
SIGNATURE_LENGTH = 64

_SEAL_FIELDS = ("id", "urn", "signer", "timestamp", "signature", "algo")


@dataclass(frozen=True)
class Seal:
    id: str
    urn: str
    signer: str
    timestamp: str
    signature: str
    algo: str = SEAL_ALGO

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "urn": self.urn,
            "signer": self.signer,
            "timestamp": self.timestamp,
            "signature": self.signature,
            "algo": self.algo,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Seal":
        """Build a Seal from its JSON form.

        Raises ValueError when a field is missing or not a string.
        """
        if not isinstance(data, Mapping):
            raise ValueError("seal must be a JSON object")
        values: Dict[str, str] = {}
        for name in _SEAL_FIELDS:
            v = data.get(name)
            if not isinstance(v, str):
                raise ValueError(f"seal.{name} must be a string")
            # signer may be empty for anonymous seals
            if not v and name != "signer":
                raise ValueError(f"seal.{name} must be a non-empty string")
            values[name] = v
        return cls(**values)


@dataclass(frozen=True)
class SealCheck:
    """Outcome of verifying one seal."""

    ok: bool
    reason: Optional[ErrorKind] = None
    message: str = ""
    urn: str = ""

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"ok": self.ok}
        if self.reason is not None:
            d["code"] = self.reason.value
        if self.message:
            d["message"] = self.message
        if self.urn:
            d["urn"] = self.urn
        return d


def _private_key(key: Union[str, bytes, Ed25519PrivateKey]) -> Ed25519PrivateKey:
    if isinstance(key, Ed25519PrivateKey):
        return key
    return load_private_key_pem(key)


def sign(
    payload: Any,
    private_key_pem: Union[str, bytes, Ed25519PrivateKey],
    signer: str = "",
    timestamp: Optional[str] = None,
) -> Seal:
    """Seal `payload`.

    `timestamp` defaults to `now_iso8601()`, which respects SOURCE_DATE_EPOCH.
    """
    canonical = canonicalize(payload)
    digest_hex = sha256_hex(canonical)
    sig = _private_key(private_key_pem).sign(canonical.encode("utf-8"))
    seal = Seal(
        id=digest_hex,
        urn=to_vector_urn(digest_hex),
        signer=signer,
        timestamp=timestamp or now_iso8601(),
        signature=base64.b64encode(sig).decode("ascii"),
    )
    logger.info(
        "sealed %s",
        seal.urn,
        extra={"operation": "seal.sign", "context": {"urn": seal.urn, "signer": signer}},
    )
    return seal


def _reject(reason: ErrorKind, message: str, urn: str = "") -> SealCheck:
    logger.warning(
        "seal rejected: %s",
        message,
        extra={"operation": "seal.verify", "error_code": reason.value, "context": {"urn": urn}},
    )
    return SealCheck(ok=False, reason=reason, message=message, urn=urn)


def verify_seal(payload: Any, seal: Union[Seal, Mapping[str, Any]], public_key_pem: Union[str, bytes]) -> SealCheck:
    """Check `seal` against `payload` and a public key, naming the failure."""
    if not isinstance(seal, Seal):
        algo = seal.get("algo") if isinstance(seal, Mapping) else None
        if algo is not None and algo != SEAL_ALGO:
            return _reject(ErrorKind.ALGO_UNSUPPORTED, f"unsupported seal algo: {algo!r}")
        seal = Seal.from_dict(seal)

    if seal.algo != SEAL_ALGO:
        return _reject(ErrorKind.ALGO_UNSUPPORTED, f"unsupported seal algo: {seal.algo!r}", seal.urn)

    canonical = canonicalize(payload)
    digest_hex = sha256_hex(canonical)
    expected_urn = to_vector_urn(digest_hex)
    if seal.id != digest_hex:
        return _reject(ErrorKind.URN_MISMATCH, "payload digest does not match seal.id", seal.urn)
    if seal.urn != expected_urn:
        return _reject(ErrorKind.URN_MISMATCH, "seal.urn does not match seal.id", seal.urn)

    try:
        sig = base64.b64decode(seal.signature, validate=True)
    except (binascii.Error, ValueError):
        return _reject(ErrorKind.SIGNATURE_INVALID, "signature is not valid base64", seal.urn)
    if len(sig) != SIGNATURE_LENGTH:
        return _reject(
            ErrorKind.SIGNATURE_INVALID,
            f"Ed25519 signature must be {SIGNATURE_LENGTH} bytes, got {len(sig)}",
            seal.urn,
        )

    try:
        pub = load_public_key_pem(public_key_pem)
    except (ValueError, TypeError, UnsupportedAlgorithm) as ex:
        return _reject(ErrorKind.SIGNATURE_INVALID, f"unusable public key: {ex}", seal.urn)

    try:
        pub.verify(sig, canonical.encode("utf-8"))
    except InvalidSignature:
        return _reject(ErrorKind.SIGNATURE_INVALID, "signature does not verify", seal.urn)

    return SealCheck(ok=True, urn=seal.urn)


def verify(payload: Any, seal: Union[Seal, Mapping[str, Any]], public_key_pem: Union[str, bytes]) -> bool:
    return verify_seal(payload, seal, public_key_pem).ok


def seal_document(
    payload: Any,
    private_key_pem: Union[str, bytes, Ed25519PrivateKey],
    signer: str = "",
    timestamp: Optional[str] = None,
) -> Dict[str, Any]:
    """Wrap `payload` with its seal in the persisted document form."""
    seal = sign(payload, private_key_pem, signer=signer, timestamp=timestamp)
    return {"vector": payload, "seal": seal.to_dict()}


def verify_sealed_document(
    document: Any,
    public_key_pem: Optional[Union[str, bytes]] = None,
    keystore: Optional[Keystore] = None,
) -> SealCheck:
    """Verify a ``{"vector", "seal"}`` document.

    Without an explicit public key the key is looked up in `keystore` by
    ``seal.signer``.
    """
    if not isinstance(document, Mapping) or "vector" not in document or not isinstance(
        document.get("seal"), Mapping
    ):
        return _reject(ErrorKind.SCHEMA_INVALID, "sealed document must hold 'vector' and 'seal' objects")

    raw_seal = document["seal"]
    algo = raw_seal.get("algo")
    if algo is not None and algo != SEAL_ALGO:
        return _reject(ErrorKind.ALGO_UNSUPPORTED, f"unsupported seal algo: {algo!r}")
    try:
        seal = Seal.from_dict(raw_seal)
    except ValueError as ex:
        return _reject(ErrorKind.SCHEMA_INVALID, str(ex))

    if public_key_pem is None:
        if keystore is not None:
            public_key_pem = keystore.read_public_pem(seal.signer)
        if public_key_pem is None:
            return _reject(
                ErrorKind.PUBLIC_KEY_NOT_FOUND,
                f"no public key for signer {seal.signer!r}",
                seal.urn,
            )

    return verify_seal(document["vector"], seal, public_key_pem)
