"""Filesystem keystore for Ed25519 signing keys.

Layout::

    <root>/keys.index.json            keyId -> {dir, alg, spkiSha256, createdAt}
    <root>/<keyId>/private.pem        PKCS8 (absent for public-only records)
    <root>/<keyId>/public.pem         SubjectPublicKeyInfo
    <root>/<keyId>/key.json           {keyId, algo, spkiSha256, createdAt, label?}

The keyId is a content address of the public key: lowercase unpadded base32
of sha256(SPKI DER), truncated. The same key yields the same id wherever it
is generated or imported.

Lookups return ``None`` when a key cannot be found. Only filesystem errors
raise.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import os
import pathlib
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from zkpip.core import load_json, now_iso8601, write_json_atomic

logger = logging.getLogger(__name__)

INDEX_FILENAME = "keys.index.json"
PRIVATE_FILENAME = "private.pem"
PUBLIC_FILENAME = "public.pem"
META_FILENAME = "key.json"

DEFAULT_KEY_ID_LENGTH = 16
MIN_KEY_ID_LENGTH = 8
# base32 of a 32-byte digest without padding
MAX_KEY_ID_LENGTH = 52

SUPPORTED_ALGOS = ("ed25519",)
_BASE32_CHARS = frozenset("abcdefghijklmnopqrstuvwxyz234567")


def _is_key_id(value: str) -> bool:
    return MIN_KEY_ID_LENGTH <= len(value) <= MAX_KEY_ID_LENGTH and set(value) <= _BASE32_CHARS


def spki_sha256_hex(spki_der: bytes) -> str:
    return hashlib.sha256(spki_der).hexdigest()


def key_id_from_spki(spki_der: bytes, length: int = DEFAULT_KEY_ID_LENGTH) -> str:
    """Derive the keyId for a DER-encoded SubjectPublicKeyInfo."""
    if not (MIN_KEY_ID_LENGTH <= length <= MAX_KEY_ID_LENGTH):
        raise ValueError(
            f"key id length must be between {MIN_KEY_ID_LENGTH} and {MAX_KEY_ID_LENGTH}, got {length}"
        )
    b32 = base64.b32encode(hashlib.sha256(spki_der).digest()).decode("ascii")
    return b32.rstrip("=").lower()[:length]


def _spki_der(public_key: Ed25519PublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def load_public_key_pem(public_pem: Union[str, bytes]) -> Ed25519PublicKey:
    """Parse an SPKI PEM and require an Ed25519 key."""
    data = public_pem.encode("utf-8") if isinstance(public_pem, str) else public_pem
    try:
        key = serialization.load_pem_public_key(data)
    except UnsupportedAlgorithm as ex:
        raise ValueError(f"unsupported public key: {ex}") from ex
    if not isinstance(key, Ed25519PublicKey):
        raise ValueError(f"expected an Ed25519 public key, got {type(key).__name__}")
    return key


def load_private_key_pem(private_pem: Union[str, bytes]) -> Ed25519PrivateKey:
    """Parse an unencrypted PKCS8 PEM and require an Ed25519 key."""
    data = private_pem.encode("utf-8") if isinstance(private_pem, str) else private_pem
    key = serialization.load_pem_private_key(data, password=None)
    if not isinstance(key, Ed25519PrivateKey):
        raise ValueError(f"expected an Ed25519 private key, got {type(key).__name__}")
    return key


@dataclass(frozen=True)
class KeyRecord:
    key_id: str
    algo: str
    public_pem_path: pathlib.Path
    spki_sha256: str
    created_at: str
    private_pem_path: Optional[pathlib.Path] = None
    label: str = ""

    @property
    def has_private(self) -> bool:
        return self.private_pem_path is not None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "keyId": self.key_id,
            "algo": self.algo,
            "publicPemPath": str(self.public_pem_path),
            "spkiSha256": self.spki_sha256,
            "createdAt": self.created_at,
        }
        if self.private_pem_path is not None:
            d["privatePemPath"] = str(self.private_pem_path)
        if self.label:
            d["label"] = self.label
        return d


class Keystore:
    """A keystore rooted at one directory."""

    def __init__(self, root: Union[str, pathlib.Path], key_id_length: int = DEFAULT_KEY_ID_LENGTH):
        if not (MIN_KEY_ID_LENGTH <= key_id_length <= MAX_KEY_ID_LENGTH):
            raise ValueError(
                f"key id length must be between {MIN_KEY_ID_LENGTH} and {MAX_KEY_ID_LENGTH}, got {key_id_length}"
            )
        self.root = pathlib.Path(root).expanduser()
        self.key_id_length = key_id_length

    @property
    def index_path(self) -> pathlib.Path:
        return self.root / INDEX_FILENAME

    # ------------------------------------------------------------------
    # index
    # ------------------------------------------------------------------

    def _read_index(self) -> Optional[Dict[str, Dict[str, Any]]]:
        p = self.index_path
        if not p.exists():
            return None
        try:
            data = load_json(p)
        except ValueError as ex:
            logger.warning("ignoring unreadable key index %s: %s", p, ex)
            return None
        if not isinstance(data, dict):
            logger.warning("ignoring key index %s: not a JSON object", p)
            return None
        index: Dict[str, Dict[str, Any]] = {}
        for key_id, entry in data.items():
            if not isinstance(entry, dict):
                continue
            # entries name their own directory directly under the root
            if not _is_key_id(key_id) or entry.get("dir", key_id) != key_id:
                logger.warning("ignoring key index entry %r: bad key id or directory", key_id)
                continue
            index[key_id] = entry
        return index

    def _upsert_index(self, key_id: str, entry: Dict[str, Any]) -> None:
        index = self._read_index() or {}
        index[key_id] = entry
        write_json_atomic(self.index_path, dict(sorted(index.items())))

    # ------------------------------------------------------------------
    # creation
    # ------------------------------------------------------------------

    def generate(
        self,
        algo: str = "ed25519",
        label: Optional[str] = None,
        overwrite: bool = False,
    ) -> KeyRecord:
        """Create a new keypair and register it in the index."""
        if algo not in SUPPORTED_ALGOS:
            raise ValueError(f"unsupported key algorithm: {algo!r}")

        priv = Ed25519PrivateKey.generate()
        private_pem = priv.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        record = self._store(priv.public_key(), private_pem, label=label, overwrite=overwrite)
        logger.info(
            "generated key %s",
            record.key_id,
            extra={"operation": "keys.generate", "context": {"keyId": record.key_id}},
        )
        return record

    def import_public(self, public_pem: Union[str, bytes], label: Optional[str] = None) -> KeyRecord:
        """Register a public key without private material.

        Importing a key that is already present returns its existing record.
        """
        pub = load_public_key_pem(public_pem)
        key_id = key_id_from_spki(_spki_der(pub), self.key_id_length)
        existing = self.load_record(key_id)
        if existing is not None:
            return existing
        return self._store(pub, None, label=label, overwrite=False)

    def _store(
        self,
        pub: Ed25519PublicKey,
        private_pem: Optional[bytes],
        *,
        label: Optional[str],
        overwrite: bool,
    ) -> KeyRecord:
        spki = _spki_der(pub)
        key_id = key_id_from_spki(spki, self.key_id_length)
        key_dir = self.root / key_id
        if not overwrite and (
            (key_dir / PRIVATE_FILENAME).exists() or (key_dir / PUBLIC_FILENAME).exists()
        ):
            raise FileExistsError(f"key material already present in {key_dir}")

        key_dir.mkdir(parents=True, exist_ok=True)

        private_path: Optional[pathlib.Path] = None
        if private_pem is not None:
            private_path = key_dir / PRIVATE_FILENAME
            private_path.write_bytes(private_pem)
            os.chmod(private_path, 0o600)
        elif overwrite:
            # public-only record replacing a full one
            (key_dir / PRIVATE_FILENAME).unlink(missing_ok=True)

        public_path = key_dir / PUBLIC_FILENAME
        public_path.write_bytes(
            pub.public_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            )
        )

        created_at = now_iso8601()
        spki_hex = spki_sha256_hex(spki)
        meta: Dict[str, Any] = {
            "keyId": key_id,
            "algo": "ed25519",
            "spkiSha256": spki_hex,
            "createdAt": created_at,
        }
        if label:
            meta["label"] = label
        write_json_atomic(key_dir / META_FILENAME, meta)

        entry: Dict[str, Any] = {
            "dir": key_id,
            "alg": "ed25519",
            "spkiSha256": spki_hex,
            "createdAt": created_at,
        }
        if label:
            entry["label"] = label
        self._upsert_index(key_id, entry)

        return KeyRecord(
            key_id=key_id,
            algo="ed25519",
            public_pem_path=public_path,
            spki_sha256=spki_hex,
            created_at=created_at,
            private_pem_path=private_path,
            label=label or "",
        )

    # ------------------------------------------------------------------
    # lookup
    # ------------------------------------------------------------------

    def _resolve_dir(self, key_id: str) -> Optional[pathlib.Path]:
        """Find the directory holding `key_id` (exact id or unique prefix)."""
        if not key_id or not self.root.is_dir():
            return None
        key_id = key_id.strip().lower()

        index = self._read_index()
        if index is not None:
            if key_id in index:
                return self.root / key_id
            matches = sorted(k for k in index if k.startswith(key_id))
            if len(matches) == 1:
                return self.root / matches[0]
            if len(matches) > 1:
                logger.warning("key id prefix %r is ambiguous: %s", key_id, ", ".join(matches))
            return None

        # No index: derive ids from the public keys on disk.
        matches_dirs: List[pathlib.Path] = []
        for pub_path in sorted(self.root.glob(f"*/{PUBLIC_FILENAME}")):
            try:
                pub = load_public_key_pem(pub_path.read_bytes())
            except ValueError as ex:
                logger.debug("skipping %s: %s", pub_path, ex)
                continue
            derived = key_id_from_spki(_spki_der(pub), MAX_KEY_ID_LENGTH)
            if derived.startswith(key_id) or pub_path.parent.name == key_id:
                matches_dirs.append(pub_path.parent)
        if len(matches_dirs) == 1:
            return matches_dirs[0]
        if len(matches_dirs) > 1:
            logger.warning(
                "key id prefix %r is ambiguous: %s",
                key_id,
                ", ".join(d.name for d in matches_dirs),
            )
        return None

    def resolve_private(self, key_id: str) -> Optional[pathlib.Path]:
        d = self._resolve_dir(key_id)
        if d is None:
            return None
        p = d / PRIVATE_FILENAME
        return p if p.is_file() else None

    def resolve_public(self, key_id: str) -> Optional[pathlib.Path]:
        d = self._resolve_dir(key_id)
        if d is None:
            return None
        p = d / PUBLIC_FILENAME
        return p if p.is_file() else None

    def read_private_pem(self, key_id: str) -> Optional[str]:
        p = self.resolve_private(key_id)
        return p.read_text(encoding="utf-8") if p is not None else None

    def read_public_pem(self, key_id: str) -> Optional[str]:
        p = self.resolve_public(key_id)
        return p.read_text(encoding="utf-8") if p is not None else None

    def load_record(self, key_id: str) -> Optional[KeyRecord]:
        d = self._resolve_dir(key_id)
        if d is None:
            return None
        return self._record_from_dir(d)

    def _record_from_dir(self, key_dir: pathlib.Path) -> Optional[KeyRecord]:
        public_path = key_dir / PUBLIC_FILENAME
        if not public_path.is_file():
            return None
        meta: Dict[str, Any] = {}
        meta_path = key_dir / META_FILENAME
        if meta_path.is_file():
            try:
                loaded = load_json(meta_path)
                if isinstance(loaded, dict):
                    meta = loaded
            except ValueError as ex:
                logger.warning("ignoring unreadable key metadata %s: %s", meta_path, ex)

        spki_hex = meta.get("spkiSha256")
        key_id = meta.get("keyId")
        if not spki_hex or not key_id:
            spki = _spki_der(load_public_key_pem(public_path.read_bytes()))
            spki_hex = spki_hex or spki_sha256_hex(spki)
            key_id = key_id or key_id_from_spki(spki, self.key_id_length)

        private_path = key_dir / PRIVATE_FILENAME
        return KeyRecord(
            key_id=str(key_id),
            algo=str(meta.get("algo") or "ed25519"),
            public_pem_path=public_path,
            spki_sha256=str(spki_hex),
            created_at=str(meta.get("createdAt") or ""),
            private_pem_path=private_path if private_path.is_file() else None,
            label=str(meta.get("label") or ""),
        )

    def list_keys(self) -> List[KeyRecord]:
        """All records, in index order when an index exists."""
        if not self.root.is_dir():
            return []
        index = self._read_index()
        if index is not None:
            dirs = [self.root / key_id for key_id in index]
        else:
            dirs = sorted(p.parent for p in self.root.glob(f"*/{PUBLIC_FILENAME}"))
        out: List[KeyRecord] = []
        for d in dirs:
            rec = self._record_from_dir(d)
            if rec is not None:
                out.append(rec)
        return out
