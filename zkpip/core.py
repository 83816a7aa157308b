"""Core primitives for ZKPIP.

This module provides the foundational utilities used throughout the package:
- Cryptographic hashing (SHA-256)
- YAML/JSON loading with consistent encoding
- Atomic JSON writes for shared on-disk stores
- Timestamps that honour SOURCE_DATE_EPOCH

Design principles:
- Pure functions where possible
- No global mutable state
- Filesystem errors propagate to the caller
"""

from __future__ import annotations

import hashlib
import json
import os
import pathlib
from datetime import datetime, timezone
from typing import Any, Optional

import yaml

# Package root, computed once at module load
PACKAGE_ROOT = pathlib.Path(__file__).resolve().parent


def sha256_bytes(data: bytes) -> str:
    """Compute SHA-256 hash of bytes, returning lowercase hex string."""
    return hashlib.sha256(data).hexdigest()


def load_yaml(path: pathlib.Path) -> Any:
    """Load YAML file with UTF-8 encoding."""
    return yaml.safe_load(pathlib.Path(path).read_text(encoding="utf-8"))


def load_json(path: pathlib.Path) -> Any:
    """Load JSON file with UTF-8 encoding."""
    return json.loads(pathlib.Path(path).read_text(encoding="utf-8"))


def write_json_atomic(path: pathlib.Path, obj: Any, *, indent: Optional[int] = 2) -> None:
    """Write pretty JSON via a temp file + rename.

    Readers never observe a half-written file. Concurrent writers still race
    (last rename wins).
    """
    p = pathlib.Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    tmp = p.with_name(f"{p.name}.tmp-{os.getpid()}")
    try:
        tmp.write_text(json.dumps(obj, indent=indent, ensure_ascii=False) + "\n", encoding="utf-8")
        os.replace(tmp, p)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise


def now_iso8601() -> str:
    """Current UTC time as ISO8601 with a Z suffix.

    For deterministic builds set `SOURCE_DATE_EPOCH` (seconds since Unix epoch).
    """
    sde = os.environ.get("SOURCE_DATE_EPOCH")
    if sde is not None and str(sde).strip() != "":
        try:
            epoch = int(str(sde).strip(), 10)
        except ValueError as ex:
            raise ValueError("SOURCE_DATE_EPOCH must be an integer (seconds)") from ex
        dt = datetime.fromtimestamp(epoch, tz=timezone.utc)
    else:
        dt = datetime.now(timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")
