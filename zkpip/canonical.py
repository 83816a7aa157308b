"""Canonical JSON codec and content addressing.

Canonical form:
- object keys sorted by code point, recursively
- arrays keep their order
- no insignificant whitespace, UTF-8, non-ASCII left unescaped
- numbers rendered with the ECMAScript Number-to-String rule, so a digest
  computed here matches one computed over JSON.stringify output
- NaN and +/-Infinity render as ``null``

Anything that is not a JSON value (sets, bytes, Decimal, arbitrary objects,
non-string keys, self-referencing containers) raises
`CanonicalizationError` naming the offending position. Nothing is coerced.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, List, Mapping, Set

from zkpip.core import sha256_bytes
from zkpip.errors import CanonicalizationError

VECTOR_URN_PREFIX = "urn:zkpip:vector:sha256:"

_VECTOR_URN_RE = re.compile(r"^urn:zkpip:vector:sha256:([a-f0-9]{64})$")
_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class CanonicalDigest:
    """SHA-256 over the canonical UTF-8 bytes of a JSON value."""

    alg: str
    hex: str

    def to_urn(self) -> str:
        return to_vector_urn(self.hex)

    def to_dict(self) -> dict:
        return {"alg": self.alg, "hex": self.hex}


def _child_path(path: str, key: str) -> str:
    if _IDENT_RE.match(key):
        return f"{path}.{key}"
    return f"{path}[{json.dumps(key, ensure_ascii=False)}]"


def format_number(x: float) -> str:
    """Render a float the way ECMAScript Number::toString does.

    Python's repr already yields the shortest round-tripping digits; only the
    layout (exponent thresholds, no trailing ``.0``) differs.
    """
    if math.isnan(x) or math.isinf(x):
        return "null"
    if x == 0:
        return "0"

    sign = "-" if x < 0 else ""
    tup = Decimal(repr(abs(x))).as_tuple()
    digits = list(tup.digits)
    exponent = int(tup.exponent)
    while len(digits) > 1 and digits[-1] == 0:
        digits.pop()
        exponent += 1

    s = "".join(str(d) for d in digits)
    k = len(s)
    n = exponent + k

    if k <= n <= 21:
        out = s + "0" * (n - k)
    elif 0 < n <= 21:
        out = s[:n] + "." + s[n:]
    elif -6 < n <= 0:
        out = "0." + "0" * (-n) + s
    else:
        e = n - 1
        exp = f"e{'+' if e >= 0 else '-'}{abs(e)}"
        out = (s + exp) if k == 1 else (s[0] + "." + s[1:] + exp)
    return sign + out


def _quote(text: str, path: str) -> str:
    # lone surrogates have no UTF-8 encoding
    try:
        text.encode("utf-8")
    except UnicodeEncodeError as ex:
        raise CanonicalizationError(
            "INVALID_STRING", path, f"unencodable character at offset {ex.start}"
        ) from ex
    return json.dumps(text, ensure_ascii=False)


def _emit(value: Any, path: str, out: List[str], active: Set[int]) -> None:
    if value is None:
        out.append("null")
        return
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        out.append("true" if value else "false")
        return
    if isinstance(value, int):
        out.append(str(value))
        return
    if isinstance(value, float):
        out.append(format_number(value))
        return
    if isinstance(value, str):
        out.append(_quote(value, path))
        return

    if isinstance(value, Mapping):
        marker = id(value)
        if marker in active:
            raise CanonicalizationError("CYCLE_NOT_SUPPORTED", path)
        active.add(marker)
        for k in value.keys():
            if not isinstance(k, str):
                raise CanonicalizationError(
                    "UNSUPPORTED_KEY_TYPE", path, f"key {k!r} is {type(k).__name__}, expected str"
                )
        out.append("{")
        for i, k in enumerate(sorted(value.keys())):
            if i:
                out.append(",")
            out.append(_quote(k, path))
            out.append(":")
            _emit(value[k], _child_path(path, k), out, active)
        out.append("}")
        active.discard(marker)
        return

    if isinstance(value, (list, tuple)):
        marker = id(value)
        if marker in active:
            raise CanonicalizationError("CYCLE_NOT_SUPPORTED", path)
        active.add(marker)
        out.append("[")
        for i, item in enumerate(value):
            if i:
                out.append(",")
            _emit(item, f"{path}[{i}]", out, active)
        out.append("]")
        active.discard(marker)
        return

    raise CanonicalizationError("UNSUPPORTED_TYPE", path, type(value).__name__)


def canonicalize(value: Any) -> str:
    """Deterministic canonical serialization of a JSON value."""
    out: List[str] = []
    _emit(value, "$", out, set())
    return "".join(out)


def canonical_bytes(value: Any) -> bytes:
    """UTF-8 bytes of `canonicalize(value)`; the input to hashing and signing."""
    return canonicalize(value).encode("utf-8")


def sha256_hex(text: str) -> str:
    """Hex SHA-256 of a string's UTF-8 bytes."""
    return sha256_bytes(text.encode("utf-8"))


def digest(value: Any) -> CanonicalDigest:
    return CanonicalDigest(alg="sha256", hex=sha256_bytes(canonical_bytes(value)))


def to_vector_urn(hex_digest: str) -> str:
    return f"{VECTOR_URN_PREFIX}{hex_digest}"


def is_vector_urn(value: Any) -> bool:
    return isinstance(value, str) and bool(_VECTOR_URN_RE.match(value))


def urn_to_hex(urn: str) -> str:
    """Extract the hex digest from a vector URN."""
    m = _VECTOR_URN_RE.match(urn or "")
    if not m:
        raise ValueError(f"not a vector URN: {urn!r}")
    return m.group(1)


def is_json(value: Any) -> bool:
    """True when `value` canonicalizes without error."""
    try:
        canonicalize(value)
    except (CanonicalizationError, RecursionError):
        return False
    return True
