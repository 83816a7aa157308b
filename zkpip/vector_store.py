"""Local vector store and remote vector pulls.

`DiskStore` keeps one JSON file per content-addressed id. `pull_vector`
downloads a vector through a fetcher callable; the default uses
``urllib.request``. Source URIs are checked before anything is fetched:

- ``https://`` always
- ``http://`` only when explicitly allowed
- ``file:///absolute/path`` with no host and no ``.``/``..`` segments,
  encoded or not
"""

from __future__ import annotations

import logging
import pathlib
import re
import urllib.error
import urllib.parse
import urllib.request
from typing import Callable, Optional, Union

from zkpip.canonical import urn_to_hex
from zkpip.core import sha256_bytes
from zkpip.errors import PullGuardError, VectorIOError

logger = logging.getLogger(__name__)

DEFAULT_PULL_BASE_URL = "https://cdn.zkpip.org/canvectors/sha256/"
DEFAULT_FETCH_TIMEOUT = 30

_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9:._-]")

Fetcher = Callable[[str], bytes]


def safe_filename(vector_id: str) -> str:
    return _UNSAFE_ID_CHARS.sub("_", vector_id) + ".json"


class DiskStore:
    """One ``<sanitised id>.json`` file per vector under `base_dir`."""

    def __init__(self, base_dir: Union[str, pathlib.Path]):
        self.base_dir = pathlib.Path(base_dir).expanduser()

    def path_for(self, vector_id: str) -> pathlib.Path:
        return self.base_dir / safe_filename(vector_id)

    def put_vector(self, vector_id: str, content: str) -> pathlib.Path:
        p = self.path_for(vector_id)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        p.write_text(content, encoding="utf-8")
        logger.debug("stored vector %s at %s", vector_id, p)
        return p

    def get_vector(self, vector_id: str) -> Optional[str]:
        p = self.path_for(vector_id)
        if not p.is_file():
            return None
        return p.read_text(encoding="utf-8")


# ---------------------------------------------------------------------------
# Pull guards
# ---------------------------------------------------------------------------

_RAW_TRAVERSAL_MARKERS = ("/../", "/./", "%2e%2e", "%2e/", "/%2e")


def normalize_source_uri(raw: str, allow_http: bool = False) -> str:
    """Return `raw` if it is an acceptable pull source.

    Raises:
        PullGuardError: with one of the codes
            ZK_CLI_ERR_PATH_TRAVERSAL, ZK_CLI_ERR_HTTP_DISABLED,
            ZK_CLI_ERR_FILE_HOST, ZK_CLI_ERR_FILE_RELATIVE,
            ZK_CLI_ERR_PROTOCOL
    """
    if raw.startswith("file://"):
        lower = raw.lower()
        if any(m in lower for m in _RAW_TRAVERSAL_MARKERS) or lower.endswith(("/..", "/.")):
            raise PullGuardError("ZK_CLI_ERR_PATH_TRAVERSAL", "Path traversal is not allowed.")

    parsed = urllib.parse.urlsplit(raw)
    scheme = parsed.scheme.lower()

    if scheme == "http":
        if not allow_http:
            raise PullGuardError("ZK_CLI_ERR_HTTP_DISABLED", "HTTP is disabled. Use --allow-http to enable.")
        return raw
    if scheme == "https":
        return raw

    if scheme == "file":
        if parsed.netloc:
            raise PullGuardError(
                "ZK_CLI_ERR_FILE_HOST", "file:// must not include a host; use file:///absolute/path"
            )
        if not parsed.path.startswith("/"):
            raise PullGuardError(
                "ZK_CLI_ERR_FILE_RELATIVE", "file:// must use an absolute path (file:///absolute/path)"
            )
        decoded = urllib.parse.unquote(parsed.path)
        if any(seg in (".", "..") for seg in decoded.split("/")):
            raise PullGuardError("ZK_CLI_ERR_PATH_TRAVERSAL", "Path traversal is not allowed.")
        return raw

    raise PullGuardError("ZK_CLI_ERR_PROTOCOL", f"Unsupported protocol: {scheme or raw!r}")


def resolve_url_from_id(vector_urn: str, base_url: str = DEFAULT_PULL_BASE_URL) -> str:
    """Map a vector URN to its download URL under `base_url`."""
    hex_digest = urn_to_hex(vector_urn)
    return f"{base_url.rstrip('/')}/{hex_digest}/proof-envelope.json"


def urllib_fetcher(timeout: float = DEFAULT_FETCH_TIMEOUT) -> Fetcher:
    """Fetcher backed by ``urllib.request.urlopen``."""

    def fetch(uri: str) -> bytes:
        with urllib.request.urlopen(uri, timeout=timeout) as resp:
            return resp.read()

    return fetch


def pull_vector(
    source: str,
    out_path: Union[str, pathlib.Path],
    fetcher: Optional[Fetcher] = None,
    allow_http: bool = False,
) -> str:
    """Fetch `source` into `out_path` and return the sha256 of the bytes.

    Raises:
        PullGuardError: `source` rejected before fetching
        VectorIOError: the fetch or the write failed
    """
    uri = normalize_source_uri(source, allow_http=allow_http)
    fetch = fetcher or urllib_fetcher()
    try:
        data = fetch(uri)
    except (OSError, urllib.error.URLError, ValueError) as ex:
        raise VectorIOError(f"fetch failed for {uri}: {ex}") from ex

    out = pathlib.Path(out_path)
    try:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_bytes(data)
    except OSError as ex:
        raise VectorIOError(f"cannot write {out}: {ex}") from ex

    digest_hex = sha256_bytes(data)
    logger.info(
        "pulled %s (%d bytes)",
        uri,
        len(data),
        extra={"operation": "vectors.pull", "context": {"sha256": digest_hex, "out": str(out)}},
    )
    return digest_hex
