"""
ZKPIP logging setup.

Modules log through ``logging.getLogger(__name__)``; everything lives under
the ``zkpip`` logger. `configure_logging` attaches either a JSON-lines
handler (one object per record) or a plain text handler.

Structured fields are passed through ``extra``::

    logger.warning("seal rejected", extra={"error_code": "URN_MISMATCH",
                                           "context": {"urn": urn}})
"""

from __future__ import annotations

import json
import logging
import sys
import traceback
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO

ROOT_LOGGER = "zkpip"

_TEXT_FORMAT = "%(levelname)s %(name)s: %(message)s"


@dataclass
class LogEvent:
    """Structured log event."""
    timestamp: str
    level: str
    logger: str
    message: str
    operation: str = ""
    error_code: str = ""
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding empty values."""
        d = asdict(self)
        return {k: v for k, v in d.items() if v is not None and v != "" and v != {}}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str, sort_keys=True)


class StructuredHandler(logging.Handler):
    """Logging handler that outputs structured JSON."""

    def __init__(self, stream: Optional[TextIO] = None):
        super().__init__()
        self.stream = stream or sys.stderr

    def emit(self, record: logging.LogRecord) -> None:
        try:
            event = LogEvent(
                timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                level=record.levelname.lower(),
                logger=record.name,
                message=record.getMessage(),
                operation=getattr(record, "operation", ""),
                error_code=getattr(record, "error_code", ""),
                context=getattr(record, "context", {}),
            )

            if record.exc_info:
                event.exception = "".join(traceback.format_exception(*record.exc_info))

            self.stream.write(event.to_json() + "\n")
            self.stream.flush()
        except Exception:
            self.handleError(record)


def configure_logging(
    level: str = "warning",
    fmt: str = "text",
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """Attach a single handler to the ``zkpip`` logger.

    Calling again replaces the handler installed by a previous call.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper()))

    for h in list(logger.handlers):
        if getattr(h, "_zkpip_managed", False):
            logger.removeHandler(h)

    if fmt == "json":
        handler: logging.Handler = StructuredHandler(stream)
    else:
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))
    handler._zkpip_managed = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    return logger
