"""Process exit codes.

Stable contract for scripts calling the CLI:

    0  ok
    1  verification failed / generic adapter failure
    2  I/O error (including a public key that cannot be found)
    3  schema invalid (including an unsupported seal algorithm)
    4  adapter not found

An explicit ``io``, ``schema`` or ``adapter`` stage outranks the error code.
"""

from __future__ import annotations

import sys
from enum import IntEnum
from typing import Any, Mapping, Optional

from zkpip.batch import BatchResult
from zkpip.codeseal import SealCheck
from zkpip.config import ConfigManager
from zkpip.errors import ErrorKind, Stage, VerifyOutcome


class ExitCode(IntEnum):
    OK = 0
    VERIFICATION_FAILED = 1
    IO_ERROR = 2
    SCHEMA_INVALID = 3
    ADAPTER_NOT_FOUND = 4


_BY_STAGE = {
    Stage.IO.value: ExitCode.IO_ERROR,
    Stage.SCHEMA.value: ExitCode.SCHEMA_INVALID,
    Stage.ADAPTER.value: ExitCode.ADAPTER_NOT_FOUND,
}

_BY_CODE = {
    ErrorKind.ADAPTER_NOT_FOUND.value: ExitCode.ADAPTER_NOT_FOUND,
    ErrorKind.IO_ERROR.value: ExitCode.IO_ERROR,
    ErrorKind.SCHEMA_INVALID.value: ExitCode.SCHEMA_INVALID,
    ErrorKind.PUBLIC_KEY_NOT_FOUND.value: ExitCode.IO_ERROR,
    ErrorKind.ALGO_UNSUPPORTED.value: ExitCode.SCHEMA_INVALID,
}


def _value(x: Any) -> Optional[str]:
    if x is None:
        return None
    if isinstance(x, (ErrorKind, Stage)):
        return x.value
    return str(x)


def _map_fields(ok: bool, code: Any, stage: Any) -> ExitCode:
    if ok:
        return ExitCode.OK
    stage_v = _value(stage)
    if stage_v in _BY_STAGE:
        return _BY_STAGE[stage_v]
    return _BY_CODE.get(_value(code) or "", ExitCode.VERIFICATION_FAILED)


def map_outcome(outcome: Any) -> ExitCode:
    """Exit code for any result the package produces.

    Accepts `VerifyOutcome`, `SealCheck`, `BatchResult`, or a mapping with
    ``ok`` and ``code``/``error``/``stage`` keys. A failed batch maps to the
    code of its first failing item.
    """
    if isinstance(outcome, VerifyOutcome):
        return _map_fields(outcome.ok, outcome.code, outcome.stage)
    if isinstance(outcome, SealCheck):
        return _map_fields(outcome.ok, outcome.reason, None)
    if isinstance(outcome, BatchResult):
        for r in outcome.results:
            if not r.ok:
                return map_outcome(r)
        return ExitCode.OK if outcome.failed == 0 else ExitCode.VERIFICATION_FAILED
    if isinstance(outcome, Mapping):
        code = outcome.get("code", outcome.get("error"))
        return _map_fields(outcome.get("ok") is True, code, outcome.get("stage"))
    raise TypeError(f"cannot map {type(outcome).__name__} to an exit code")


def finalize(code: int, config: Optional[ConfigManager] = None) -> int:
    """Return `code`, or exit the process with it when hard exit is enabled.

    Hard exit is ``runtime.hard_exit`` (``ZKPIP_HARD_EXIT=1``); only non-zero
    codes exit.
    """
    config = config or ConfigManager()
    code = int(code)
    if code != 0 and config.get("runtime.hard_exit"):
        sys.exit(code)
    return code
