"""Logging setup."""

import io
import json
import logging

from zkpip.observability import ROOT_LOGGER, LogEvent, configure_logging


def test_json_lines_carry_extra_fields():
    stream = io.StringIO()
    configure_logging(level="info", fmt="json", stream=stream)

    logging.getLogger("zkpip.codeseal").warning(
        "seal rejected: %s",
        "bad",
        extra={"operation": "seal.verify", "error_code": "URN_MISMATCH", "context": {"urn": "u"}},
    )

    line = json.loads(stream.getvalue().strip())
    assert line["level"] == "warning"
    assert line["logger"] == "zkpip.codeseal"
    assert line["message"] == "seal rejected: bad"
    assert line["operation"] == "seal.verify"
    assert line["error_code"] == "URN_MISMATCH"
    assert line["context"] == {"urn": "u"}


def test_level_filters_records():
    stream = io.StringIO()
    configure_logging(level="warning", fmt="json", stream=stream)
    logging.getLogger("zkpip.batch").info("quiet")
    assert stream.getvalue() == ""


def test_exception_is_serialized():
    stream = io.StringIO()
    configure_logging(level="debug", fmt="json", stream=stream)
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        logging.getLogger("zkpip.adapters").warning("adapter raised", exc_info=True)

    line = json.loads(stream.getvalue().strip())
    assert "RuntimeError: boom" in line["exception"]


def test_text_format_and_handler_replacement():
    first, second = io.StringIO(), io.StringIO()
    configure_logging(level="info", stream=first)
    logger = configure_logging(level="info", stream=second)

    logging.getLogger("zkpip.keystore").info("generated key")

    assert first.getvalue() == ""
    assert second.getvalue() == "INFO zkpip.keystore: generated key\n"
    assert logger.name == ROOT_LOGGER
    assert sum(1 for h in logger.handlers if getattr(h, "_zkpip_managed", False)) == 1


def test_log_event_drops_empty_fields():
    ev = LogEvent(timestamp="t", level="info", logger="zkpip", message="m")
    assert ev.to_dict() == {"timestamp": "t", "level": "info", "logger": "zkpip", "message": "m"}
