import json
import logging

from oidc_federation.main.logging import ContextJSONFormatter, SimpleLogger
from oidc_federation.main.request_context import clear_request_context, set_request_context


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        "oidc_federation.test", logging.INFO, __file__, 1, "Issuer selected", None, None
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_line_carries_request_context_and_extras():
    set_request_context(correlation_id="c-1", session="abc123", phase="resolved")
    try:
        line = json.loads(
            ContextJSONFormatter().format(_record(issuer="https://idp.example.org", empty=None))
        )
    finally:
        clear_request_context()

    assert line["message"] == "Issuer selected"
    assert line["level"] == "info"
    assert line["correlation_id"] == "c-1"
    assert line["session"] == "abc123"
    assert line["phase"] == "resolved"
    assert line["issuer"] == "https://idp.example.org"
    assert "empty" not in line
    assert "lineno" not in line


def test_simple_logger_has_a_single_handler_at_its_level():
    logger = SimpleLogger(name="oidc_federation.single", level=logging.INFO)

    assert len(logger.handlers) == 1
    assert logger.handlers[0].level == logging.INFO
