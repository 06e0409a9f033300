import json
import logging

from filetracker.logging_config import ContextualFormatter, JSONFormatter, set_user_id


def _record(msg="Request approved", exc_info=None):
    return logging.LogRecord("filetracker.services.requests", logging.INFO, __file__, 10, msg, None, exc_info)


def test_json_formatter_includes_caller():
    set_user_id("uid-42")
    try:
        payload = json.loads(JSONFormatter().format(_record()))
    finally:
        set_user_id("")
    assert payload["message"] == "Request approved"
    assert payload["level"] == "INFO"
    assert payload["user_id"] == "uid-42"


def test_json_formatter_serializes_exceptions():
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        import sys

        record = _record("failed", sys.exc_info())
    payload = json.loads(JSONFormatter().format(record))
    assert payload["exception"]["type"] == "RuntimeError"


def test_contextual_formatter_marks_anonymous_calls():
    set_user_id("")
    line = ContextualFormatter("[%(user_id)s] %(message)s").format(_record())
    assert line == "[-] Request approved"
