import json
import logging
import sys

from carenote_workers.logging import JSONFormatter, setup_logging


def _record(**extra):
    record = logging.LogRecord("carenote_workers.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_prefixed_extras():
    line = JSONFormatter().format(_record(carenote_user_id="u1", other="dropped"))
    entry = json.loads(line)

    assert entry["message"] == "hello world"
    assert entry["level"] == "INFO"
    assert entry["carenote_user_id"] == "u1"
    assert "other" not in entry


def test_json_formatter_includes_exception():
    record = _record()
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record.exc_info = sys.exc_info()

    entry = json.loads(JSONFormatter().format(record))
    assert "RuntimeError: boom" in entry["exception"]


def test_setup_logging_replaces_handlers():
    root = logging.getLogger()
    saved = root.handlers[:]
    saved_level = root.level
    try:
        setup_logging("json")
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)

        setup_logging("text")
        assert len(root.handlers) == 1
        assert not isinstance(root.handlers[0].formatter, JSONFormatter)
    finally:
        root.handlers[:] = saved
        root.setLevel(saved_level)
