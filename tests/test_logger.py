"""Tests for structured logging."""

import io
import json

import pytest

from ponyx.engine.component import compile_unit
from ponyx.utils.logger import (
    JsonFormatter,
    LogLevel,
    LogRecord,
    StreamHandler,
    TextFormatter,
    configure_logging,
    get_logger,
)


def lines(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


def test_stage_loggers_follow_the_root(counter_source):
    stream = io.StringIO()
    configure_logging(level="debug", format="json", stream=stream)

    compile_unit(counter_source, "Counter.ponyx")

    records = lines(stream)
    messages = [record["message"] for record in records]
    assert messages == [
        "Parsed unit",
        "Classified component",
        "Analyzed component",
        "Generated component",
        "Compiled unit",
    ]
    assert records[0]["logger"] == "ponyx.parser"
    assert records[-1]["level"] == "INFO"
    assert records[-1]["context"] == {"unit": "Counter.ponyx", "name": "Counter"}


def test_level_filters_stage_messages(counter_source):
    stream = io.StringIO()
    configure_logging(level=LogLevel.INFO, format="json", stream=stream)
    compile_unit(counter_source, "Counter.ponyx")
    assert [record["message"] for record in lines(stream)] == ["Compiled unit"]


def test_text_format():
    stream = io.StringIO()
    configure_logging(level="info", stream=stream, colors=False)
    get_logger("ponyx.test").info("Build finished", units=3, failed=0)
    assert stream.getvalue().rstrip().endswith("[INFO] test: Build finished units=3 failed=0")


def test_with_context():
    stream = io.StringIO()
    configure_logging(level="debug", format="json", stream=stream)
    logger = get_logger("ponyx.test").with_context(unit="A.ponyx")
    logger.warning("Careful", step=2)
    (record,) = lines(stream)
    assert record["context"] == {"unit": "A.ponyx", "step": 2}
    assert record["logger"] == "ponyx.test"


def test_child_level_override():
    stream = io.StringIO()
    configure_logging(level="warning", format="json", stream=stream)
    child = get_logger("ponyx.test.quiet", level=LogLevel.ERROR)
    try:
        child.warning("hidden")
        get_logger("ponyx.test").warning("shown")
    finally:
        child.level = None
    assert [record["message"] for record in lines(stream)] == ["shown"]


def test_error_records_exception():
    record = LogRecord(level=LogLevel.ERROR, message="failed", exception=ValueError("bad"))
    data = json.loads(JsonFormatter().format(record))
    assert data["exception"] == {"type": "ValueError", "message": "bad"}
    assert "ValueError: bad" in TextFormatter(colors=False).format(record)


def test_handler_level():
    stream = io.StringIO()
    handler = StreamHandler(stream=stream, formatter=JsonFormatter(), level=LogLevel.ERROR)
    handler.handle(LogRecord(level=LogLevel.INFO, message="quiet"))
    assert stream.getvalue() == ""


def test_unknown_format():
    with pytest.raises(ValueError):
        configure_logging(format="xml")


def test_unknown_level():
    with pytest.raises(ValueError):
        LogLevel.parse("loud")


def test_parse_level():
    assert LogLevel.parse("debug") is LogLevel.DEBUG
    assert LogLevel.parse(40) is LogLevel.ERROR


def test_timed_reports_elapsed_and_results():
    stream = io.StringIO()
    configure_logging(level="info", format="json", stream=stream)
    with get_logger("ponyx.test").timed("Build finished", units=2) as extra:
        extra["failed"] = 1
    (record,) = lines(stream)
    assert record["message"] == "Build finished"
    assert record["context"]["units"] == 2
    assert record["context"]["failed"] == 1
    assert record["context"]["elapsed_ms"] >= 0


def test_stage_name_in_text_output(counter_source):
    stream = io.StringIO()
    configure_logging(level="info", stream=stream, colors=False)
    compile_unit(counter_source, "Counter.ponyx")
    assert "[INFO] component: Compiled unit unit=Counter.ponyx name=Counter" in stream.getvalue()
