import logging

from core.types import Severity
from utils.logger import (
    MAIN_LOGGER_NAME,
    DiagnosticLog,
    get_logger,
    setup_logging,
    teardown_logging,
)


def test_get_logger_is_cached_and_not_propagating() -> None:
    a = get_logger("barcache.test.cached")
    b = get_logger("barcache.test.cached")
    assert a is b
    assert a.propagate is False


def test_diagnostic_log_keeps_bounded_tail() -> None:
    diag = DiagnosticLog("barcache.test.tail", max_records=2)
    diag.log("one")
    diag.log("two", Severity.WARNING)
    diag.log("three", Severity.ERROR, surface_to_main=True)

    records = diag.recent()
    assert [r.message for r in records] == ["two", "three"]
    assert records[-1].surfaced is True
    assert [r.message for r in diag.recent(Severity.WARNING)] == ["two"]

    diag.clear()
    assert diag.recent() == []


def test_surfaced_messages_reach_main_logger() -> None:
    seen: list[str] = []

    class _Collect(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            seen.append(record.getMessage())

    main = get_logger(MAIN_LOGGER_NAME)
    handler = _Collect()
    main.addHandler(handler)
    try:
        diag = DiagnosticLog("barcache.test.surface")
        diag.log("quiet", Severity.WARNING)
        diag.log("loud", Severity.WARNING, surface_to_main=True)
    finally:
        main.removeHandler(handler)

    assert seen == ["[barcache.test.surface] loud"]


def test_setup_logging_writes_file(tmp_path) -> None:
    try:
        setup_logging(tmp_path, "DEBUG")
        logger = get_logger("barcache.test.file")
        logger.info("to file")
        for handler in logger.handlers:
            handler.flush()
        files = list(tmp_path.glob("barcache_*.log"))
        assert files
        assert "to file" in files[0].read_text(encoding="utf-8")
    finally:
        teardown_logging()
