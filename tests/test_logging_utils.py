import logging
import uuid

import numpy as np

from src.logging_utils import (
    JsonFormatter,
    build_formatter,
    clear_log_context,
    get_logger,
    LoggingContextFilter,
    set_log_context,
    summarize_payload,
)


def _has_file_handler(logger: logging.Logger) -> bool:
    return any(isinstance(handler, logging.FileHandler) for handler in logger.handlers)


def _record() -> logging.LogRecord:
    return logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="test_path.py",
        lineno=12,
        msg="hello",
        args=(),
        exc_info=None,
        func="test_func",
    )


def test_get_logger_in_prod_has_no_file_handler(monkeypatch):
    monkeypatch.setenv("APP_ENV", "prod")
    logger_name = f"test_logger_prod_{uuid.uuid4().hex}"
    logger = get_logger(logger_name)
    assert not _has_file_handler(logger)


def test_get_logger_in_dev_has_file_handler(monkeypatch, tmp_path):
    monkeypatch.setenv("APP_ENV", "dev")
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    logger_name = f"test_logger_dev_{uuid.uuid4().hex}"
    logger = get_logger(logger_name)
    assert _has_file_handler(logger)
    assert (tmp_path / f"{logger_name}.log").exists()


def test_log_format_includes_context_fields(monkeypatch):
    monkeypatch.delenv("LOG_JSON", raising=False)
    monkeypatch.delenv("LOG_FORMAT", raising=False)
    formatter = build_formatter()
    record = _record()
    set_log_context(job_id="j1", phrase_id="j1-p0")
    try:
        LoggingContextFilter().filter(record)
    finally:
        clear_log_context()
    formatted = formatter.format(record)
    assert "job_id=j1" in formatted
    assert "phrase_id=j1-p0" in formatted


def test_json_format_includes_context_fields(monkeypatch):
    monkeypatch.setenv("LOG_FORMAT", "json")
    formatter = build_formatter()
    assert isinstance(formatter, JsonFormatter)
    record = _record()
    set_log_context(job_id="j1", phrase_id="j1-p3")
    try:
        LoggingContextFilter().filter(record)
    finally:
        clear_log_context()
    formatted = formatter.format(record)
    assert '"job_id": "j1"' in formatted
    assert '"phrase_id": "j1-p3"' in formatted


def test_cleared_context_uses_placeholders():
    set_log_context(job_id="j2")
    clear_log_context()
    record = _record()
    LoggingContextFilter().filter(record)
    assert record.job_id == "-"
    assert record.phrase_id == "-"


def test_summarize_payload_truncates_large_values():
    summary = summarize_payload(
        {"waveform": np.zeros(44100, dtype=np.float32), "notes": list(range(50)), "lyric": "a" * 500}
    )
    assert summary["waveform"] == {"__ndarray__": [44100], "dtype": "float32"}
    assert summary["notes"]["__len__"] == 50
    assert len(summary["notes"]["sample"]) == 5
    assert summary["lyric"].endswith("...(truncated)")


def test_prod_env_logs_propagate_to_stdout(caplog, monkeypatch):
    monkeypatch.setenv("APP_ENV", "prod")
    logger_name = f"test_logger_prod_emit_{uuid.uuid4().hex}"
    logger = get_logger(logger_name)
    assert not _has_file_handler(logger)
    assert logger.propagate is True

    caplog.set_level(logging.INFO)
    logger.info("prod_log_test")
    assert any(record.message == "prod_log_test" for record in caplog.records)
