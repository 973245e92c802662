from __future__ import annotations

import logging
from contextlib import contextmanager

import pytest
from loguru import logger

from barsim import __version__
from barsim.logging_utils import logging_context, setup_logging, setup_test_logging
from barsim.settings import LoggingSettings


@pytest.fixture(autouse=True)
def _reset_logging():
    setup_logging(force=True, level="INFO")
    yield
    setup_logging(force=True, level="INFO")


@contextmanager
def capture_records(level=logging.INFO):
    records = []

    class ListHandler(logging.Handler):
        def emit(self, record):
            records.append(record)

    handler = ListHandler()
    handler.setLevel(level)
    root = logging.getLogger()
    prev_level = root.level
    root.setLevel(level)
    root.addHandler(handler)
    try:
        yield records
    finally:
        root.removeHandler(handler)
        root.setLevel(prev_level)


def test_setup_logging_attaches_metadata(monkeypatch):
    monkeypatch.setenv("ENV", "staging")

    setup_logging(force=True, level="INFO")

    with capture_records() as records:
        logger.info("hello world")

    record = records[-1]
    assert record.environment == "staging"
    assert record.service_version == __version__
    assert record.run_id == "-"
    assert record.job_id == "-"


def test_logging_context_sets_run_and_job():
    with capture_records() as records:
        with logging_context(run_id="run-1", job_id="7"):
            logger.info("inside")
        logger.info("outside")

    inside, outside = records[-2], records[-1]
    assert (inside.run_id, inside.job_id) == ("run-1", "7")
    assert (outside.run_id, outside.job_id) == ("-", "-")


def test_setup_test_logging_writes_file(tmp_path):
    setup_test_logging(tmp_path, level="DEBUG")
    logger.debug("to file")
    text = (tmp_path / "pytest.log").read_text()
    assert "to file" in text


def test_setup_logging_reads_level_and_file_from_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("LOG_LEVEL", "warning")
    monkeypatch.setenv("LOG_FILE", str(tmp_path / "logs" / "run.log"))

    setup_logging(force=True)

    with capture_records(level=logging.DEBUG) as records:
        logger.info("dropped")
        logger.warning("kept")

    assert [r.getMessage() for r in records] == ["kept"]
    text = (tmp_path / "logs" / "run.log").read_text()
    assert "kept" in text and "dropped" not in text


def test_explicit_level_and_settings_override_environment(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "ERROR")
    setup_logging(force=True, level="info", settings=LoggingSettings(ENV="ci"))

    with capture_records() as records:
        logger.info("visible")

    assert records[-1].getMessage() == "visible"
    assert records[-1].environment == "ci"
