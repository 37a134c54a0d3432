import json
import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from shared import config


@pytest.mark.parametrize("json_format", [False, True])
def test_configure_logging_writes_daily_rate_log(tmp_path, monkeypatch, restore_root_logger, json_format):
    monkeypatch.setattr(config.settings, "LOG_DIR", str(tmp_path))
    root_logger = logging.getLogger()

    config.configure_logging(level="INFO", json_format=json_format)

    file_handlers = [
        handler for handler in root_logger.handlers if isinstance(handler, config.DailyTimedRotatingFileHandler)
    ]
    assert len(file_handlers) == 1
    log_file = Path(file_handlers[0].baseFilename)
    assert log_file.parent == tmp_path
    assert log_file.name == f"rates_{datetime.now().strftime('%Y-%m-%d')}.log"

    logging.getLogger("services.rate_cache").info("cache populated")
    for handler in root_logger.handlers:
        handler.flush()

    last_line = log_file.read_text(encoding="utf-8").strip().splitlines()[-1]
    if json_format:
        record = json.loads(last_line)
        assert record["message"] == "cache populated"
        assert record["level"] == "INFO"
        assert record["name"] == "services.rate_cache"
    else:
        assert " - INFO - services.rate_cache - cache populated" in last_line


def test_configure_logging_quiets_urllib3(tmp_path, monkeypatch, restore_root_logger):
    monkeypatch.setattr(config.settings, "LOG_DIR", str(tmp_path))

    config.configure_logging(level="DEBUG", json_format=False)

    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("urllib3").level == logging.WARNING


def test_configure_logging_falls_back_to_info(tmp_path, monkeypatch, restore_root_logger):
    monkeypatch.setattr(config.settings, "LOG_DIR", str(tmp_path))
    monkeypatch.setattr(config.settings, "LOG_FORMAT", "yaml")

    config.configure_logging(level="chatty")

    root_logger = logging.getLogger()
    assert root_logger.level == logging.INFO
    assert not any(isinstance(h.formatter, config.JsonFormatter) for h in root_logger.handlers)


def test_json_formatter_includes_exception():
    formatter = config.JsonFormatter()
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = logging.LogRecord("rates", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())

    payload = json.loads(formatter.format(record))
    assert payload["message"] == "failed"
    assert "RuntimeError: boom" in payload["exc_info"]


def test_prune_old_logs_keeps_retention_window(tmp_path):
    today = datetime.now().date()
    old = tmp_path / f"rates_{(today - timedelta(days=10)).isoformat()}.log"
    recent = tmp_path / f"rates_{(today - timedelta(days=1)).isoformat()}.log"
    unrelated = tmp_path / "notes.log"
    for path in (old, recent, unrelated):
        path.write_text("x", encoding="utf-8")

    config.prune_old_logs(tmp_path, retention_days=3)

    assert not old.exists()
    assert recent.exists()
    assert unrelated.exists()


def test_prune_old_logs_spares_current_file(tmp_path):
    current = tmp_path / f"rates_{(datetime.now().date() - timedelta(days=30)).isoformat()}.log"
    current.write_text("x", encoding="utf-8")

    config.prune_old_logs(tmp_path, retention_days=1, current_file=str(current))

    assert current.exists()
