import json
import logging
from pathlib import Path

import pytest

from osm.config import EngineSettings, get_app_paths, get_engine_settings
from osm.logging_config import JsonFormatter


def test_engine_settings_defaults(monkeypatch):
    for name in ("OSM_BUSY_TIMEOUT_MS", "OSM_CURRENCY"):
        monkeypatch.delenv(name, raising=False)
    assert get_engine_settings() == EngineSettings()


def test_engine_settings_from_environment(monkeypatch):
    monkeypatch.setenv("OSM_BUSY_TIMEOUT_MS", "1500")
    monkeypatch.setenv("OSM_CURRENCY", "eur")
    settings = get_engine_settings()
    assert settings.busy_timeout_ms == 1500
    assert settings.currency == "EUR"
    assert settings.invoice_prefix == "FACT"


def test_bad_timeout_is_rejected(monkeypatch):
    monkeypatch.setenv("OSM_BUSY_TIMEOUT_MS", "soon")
    with pytest.raises(ValueError, match="OSM_BUSY_TIMEOUT_MS"):
        get_engine_settings()


def test_db_path_override(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("APPDATA", str(tmp_path))
    monkeypatch.setenv("OSM_DB_PATH", str(tmp_path / "custom.db"))
    paths = get_app_paths()
    assert paths.db_path == tmp_path / "custom.db"
    assert paths.logs_dir.is_dir()


def test_json_formatter_extracts_event_name():
    record = logging.LogRecord("osm.sales", logging.INFO, __file__, 1, "sale_created sale_id=%s", (4,), None)
    payload = json.loads(JsonFormatter().format(record))
    assert payload["event"] == "sale_created"
    assert payload["message"] == "sale_created sale_id=4"
    assert payload["logger"] == "osm.sales"
