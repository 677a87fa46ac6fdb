"""Tests for loguru sink helpers."""

from loguru import logger

from lspharness.cli.shared import logging_utils


def test_rotating_log_file_added_once(tmp_path, monkeypatch):
    monkeypatch.setattr(logging_utils, "_SINK_IDS", {})
    first = logging_utils.ensure_rotating_log_file("settle", log_dir=tmp_path)
    second = logging_utils.ensure_rotating_log_file("settle", log_dir=tmp_path)
    assert first == second == tmp_path / "settle.log"
    assert list(logging_utils._SINK_IDS) == ["settle"]
    logger.remove(logging_utils._SINK_IDS["settle"])
