from __future__ import annotations

import logging
import logging.config

from pythonjsonlogger.json import JsonFormatter

from src.attendance_pipeline.attendance_pipeline.common.logging import build_logging_config


def test_json_format_uses_current_formatter_module():
    config = build_logging_config(level="debug", fmt="json")

    assert config["formatters"]["json"]["()"] == "pythonjsonlogger.json.JsonFormatter"
    assert config["handlers"]["console"]["formatter"] == "json"
    assert config["root"]["level"] == "DEBUG"


def test_json_config_builds_a_json_formatter():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        logging.config.dictConfig(build_logging_config(fmt="json"))
        assert isinstance(root.handlers[0].formatter, JsonFormatter)
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)


def test_text_format_is_the_default():
    config = build_logging_config()

    assert config["handlers"]["console"]["formatter"] == "standard"
