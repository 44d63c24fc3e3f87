from __future__ import annotations

import importlib
import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from flask import Flask
from werkzeug.exceptions import RequestEntityTooLarge

from config import get_settings_module

from .attendance.controller import register as register_attendance
from .common.datetime_utils import parse_hhmm
from .common.http import fail
from .common.logging import setup_logging
from .container import Container, Settings, build_container
from .database.bootstrap import apply_schema, list_tables
from .imports.controller import register as register_imports
from .mapping.controller import register as register_mapping

logger = logging.getLogger(__name__)


def _settings_from(module) -> Settings:
    return Settings(
        school_start=parse_hhmm(str(getattr(module, "SCHOOL_START", "07:00"))),
        late_grace_minutes=int(getattr(module, "LATE_GRACE_MINUTES", 15)),
        suggestion_min_score=float(getattr(module, "SUGGESTION_MIN_SCORE", 50)),
        suggestion_max_candidates=int(getattr(module, "SUGGESTION_MAX_CANDIDATES", 5)),
    )


def create_app(container: Optional[Container] = None) -> Flask:
    load_dotenv(override=False)
    app = Flask(__name__)

    settings_module = get_settings_module()
    settings = importlib.import_module(settings_module)
    setup_logging(
        level=str(getattr(settings, "LOG_LEVEL", "INFO")),
        fmt=str(getattr(settings, "LOG_FORMAT", "text")),
    )

    db_config = getattr(settings, "DB_CONFIG")
    app.config["DEBUG"] = bool(getattr(settings, "DEBUG", False))
    app.config["TESTING"] = bool(getattr(settings, "TESTING", False))
    app.config["MAX_CONTENT_LENGTH"] = int(getattr(settings, "MAX_UPLOAD_MB", 10)) * 1024 * 1024

    if container is None:
        logger.info(
            "settings=%s db=%s@%s:%s/%s",
            settings_module,
            db_config.get("user"),
            db_config.get("host"),
            db_config.get("port", 3306),
            db_config.get("database"),
        )
        if bool(getattr(settings, "AUTO_INIT_DB", False)):
            schema_path = Path(__file__).resolve().parents[3] / "database" / "schema.sql"
            apply_schema(db_config, schema_path=schema_path)
            logger.info("Schema ready (tables=%s)", len(list_tables(db_config)))
        container = build_container(db_config=db_config, settings=_settings_from(settings))

    @app.errorhandler(RequestEntityTooLarge)
    def too_large(_e):
        return fail(f"File exceeds {getattr(settings, 'MAX_UPLOAD_MB', 10)} MB", 413)

    register_imports(app, container)
    register_mapping(app, container)
    register_attendance(app, container)

    return app
