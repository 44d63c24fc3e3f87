import os
from typing import Optional

_MODULES = {
    "prod": "config.production",
    "production": "config.production",
    "test": "config.testing",
    "testing": "config.testing",
}


def get_settings_module(env: Optional[str] = None) -> str:
    """Settings module for `env` (default: APP_ENV); unknown names mean development."""

    name = (env or os.getenv("APP_ENV") or "development").strip().lower()
    return _MODULES.get(name, "config.development")
