import importlib
import os
from types import ModuleType
from typing import Optional


def get_settings_module() -> str:
    # APP_ENV selects the settings module, 'development' by default.
    env = os.getenv("APP_ENV", "development").lower()

    if env in {"prod", "production"}:
        return "dance_school.config.production"

    if env in {"test", "testing"}:
        return "dance_school.config.testing"

    return "dance_school.config.development"


def load_settings(module_name: Optional[str] = None) -> ModuleType:
    return importlib.import_module(module_name or get_settings_module())
