import os
from typing import Literal

from pydantic import BaseModel, Field, ValidationError

from config import YamlConfig

ENV_OVERRIDES = {
    "GYM_PLANNER_DB": "db_path",
    "LOG_LEVEL": "log_level",
    "APP_ENV": "app_env",
}


class SettingsSchema(BaseModel):
    db_path: str = "workout.db"
    legacy_store_path: str | None = None
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    app_env: str = "local"
    default_icon_code_point: int = Field(0xE28D, ge=0)
    seed_default_exercises: bool = True
    calendar_range_days: int = Field(42, ge=1, le=366)


def validate_settings(data: dict) -> SettingsSchema:
    try:
        return SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))


def load_settings(path: str = "settings.yaml") -> SettingsSchema:
    """Defaults, then the YAML file, then environment variables."""
    data = YamlConfig(path).load()
    for env, key in ENV_OVERRIDES.items():
        value = os.environ.get(env)
        if value:
            data[key] = value.upper() if key == "log_level" else value
    return validate_settings(data)
