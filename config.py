"""taskloop settings, persisted as config.json beside the code."""
from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field

CONFIG_PATH = Path(__file__).resolve().parent / "config.json"


class AppConfig(BaseModel):
    debug: bool = Field(default=False, description="Log every API request and response status")
    web_ui_port: int = Field(default=8081, ge=1, le=65535, description="Port for the HTTP API")
    database_path: str = Field(default="", description="SQLite file; empty = taskloop.db in the project dir")
    user_timezone: str = Field(default="UTC", description="IANA timezone that decides 'today' (e.g. America/New_York)")
    adopt_legacy_occurrences: bool = Field(
        default=True,
        description="Let the next occurrence adopt a matching row created before series ids existed",
    )

    @classmethod
    def load(cls) -> "AppConfig":
        """Read CONFIG_PATH; defaults when the file does not exist yet."""
        if not CONFIG_PATH.is_file():
            return cls()
        return cls.model_validate_json(CONFIG_PATH.read_text(encoding="utf-8"))

    def save(self) -> None:
        CONFIG_PATH.write_text(self.model_dump_json(indent=2), encoding="utf-8")


def load() -> AppConfig:
    return AppConfig.load()
