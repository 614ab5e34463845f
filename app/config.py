from __future__ import annotations

import os
from pathlib import Path
from typing import ClassVar, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import PydanticBaseSettingsSource, YamlConfigSettingsSource

from adapters.layout.vertical import LayoutConfig

DEFAULT_CONFIG_PATH = Path("config/editor/app.yaml")


class S3Settings(BaseModel):
    bucket: str = ""
    prefix: str = "recipes/"
    region: str | None = None
    endpoint_url: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    session_token: str | None = None
    use_path_style: bool = False


class LayoutSettings(BaseModel):
    center_x: float = 300.0
    start_y: float = 40.0
    gap_y: float = Field(default=120.0, gt=0)
    terminal_gap_x: float = Field(default=240.0, ge=0)

    def to_layout_config(self) -> LayoutConfig:
        return LayoutConfig(
            center_x=self.center_x,
            start_y=self.start_y,
            gap_y=self.gap_y,
            terminal_gap_x=self.terminal_gap_x,
        )


class EditorSettings(BaseModel):
    title: str = "Recipe Workflow Editor"
    store: Literal["filesystem", "s3"] = "filesystem"
    recipes_dir: Path = Path("data/recipes")
    s3: S3Settings = S3Settings()
    layout: LayoutSettings = LayoutSettings()
    terminal_markers: bool = True
    max_open_sessions: int = Field(default=64, ge=1)

    @field_validator("store", mode="before")
    @classmethod
    def normalize_store(cls, value: object) -> str:
        return str(value).strip().lower() if value else "filesystem"


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RWE_", env_nested_delimiter="__")

    editor: EditorSettings = EditorSettings()

    _yaml_path: ClassVar[Path | None] = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        sources: list[PydanticBaseSettingsSource] = [
            init_settings,
            env_settings,
            dotenv_settings,
            file_secret_settings,
        ]
        if cls._yaml_path:
            sources.append(YamlConfigSettingsSource(settings_cls, yaml_file=cls._yaml_path))
        return tuple(sources)


def load_settings(config_path: Path | None = None) -> AppSettings:
    env_path = os.getenv("RWE_CONFIG_PATH")
    resolved_path: Path | None = None

    if config_path is not None:
        resolved_path = config_path
    elif env_path:
        resolved_path = Path(env_path)
    elif DEFAULT_CONFIG_PATH.exists():
        resolved_path = DEFAULT_CONFIG_PATH

    previous = AppSettings._yaml_path
    try:
        if resolved_path is not None:
            if not resolved_path.exists():
                msg = f"Config file not found: {resolved_path}"
                raise FileNotFoundError(msg)
            AppSettings._yaml_path = resolved_path
        return AppSettings()
    finally:
        AppSettings._yaml_path = previous
