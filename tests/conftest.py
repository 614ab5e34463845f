from __future__ import annotations

import os
from collections.abc import Callable, Generator
from pathlib import Path

import pytest

from app.config import AppSettings, EditorSettings, LayoutSettings, S3Settings


def _clear_rwe_env() -> None:
    for key in list(os.environ):
        if key.startswith("RWE_"):
            os.environ.pop(key, None)


_clear_rwe_env()


@pytest.fixture(autouse=True)
def clear_rwe_env() -> Generator[None, None, None]:
    _clear_rwe_env()
    yield
    _clear_rwe_env()


@pytest.fixture
def s3_settings() -> S3Settings:
    return S3Settings(
        bucket="rwe-bucket",
        prefix="recipes/",
        region="us-east-1",
        endpoint_url="http://stubbed-s3.local",
        access_key_id="test",
        secret_access_key="test",
        session_token=None,
        use_path_style=True,
    )


@pytest.fixture
def editor_settings(tmp_path: Path, s3_settings: S3Settings) -> EditorSettings:
    return EditorSettings(
        title="Test Editor",
        store="filesystem",
        recipes_dir=tmp_path / "recipes",
        s3=s3_settings,
        layout=LayoutSettings(),
        terminal_markers=True,
        max_open_sessions=8,
    )


@pytest.fixture
def editor_settings_factory(
    editor_settings: EditorSettings,
) -> Callable[..., EditorSettings]:
    def _factory(**overrides: object) -> EditorSettings:
        return editor_settings.model_copy(update=overrides)

    return _factory


@pytest.fixture
def app_settings(editor_settings: EditorSettings) -> AppSettings:
    return AppSettings(editor=editor_settings)


@pytest.fixture
def app_settings_factory(
    editor_settings_factory: Callable[..., EditorSettings],
) -> Callable[..., AppSettings]:
    def _factory(**overrides: object) -> AppSettings:
        return AppSettings(editor=editor_settings_factory(**overrides))

    return _factory
