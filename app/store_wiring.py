from __future__ import annotations

from adapters.filesystem.recipe_store import FileSystemRecipeStore
from adapters.layout.vertical import VerticalStackLayout
from adapters.s3.recipe_store import S3RecipeStore
from app.config import AppSettings
from domain.ports.recipes import RecipeRepository


def build_recipe_store(settings: AppSettings) -> RecipeRepository:
    if settings.editor.store == "s3":
        s3 = settings.editor.s3
        if not s3.bucket:
            msg = "editor.s3.bucket is required when store is s3"
            raise ValueError(msg)
        return S3RecipeStore.from_settings(s3)
    return FileSystemRecipeStore(settings.editor.recipes_dir)


def build_layout(settings: AppSettings) -> VerticalStackLayout:
    return VerticalStackLayout(settings.editor.layout.to_layout_config())
