from __future__ import annotations

from dataclasses import replace
from pathlib import Path

from filelock import FileLock

from adapters.filesystem.json_utils import load_json, write_json_atomic
from domain.errors import RecipeAlreadyExistsError, RecipeNotFoundError
from domain.models import ProcedureLogic, RecipeRecord, StoredProcedure
from domain.ports.recipes import RecipeRepository


class FileSystemRecipeStore(RecipeRepository):
    """Keeps one ``<recipe_id>.json`` record per recipe under ``directory``."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def load_procedure(self, recipe_id: str) -> StoredProcedure:
        record = self.get_recipe(recipe_id)
        return StoredProcedure(root_name=record.name, document=record.procedure_logic)

    def save_procedure(self, recipe_id: str, document: ProcedureLogic) -> None:
        path = self._path(recipe_id)
        with self._lock(path):
            record = self._read(recipe_id, path)
            write_json_atomic(path, replace(record, procedure_logic=document).to_dict())

    def create_recipe(self, record: RecipeRecord) -> RecipeRecord:
        path = self._path(record.id)
        with self._lock(path):
            if path.exists():
                raise RecipeAlreadyExistsError(record.id)
            write_json_atomic(path, record.to_dict())
        return record

    def get_recipe(self, recipe_id: str) -> RecipeRecord:
        return self._read(recipe_id, self._path(recipe_id))

    def list_recipes(self) -> list[RecipeRecord]:
        if not self.directory.exists():
            return []
        records = [
            RecipeRecord.from_dict(load_json(path)) for path in self.directory.glob("*.json")
        ]
        return sorted(records, key=lambda record: (record.name.lower(), record.id))

    def delete_recipe(self, recipe_id: str) -> None:
        path = self._path(recipe_id)
        with self._lock(path):
            if not path.exists():
                raise RecipeNotFoundError(recipe_id)
            path.unlink()

    def _read(self, recipe_id: str, path: Path) -> RecipeRecord:
        try:
            payload = load_json(path)
        except FileNotFoundError as exc:
            raise RecipeNotFoundError(recipe_id) from exc
        return RecipeRecord.from_dict(payload)

    def _path(self, recipe_id: str) -> Path:
        safe_id = recipe_id.strip()
        if not safe_id or "/" in safe_id or "\\" in safe_id or safe_id in {".", ".."}:
            raise RecipeNotFoundError(recipe_id)
        return self.directory / f"{safe_id}.json"

    def _lock(self, path: Path) -> FileLock:
        path.parent.mkdir(parents=True, exist_ok=True)
        return FileLock(str(path.with_suffix(f"{path.suffix}.lock")))
