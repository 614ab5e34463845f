from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from domain.models import ProcedureLogic, RecipeRecord, StoredProcedure


class RecipeStore(Protocol):
    def load_procedure(self, recipe_id: str) -> StoredProcedure: ...

    def save_procedure(self, recipe_id: str, document: ProcedureLogic) -> None: ...


class RecipeRepository(RecipeStore, Protocol):
    def create_recipe(self, record: RecipeRecord) -> RecipeRecord: ...

    def get_recipe(self, recipe_id: str) -> RecipeRecord: ...

    def list_recipes(self) -> Sequence[RecipeRecord]: ...

    def delete_recipe(self, recipe_id: str) -> None: ...
