from __future__ import annotations


class WorkflowError(Exception):
    """Base class for every error raised by the workflow editor core."""


class HierarchyRuleError(WorkflowError):
    """An insertion would break the ISA-88 containment rules."""


class CanvasRuleError(WorkflowError):
    """A canvas edit references something that is not on the level."""


class NodeNotFoundError(WorkflowError, LookupError):
    def __init__(self, node_id: str) -> None:
        super().__init__(f"Node not found: {node_id}")
        self.node_id = node_id


class RecipeNotFoundError(WorkflowError, LookupError):
    def __init__(self, recipe_id: str) -> None:
        super().__init__(f"Recipe not found: {recipe_id}")
        self.recipe_id = recipe_id


class RecipeAlreadyExistsError(WorkflowError):
    def __init__(self, recipe_id: str) -> None:
        super().__init__(f"Recipe already exists: {recipe_id}")
        self.recipe_id = recipe_id


class ProcedureSaveError(WorkflowError):
    """The record store rejected or failed to persist a procedure document.

    The original store exception is kept as ``__cause__`` and its message is
    reported unchanged in ``reason``.
    """

    def __init__(self, recipe_id: str, reason: str) -> None:
        super().__init__(f"Failed to save procedure for {recipe_id}: {reason}")
        self.recipe_id = recipe_id
        self.reason = reason


class UnsavedChangesError(WorkflowError):
    def __init__(self, recipe_id: str) -> None:
        super().__init__(f"Workflow for {recipe_id} has unsaved changes")
        self.recipe_id = recipe_id


class SessionStateError(WorkflowError):
    """An operation was attempted in a session state that does not allow it."""
