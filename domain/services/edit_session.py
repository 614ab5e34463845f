from __future__ import annotations

import logging
from collections.abc import Mapping
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Optional

import orjson

from domain import canvas
from domain.errors import (
    CanvasRuleError,
    HierarchyRuleError,
    NodeNotFoundError,
    ProcedureSaveError,
    SessionStateError,
    UnsavedChangesError,
)
from domain.hierarchy_rules import child_kind_of, ensure_can_insert, is_leaf, label_for
from domain.models import (
    CanvasLevelState,
    ElementKind,
    HierarchyNode,
    Point,
    ProcedureLogic,
    TerminalRole,
)
from domain.ports.layout import LayoutPolicy
from domain.ports.recipes import RecipeStore
from domain.services.flatten_procedure_logic import ProcedureLogicFlattener
from domain.services.rebuild_procedure_logic import ProcedureLogicRebuilder
from domain.tree import build_path, find_node, insert_child

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    LOADING = "loading"
    EDITING = "editing"
    SAVING = "saving"
    CLOSED = "closed"


def snapshot_of(tree: HierarchyNode, levels: Mapping[str, CanvasLevelState]) -> str:
    payload = {
        "tree": tree.to_dict(),
        "levels": {level_id: levels[level_id].to_dict() for level_id in sorted(levels)},
    }
    return orjson.dumps(payload, option=orjson.OPT_SORT_KEYS).decode("utf-8")


class WorkflowEditSession:
    """Live editing state of one recipe's procedure hierarchy.

    One instance per open editor. The tree and every level state are immutable
    values; each edit swaps in a new value, and ``is_dirty`` compares a fresh
    snapshot of the live state against the one taken at load or last save.
    """

    def __init__(
        self,
        store: RecipeStore,
        recipe_id: str,
        layout: LayoutPolicy,
        *,
        terminal_markers: bool = True,
    ) -> None:
        self.recipe_id = recipe_id
        self._store = store
        self._layout = layout
        self._terminal_markers = terminal_markers
        self._flattener = ProcedureLogicFlattener(layout)
        self._rebuilder = ProcedureLogicRebuilder()
        self._state = SessionState.LOADING
        self._tree: Optional[HierarchyNode] = None
        self._levels: Dict[str, CanvasLevelState] = {}
        self._external_elements: List[Any] = []
        self._snapshot = ""

    @classmethod
    def open(
        cls,
        store: RecipeStore,
        recipe_id: str,
        layout: LayoutPolicy,
        *,
        terminal_markers: bool = True,
    ) -> WorkflowEditSession:
        session = cls(store, recipe_id, layout, terminal_markers=terminal_markers)
        session.load()
        return session

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def tree(self) -> HierarchyNode:
        if self._tree is None:
            raise SessionStateError(f"Workflow for {self.recipe_id} is not loaded")
        return self._tree

    @property
    def levels(self) -> Mapping[str, CanvasLevelState]:
        return MappingProxyType(self._levels)

    @property
    def is_dirty(self) -> bool:
        if self._tree is None:
            return False
        return snapshot_of(self._tree, self._levels) != self._snapshot

    def load(self) -> None:
        if self._state is not SessionState.LOADING:
            raise SessionStateError(f"Workflow for {self.recipe_id} is already loaded")
        stored = self._store.load_procedure(self.recipe_id)
        tree: Optional[HierarchyNode] = None
        levels: Dict[str, CanvasLevelState] = {}
        document = stored.document
        if document is not None and not document.is_empty():
            result = self._rebuilder.rebuild(document, self.recipe_id)
            if result is not None:
                tree, levels = result.tree, dict(result.levels)
            else:
                logger.warning(
                    "Procedure document of %s has no root record; starting empty",
                    self.recipe_id,
                )
            self._external_elements = list(document.external_elements)
        if tree is None:
            tree = HierarchyNode(id=self.recipe_id, name=stored.root_name, kind=ElementKind.RECIPE)
        self._tree = tree
        self._levels = levels
        self._snapshot = snapshot_of(tree, levels)
        self._state = SessionState.EDITING

    def find(self, node_id: str) -> Optional[HierarchyNode]:
        return find_node(self.tree, node_id)

    def path_to(self, node_id: str) -> Optional[List[HierarchyNode]]:
        return build_path(self.tree, node_id)

    def child_kind_for(self, node_id: str) -> Optional[ElementKind]:
        node = self.find(node_id)
        return child_kind_of(node.kind) if node is not None else None

    def level(self, level_id: str) -> Optional[CanvasLevelState]:
        return self._levels.get(level_id)

    def add_child(
        self,
        parent_id: str,
        node_id: str,
        name: str,
        kind: Optional[ElementKind] = None,
    ) -> HierarchyNode:
        self._require_editing()
        parent = self.find(parent_id)
        if parent is None:
            raise HierarchyRuleError(f"Parent element not found: {parent_id}")
        if kind is None:
            kind = child_kind_of(parent.kind)
            if kind is None:
                msg = f"{label_for(parent.kind)} {parent.id} cannot contain child elements"
                raise HierarchyRuleError(msg)
        node = HierarchyNode(id=node_id.strip(), name=name.strip(), kind=kind)
        ensure_can_insert(self.tree, parent_id, node)
        self._tree = insert_child(self.tree, parent_id, node)
        return node

    def open_level(self, level_id: str) -> CanvasLevelState:
        return self._commit(self._working_level(level_id))

    def place(self, level_id: str, child_id: str) -> CanvasLevelState:
        owner = self._level_owner(level_id)
        if child_id not in {child.id for child in owner.children}:
            msg = f"Element {child_id} is not a child of {level_id}"
            raise CanvasRuleError(msg)
        state = self._working_level(level_id)
        return self._commit(canvas.place(state, child_id, self._layout))

    def move(self, level_id: str, node_id: str, position: Point) -> CanvasLevelState:
        state = self._working_level(level_id)
        return self._commit(canvas.update_position(state, node_id, position))

    def connect(self, level_id: str, source_id: str, target_id: str) -> CanvasLevelState:
        return self._commit(canvas.connect(self._working_level(level_id), source_id, target_id))

    def disconnect(self, level_id: str, connection_id: str) -> CanvasLevelState:
        return self._commit(canvas.disconnect(self._working_level(level_id), connection_id))

    def unplace(self, level_id: str, node_id: str) -> CanvasLevelState:
        return self._commit(canvas.unplace(self._working_level(level_id), node_id))

    def replace_level(self, level_id: str, state: CanvasLevelState) -> CanvasLevelState:
        """Swap in a whole level state handed back by the presentation layer."""
        self._require_editing()
        owner = self._level_owner(level_id)
        if state.level_id != level_id:
            msg = f"Level state for {state.level_id} cannot replace level {level_id}"
            raise CanvasRuleError(msg)
        child_ids = {child.id for child in owner.children}
        stray = sorted(state.placed - child_ids)
        if stray:
            msg = f"Elements are not children of {level_id}: {', '.join(stray)}"
            raise CanvasRuleError(msg)
        if set(state.positions) != set(state.placed):
            msg = f"Every placed element of {level_id} needs exactly one position"
            raise CanvasRuleError(msg)
        roles: set[TerminalRole] = set()
        for marker in state.terminals:
            if marker.id != canvas.terminal_id(level_id, marker.role) or marker.role in roles:
                msg = f"Invalid terminal marker {marker.id} on level {level_id}"
                raise CanvasRuleError(msg)
            roles.add(marker.role)
        seen: set[str] = set()
        for connection in state.connections:
            for endpoint in (connection.source, connection.target):
                if not state.has_endpoint(endpoint):
                    msg = f"Connection {connection.id} references {endpoint} outside {level_id}"
                    raise CanvasRuleError(msg)
            if connection.id in seen:
                msg = f"Duplicate connection {connection.id} on level {level_id}"
                raise CanvasRuleError(msg)
            seen.add(connection.id)
        return self._commit(state)

    def to_document(self) -> ProcedureLogic:
        return self._flattener.flatten(self.tree, self._levels, self._external_elements)

    def save(self) -> bool:
        self._require_editing()
        if not self.is_dirty:
            return False
        tree, levels = self.tree, dict(self._levels)
        document = self.to_document()
        self._state = SessionState.SAVING
        try:
            self._store.save_procedure(self.recipe_id, document)
        except Exception as exc:
            raise ProcedureSaveError(self.recipe_id, str(exc)) from exc
        finally:
            self._state = SessionState.EDITING
        self._snapshot = snapshot_of(tree, levels)
        logger.info(
            "Saved procedure for %s (%d nodes, %d edges)",
            self.recipe_id,
            len(document.workflow.nodes),
            len(document.workflow.edges),
        )
        return True

    def close(self, *, confirm: bool = False) -> None:
        if self._state is SessionState.CLOSED:
            return
        if self.is_dirty and not confirm:
            raise UnsavedChangesError(self.recipe_id)
        self._state = SessionState.CLOSED

    def _working_level(self, level_id: str) -> CanvasLevelState:
        """Current state of a level, or a fresh unsaved one if it was never opened."""
        self._require_editing()
        self._level_owner(level_id)
        existing = self._levels.get(level_id)
        if existing is not None:
            return existing
        return canvas.new_level_state(
            level_id, self._layout, with_terminals=self._terminal_markers
        )

    def _commit(self, state: CanvasLevelState) -> CanvasLevelState:
        self._levels[state.level_id] = state
        return state

    def _level_owner(self, level_id: str) -> HierarchyNode:
        owner = self.find(level_id)
        if owner is None:
            raise NodeNotFoundError(level_id)
        if is_leaf(owner.kind):
            msg = f"{label_for(owner.kind)} {owner.id} has no child level"
            raise HierarchyRuleError(msg)
        return owner

    def _require_editing(self) -> None:
        if self._state is not SessionState.EDITING:
            msg = f"Workflow for {self.recipe_id} is {self._state.value}, not editing"
            raise SessionStateError(msg)
