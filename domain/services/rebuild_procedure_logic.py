from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, cast

from domain.canvas import parse_terminal_id
from domain.hierarchy_rules import is_leaf
from domain.models import (
    CanvasLevelState,
    Connection,
    ElementKind,
    HierarchyNode,
    Point,
    ProcedureLogic,
    TerminalMarker,
    WorkflowNode,
)
from domain.tree import iter_nodes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RebuildResult:
    tree: HierarchyNode
    levels: Dict[str, CanvasLevelState] = field(default_factory=dict)


@dataclass
class _LevelDraft:
    placed: set[str] = field(default_factory=set)
    positions: Dict[str, Point] = field(default_factory=dict)
    connections: List[Connection] = field(default_factory=list)
    terminals: List[TerminalMarker] = field(default_factory=list)

    def freeze(self, level_id: str) -> CanvasLevelState:
        return CanvasLevelState(
            level_id=level_id,
            placed=frozenset(self.placed),
            positions=dict(self.positions),
            connections=tuple(self.connections),
            terminals=tuple(self.terminals),
        )


class ProcedureLogicRebuilder:
    """Reconstructs the tree and per-level canvas states from a flat document.

    Records that cannot be attached to the tree rooted at ``root_id`` (unknown
    parents, edges between unknown elements) are dropped without raising.
    """

    def rebuild(self, document: ProcedureLogic, root_id: str) -> Optional[RebuildResult]:
        records = document.workflow.nodes
        by_id: Dict[str, WorkflowNode] = {}
        for record in records:
            by_id.setdefault(record.id, record)

        root_record = by_id.get(root_id)
        if root_record is None or not isinstance(root_record.type, ElementKind):
            return None

        children_by_parent: Dict[str, List[WorkflowNode]] = defaultdict(list)
        for record in by_id.values():
            if record.parent_id is None or parse_terminal_id(record.id) is not None:
                continue
            if not isinstance(record.type, ElementKind):
                continue
            children_by_parent[record.parent_id].append(record)

        parent_by_id: Dict[str, str] = {}
        tree = self._build_node(root_record, children_by_parent, parent_by_id, set())
        level_ids = {node.id for node in iter_nodes(tree) if not is_leaf(node.kind)}
        for extra_root in document.workflow.root_ids():
            if extra_root != root_id:
                logger.debug("Dropping extra root record %s", extra_root)

        drafts: Dict[str, _LevelDraft] = defaultdict(_LevelDraft)
        for record in by_id.values():
            parent_id = record.parent_id
            if parent_id is None or parent_id not in level_ids:
                continue
            position = Point(record.position.x, record.position.y)
            terminal = parse_terminal_id(record.id)
            if terminal is not None:
                level_id, role = terminal
                if level_id != parent_id:
                    logger.debug("Dropping terminal %s filed under %s", record.id, parent_id)
                    continue
                drafts[parent_id].terminals.append(
                    TerminalMarker(id=record.id, role=role, position=position)
                )
                continue
            if record.placed and parent_by_id.get(record.id) == parent_id:
                drafts[parent_id].placed.add(record.id)
                drafts[parent_id].positions[record.id] = position

        for edge in document.workflow.edges:
            level_id = self._level_of(edge.source, by_id, parent_by_id, level_ids)
            target_level = self._level_of(edge.target, by_id, parent_by_id, level_ids)
            if level_id is None or target_level != level_id:
                logger.debug("Dropping orphaned edge %s", edge.id)
                continue
            drafts[level_id].connections.append(
                Connection(id=edge.id, source=edge.source, target=edge.target)
            )

        levels = {level_id: draft.freeze(level_id) for level_id, draft in drafts.items()}
        return RebuildResult(tree=tree, levels=levels)

    def _build_node(
        self,
        record: WorkflowNode,
        children_by_parent: Dict[str, List[WorkflowNode]],
        parent_by_id: Dict[str, str],
        visiting: set[str],
    ) -> HierarchyNode:
        visiting.add(record.id)
        children: List[HierarchyNode] = []
        for child in sorted(children_by_parent.get(record.id, []), key=lambda item: item.order):
            if child.id in visiting or child.id in parent_by_id:
                continue
            parent_by_id[child.id] = record.id
            children.append(self._build_node(child, children_by_parent, parent_by_id, visiting))
        return HierarchyNode(
            id=record.id,
            name=record.name,
            kind=cast(ElementKind, record.type),
            children=tuple(children),
        )

    def _level_of(
        self,
        node_id: str,
        by_id: Dict[str, WorkflowNode],
        parent_by_id: Dict[str, str],
        level_ids: set[str],
    ) -> Optional[str]:
        terminal = parse_terminal_id(node_id)
        if terminal is None:
            level_id = parent_by_id.get(node_id)
            return level_id if level_id in level_ids else None
        record = by_id.get(node_id)
        level_id, _ = terminal
        if record is None or record.parent_id != level_id or level_id not in level_ids:
            return None
        return level_id
