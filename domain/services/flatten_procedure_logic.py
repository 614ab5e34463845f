from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, List, Optional

from domain.models import (
    CanvasLevelState,
    HierarchyNode,
    Point,
    ProcedureLogic,
    ProcedureWorkflow,
    WorkflowEdge,
    WorkflowNode,
    WorkflowPosition,
)
from domain.ports.layout import LayoutPolicy
from domain.tree import iter_nodes


class ProcedureLogicFlattener:
    """Turns the live tree and its per-level canvas states into one flat document.

    Nodes are emitted in tree pre-order with their sibling order, so the same
    input always yields the same document. Terminal markers and connections of
    each level follow, grouped by level in the same pre-order.
    """

    def __init__(self, layout: LayoutPolicy) -> None:
        self.layout = layout

    def flatten(
        self,
        root: HierarchyNode,
        levels: Mapping[str, CanvasLevelState],
        external_elements: Sequence[Any] = (),
    ) -> ProcedureLogic:
        nodes: List[WorkflowNode] = []
        edges: List[WorkflowEdge] = []

        self._visit(root, None, 0, levels, nodes)

        for owner in iter_nodes(root):
            level = levels.get(owner.id)
            if level is None:
                continue
            for order, marker in enumerate(level.terminals):
                nodes.append(
                    WorkflowNode(
                        id=marker.id,
                        name=marker.role.value.title(),
                        type=marker.role,
                        parent_id=owner.id,
                        order=order,
                        position=self._position(marker.position),
                        placed=True,
                    )
                )
            for connection in level.connections:
                edges.append(
                    WorkflowEdge(
                        id=connection.id,
                        source=connection.source,
                        target=connection.target,
                    )
                )

        return ProcedureLogic(
            workflow=ProcedureWorkflow(nodes=nodes, edges=edges),
            external_elements=list(external_elements),
        )

    def _visit(
        self,
        node: HierarchyNode,
        parent_id: Optional[str],
        order: int,
        levels: Mapping[str, CanvasLevelState],
        nodes: List[WorkflowNode],
    ) -> None:
        level = levels.get(parent_id) if parent_id is not None else None
        placed = parent_id is None or (level is not None and node.id in level.placed)
        recorded = level.positions.get(node.id) if level is not None else None
        position = recorded or self.layout.fallback_position(order)
        nodes.append(
            WorkflowNode(
                id=node.id,
                name=node.name,
                type=node.kind,
                parent_id=parent_id,
                order=order,
                position=self._position(position),
                placed=placed,
            )
        )
        for index, child in enumerate(node.children):
            self._visit(child, node.id, index, levels, nodes)

    def _position(self, point: Point) -> WorkflowPosition:
        return WorkflowPosition(x=point.x, y=point.y)
