from __future__ import annotations

from domain.errors import HierarchyRuleError
from domain.models import TERMINAL_SEPARATOR, ElementKind, HierarchyNode
from domain.tree import collect_ids, find_node

_CHILD_KIND_BY_KIND: dict[ElementKind, ElementKind | None] = {
    ElementKind.RECIPE: ElementKind.PROCEDURE,
    ElementKind.PROCEDURE: ElementKind.UNIT_PROCEDURE,
    ElementKind.UNIT_PROCEDURE: ElementKind.OPERATION,
    ElementKind.OPERATION: ElementKind.PHASE,
    ElementKind.PHASE: None,
}

HIERARCHY_LABELS: dict[ElementKind, str] = {
    ElementKind.RECIPE: "Recipe",
    ElementKind.PROCEDURE: "Procedure",
    ElementKind.UNIT_PROCEDURE: "Unit Procedure",
    ElementKind.OPERATION: "Operation",
    ElementKind.PHASE: "Phase",
}


def child_kind_of(kind: ElementKind) -> ElementKind | None:
    return _CHILD_KIND_BY_KIND[kind]


def is_leaf(kind: ElementKind) -> bool:
    return _CHILD_KIND_BY_KIND[kind] is None


def label_for(kind: ElementKind) -> str:
    return HIERARCHY_LABELS[kind]


def ensure_can_insert(root: HierarchyNode, parent_id: str, node: HierarchyNode) -> None:
    """Reject an insertion that would leave the tree kind-inconsistent.

    Called before ``insert_child`` so a rejected edit never reaches the tree.
    """
    if not node.id.strip():
        raise HierarchyRuleError("Element id must not be blank")
    if node.id == parent_id:
        msg = f"Element {node.id} cannot be its own parent"
        raise HierarchyRuleError(msg)
    if TERMINAL_SEPARATOR in node.id:
        msg = f"Element id {node.id!r} must not contain {TERMINAL_SEPARATOR!r}"
        raise HierarchyRuleError(msg)
    if node.children:
        msg = f"Element {node.id} must be inserted without children"
        raise HierarchyRuleError(msg)

    parent = find_node(root, parent_id)
    if parent is None:
        msg = f"Parent element not found: {parent_id}"
        raise HierarchyRuleError(msg)
    allowed = child_kind_of(parent.kind)
    if allowed is None:
        msg = f"{label_for(parent.kind)} {parent.id} cannot contain child elements"
        raise HierarchyRuleError(msg)
    if node.kind is not allowed:
        msg = (
            f"{label_for(parent.kind)} {parent.id} accepts {label_for(allowed)} children, "
            f"got {label_for(node.kind)}"
        )
        raise HierarchyRuleError(msg)
    if node.id in collect_ids(root):
        msg = f"Element id already used in this recipe: {node.id}"
        raise HierarchyRuleError(msg)
