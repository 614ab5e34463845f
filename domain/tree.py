from __future__ import annotations

from collections.abc import Iterator
from dataclasses import replace

from domain.errors import NodeNotFoundError
from domain.models import HierarchyNode


def iter_nodes(root: HierarchyNode) -> Iterator[HierarchyNode]:
    """Yield ``root`` and its descendants in pre-order."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def collect_ids(root: HierarchyNode) -> set[str]:
    return {node.id for node in iter_nodes(root)}


def find_node(root: HierarchyNode, node_id: str) -> HierarchyNode | None:
    for node in iter_nodes(root):
        if node.id == node_id:
            return node
    return None


def build_path(root: HierarchyNode, node_id: str) -> list[HierarchyNode] | None:
    if root.id == node_id:
        return [root]
    for child in root.children:
        tail = build_path(child, node_id)
        if tail is not None:
            return [root, *tail]
    return None


def parent_of(root: HierarchyNode, node_id: str) -> HierarchyNode | None:
    path = build_path(root, node_id)
    if not path or len(path) < 2:
        return None
    return path[-2]


def insert_child(root: HierarchyNode, parent_id: str, child: HierarchyNode) -> HierarchyNode:
    """Return a new tree with ``child`` appended to the children of ``parent_id``.

    Only the nodes on the path from the root to the parent are rebuilt; every
    other subtree is shared with the input tree. Kind rules are not checked
    here, see ``domain.hierarchy_rules.ensure_can_insert``.
    """
    updated = _insert(root, parent_id, child)
    if updated is None:
        raise NodeNotFoundError(parent_id)
    return updated


def _insert(node: HierarchyNode, parent_id: str, child: HierarchyNode) -> HierarchyNode | None:
    if node.id == parent_id:
        return replace(node, children=(*node.children, child))
    for index, current in enumerate(node.children):
        updated = _insert(current, parent_id, child)
        if updated is None:
            continue
        children = (*node.children[:index], updated, *node.children[index + 1 :])
        return replace(node, children=children)
    return None
