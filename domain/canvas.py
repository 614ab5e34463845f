from __future__ import annotations

from dataclasses import replace

from domain.errors import CanvasRuleError
from domain.models import (
    TERMINAL_SEPARATOR,
    CanvasLevelState,
    Connection,
    Point,
    TerminalMarker,
    TerminalRole,
)
from domain.ports.layout import LayoutPolicy

_TERMINAL_SUFFIXES: dict[TerminalRole, str] = {
    TerminalRole.START: "start",
    TerminalRole.END: "end",
}


def terminal_id(level_id: str, role: TerminalRole) -> str:
    return f"{level_id}{TERMINAL_SEPARATOR}{_TERMINAL_SUFFIXES[role]}"


def parse_terminal_id(node_id: str) -> tuple[str, TerminalRole] | None:
    level_id, separator, suffix = node_id.rpartition(TERMINAL_SEPARATOR)
    if not separator or not level_id:
        return None
    for role, expected in _TERMINAL_SUFFIXES.items():
        if suffix == expected:
            return level_id, role
    return None


def is_terminal_id(node_id: str) -> bool:
    return parse_terminal_id(node_id) is not None


def connection_id(source_id: str, target_id: str) -> str:
    return f"e-{source_id}-{target_id}"


def new_level_state(
    level_id: str,
    layout: LayoutPolicy,
    *,
    with_terminals: bool = False,
) -> CanvasLevelState:
    if not with_terminals:
        return CanvasLevelState(level_id=level_id)
    terminals = tuple(
        TerminalMarker(
            id=terminal_id(level_id, role),
            role=role,
            position=layout.terminal_position(role),
        )
        for role in (TerminalRole.START, TerminalRole.END)
    )
    return CanvasLevelState(level_id=level_id, terminals=terminals)


def place(state: CanvasLevelState, child_id: str, layout: LayoutPolicy) -> CanvasLevelState:
    if child_id in state.placed:
        return state
    if state.terminal(child_id) is not None:
        msg = f"Terminal marker {child_id} is always on level {state.level_id}"
        raise CanvasRuleError(msg)
    positions = dict(state.positions)
    positions.setdefault(child_id, layout.placement_position(len(state.placed)))
    return replace(state, placed=state.placed | {child_id}, positions=positions)


def update_position(state: CanvasLevelState, node_id: str, position: Point) -> CanvasLevelState:
    marker = state.terminal(node_id)
    if marker is not None:
        terminals = tuple(
            replace(current, position=position) if current.id == node_id else current
            for current in state.terminals
        )
        return replace(state, terminals=terminals)
    if node_id not in state.placed:
        msg = f"Element {node_id} is not placed on level {state.level_id}"
        raise CanvasRuleError(msg)
    positions = dict(state.positions)
    positions[node_id] = position
    return replace(state, positions=positions)


def connect(state: CanvasLevelState, source_id: str, target_id: str) -> CanvasLevelState:
    for endpoint in (source_id, target_id):
        if not state.has_endpoint(endpoint):
            msg = f"Element {endpoint} is not placed on level {state.level_id}"
            raise CanvasRuleError(msg)
    if source_id == target_id:
        msg = f"Element {source_id} cannot be connected to itself"
        raise CanvasRuleError(msg)
    new_id = connection_id(source_id, target_id)
    if any(existing.id == new_id for existing in state.connections):
        msg = f"Connection {source_id} -> {target_id} already exists"
        raise CanvasRuleError(msg)
    connection = Connection(id=new_id, source=source_id, target=target_id)
    return replace(state, connections=(*state.connections, connection))


def disconnect(state: CanvasLevelState, connection_id_: str) -> CanvasLevelState:
    remaining = tuple(item for item in state.connections if item.id != connection_id_)
    if len(remaining) == len(state.connections):
        msg = f"Connection {connection_id_} not found on level {state.level_id}"
        raise CanvasRuleError(msg)
    return replace(state, connections=remaining)


def unplace(state: CanvasLevelState, node_id: str) -> CanvasLevelState:
    """Take a child off the level together with every connection touching it."""
    if node_id not in state.placed:
        msg = f"Element {node_id} is not placed on level {state.level_id}"
        raise CanvasRuleError(msg)
    positions = {key: value for key, value in state.positions.items() if key != node_id}
    connections = tuple(
        item for item in state.connections if node_id not in (item.source, item.target)
    )
    return replace(
        state,
        placed=state.placed - {node_id},
        positions=positions,
        connections=connections,
    )
