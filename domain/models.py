from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

TERMINAL_SEPARATOR = "::"


class ElementKind(str, Enum):
    RECIPE = "RECIPE"
    PROCEDURE = "PROCEDURE"
    UNIT_PROCEDURE = "UNIT_PROCEDURE"
    OPERATION = "OPERATION"
    PHASE = "PHASE"


class TerminalRole(str, Enum):
    START = "START"
    END = "END"


@dataclass(frozen=True)
class Point:
    x: float
    y: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "x", float(self.x))
        object.__setattr__(self, "y", float(self.y))

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y}


@dataclass(frozen=True)
class HierarchyNode:
    id: str
    name: str
    kind: ElementKind
    children: tuple[HierarchyNode, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.kind.value,
            "children": [child.to_dict() for child in self.children],
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> HierarchyNode:
        return cls(
            id=str(payload["id"]),
            name=str(payload.get("name", "")),
            kind=ElementKind(payload["type"]),
            children=tuple(cls.from_dict(child) for child in payload.get("children", []) or []),
        )


@dataclass(frozen=True)
class Connection:
    id: str
    source: str
    target: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "source": self.source, "target": self.target}


@dataclass(frozen=True)
class TerminalMarker:
    id: str
    role: TerminalRole
    position: Point

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "role": self.role.value, "position": self.position.to_dict()}


@dataclass(frozen=True)
class CanvasLevelState:
    level_id: str
    placed: frozenset[str] = frozenset()
    positions: Dict[str, Point] = field(default_factory=dict)
    connections: tuple[Connection, ...] = ()
    terminals: tuple[TerminalMarker, ...] = ()

    def terminal(self, node_id: str) -> Optional[TerminalMarker]:
        for marker in self.terminals:
            if marker.id == node_id:
                return marker
        return None

    def has_endpoint(self, node_id: str) -> bool:
        return node_id in self.placed or self.terminal(node_id) is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "level_id": self.level_id,
            "placed": sorted(self.placed),
            "positions": {
                node_id: self.positions[node_id].to_dict() for node_id in sorted(self.positions)
            },
            "connections": [connection.to_dict() for connection in self.connections],
            "terminals": [marker.to_dict() for marker in self.terminals],
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> CanvasLevelState:
        positions = {
            str(node_id): Point(float(raw["x"]), float(raw["y"]))
            for node_id, raw in (payload.get("positions") or {}).items()
        }
        connections = tuple(
            Connection(id=str(raw["id"]), source=str(raw["source"]), target=str(raw["target"]))
            for raw in payload.get("connections") or []
        )
        terminals = tuple(
            TerminalMarker(
                id=str(raw["id"]),
                role=TerminalRole(raw["role"]),
                position=Point(float(raw["position"]["x"]), float(raw["position"]["y"])),
            )
            for raw in payload.get("terminals") or []
        )
        return cls(
            level_id=str(payload["level_id"]),
            placed=frozenset(str(node_id) for node_id in payload.get("placed") or []),
            positions=positions,
            connections=connections,
            terminals=terminals,
        )


class WorkflowPosition(BaseModel):
    x: float
    y: float


class WorkflowNode(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    name: str = ""
    type: ElementKind | TerminalRole
    parent_id: Optional[str] = Field(default=None, alias="parentId")
    order: int = 0
    position: WorkflowPosition = Field(default_factory=lambda: WorkflowPosition(x=0.0, y=0.0))
    placed: bool = False


class WorkflowEdge(BaseModel):
    id: str
    source: str
    target: str


class ProcedureWorkflow(BaseModel):
    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)

    def root_ids(self) -> List[str]:
        """Ids of parentless records. Only the one matching the recipe id is used."""
        return [node.id for node in self.nodes if node.parent_id is None]


class ProcedureLogic(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    workflow: ProcedureWorkflow = Field(default_factory=ProcedureWorkflow)
    external_elements: List[Any] = Field(default_factory=list, alias="externalElements")

    def is_empty(self) -> bool:
        return not self.workflow.nodes

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


@dataclass(frozen=True)
class RecipeRecord:
    id: str
    name: str
    description: Optional[str] = None
    procedure_logic: Optional[ProcedureLogic] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": ElementKind.RECIPE.value,
            "procedureLogic": self.procedure_logic.to_dict() if self.procedure_logic else None,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> RecipeRecord:
        raw_logic = payload.get("procedureLogic")
        description = payload.get("description")
        return cls(
            id=str(payload.get("id", "")),
            name=str(payload.get("name", "")),
            description=str(description) if description is not None else None,
            procedure_logic=ProcedureLogic.model_validate(raw_logic) if raw_logic else None,
        )


@dataclass(frozen=True)
class StoredProcedure:
    root_name: str
    document: Optional[ProcedureLogic] = None
