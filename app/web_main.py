from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, cast

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, Field, ValidationError

from adapters.layout.vertical import VerticalStackLayout
from app.config import AppSettings, load_settings
from app.store_wiring import build_layout, build_recipe_store
from domain.errors import (
    CanvasRuleError,
    HierarchyRuleError,
    NodeNotFoundError,
    ProcedureSaveError,
    RecipeAlreadyExistsError,
    RecipeNotFoundError,
    SessionStateError,
    UnsavedChangesError,
)
from domain.hierarchy_rules import child_kind_of, label_for
from domain.models import (
    CanvasLevelState,
    Connection,
    ElementKind,
    HierarchyNode,
    Point,
    RecipeRecord,
    TerminalMarker,
    TerminalRole,
    WorkflowEdge,
    WorkflowPosition,
)
from domain.ports.recipes import RecipeRepository
from domain.services.edit_session import WorkflowEditSession

logger = logging.getLogger(__name__)


class RecipeCreateRequest(BaseModel):
    id: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None


class AddElementRequest(BaseModel):
    parent_id: str = Field(..., min_length=1)
    id: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    type: Optional[ElementKind] = None


class PlacementRequest(BaseModel):
    child_id: str = Field(..., min_length=1)


class ConnectionRequest(BaseModel):
    source: str = Field(..., min_length=1)
    target: str = Field(..., min_length=1)


class TerminalPayload(BaseModel):
    id: str
    role: TerminalRole
    position: WorkflowPosition


class LevelStateRequest(BaseModel):
    placed: List[str] = Field(default_factory=list)
    positions: Dict[str, WorkflowPosition] = Field(default_factory=dict)
    connections: List[WorkflowEdge] = Field(default_factory=list)
    terminals: List[TerminalPayload] = Field(default_factory=list)

    def to_level_state(self, level_id: str) -> CanvasLevelState:
        return CanvasLevelState(
            level_id=level_id,
            placed=frozenset(self.placed),
            positions={key: Point(value.x, value.y) for key, value in self.positions.items()},
            connections=tuple(
                Connection(id=edge.id, source=edge.source, target=edge.target)
                for edge in self.connections
            ),
            terminals=tuple(
                TerminalMarker(
                    id=marker.id,
                    role=marker.role,
                    position=Point(marker.position.x, marker.position.y),
                )
                for marker in self.terminals
            ),
        )


@dataclass
class SessionRegistry:
    max_sessions: int
    _sessions: Dict[str, WorkflowEditSession] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def add(self, session: WorkflowEditSession) -> str:
        with self._lock:
            if len(self._sessions) >= self.max_sessions:
                raise HTTPException(status_code=409, detail="Too many open editor sessions")
            session_id = uuid.uuid4().hex
            self._sessions[session_id] = session
            return session_id

    def get(self, session_id: str) -> WorkflowEditSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Editor session not found")
        return session

    def discard(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)


@dataclass(frozen=True)
class EditorContext:
    settings: AppSettings
    store: RecipeRepository
    layout: VerticalStackLayout
    sessions: SessionRegistry


def create_app(settings: AppSettings, store: RecipeRepository | None = None) -> FastAPI:
    app = FastAPI(title=settings.editor.title)
    context = EditorContext(
        settings=settings,
        store=store if store is not None else build_recipe_store(settings),
        layout=build_layout(settings),
        sessions=SessionRegistry(max_sessions=settings.editor.max_open_sessions),
    )
    app.state.context = context

    @app.get("/api/recipes")
    def api_list_recipes(context: EditorContext = Depends(get_context)) -> ORJSONResponse:
        records = context.store.list_recipes()
        return ORJSONResponse({"items": [recipe_summary(record) for record in records]})

    @app.post("/api/recipes", status_code=201)
    def api_create_recipe(
        body: RecipeCreateRequest,
        context: EditorContext = Depends(get_context),
    ) -> ORJSONResponse:
        record = RecipeRecord(
            id=body.id.strip(),
            name=body.name.strip(),
            description=body.description,
        )
        with editor_errors():
            created = context.store.create_recipe(record)
        return ORJSONResponse(created.to_dict(), status_code=201)

    @app.get("/api/recipes/{recipe_id}")
    def api_get_recipe(
        recipe_id: str,
        context: EditorContext = Depends(get_context),
    ) -> ORJSONResponse:
        with editor_errors():
            record = context.store.get_recipe(recipe_id)
        return ORJSONResponse(record.to_dict())

    @app.delete("/api/recipes/{recipe_id}")
    def api_delete_recipe(
        recipe_id: str,
        context: EditorContext = Depends(get_context),
    ) -> ORJSONResponse:
        with editor_errors():
            context.store.delete_recipe(recipe_id)
        return ORJSONResponse({"status": "ok", "recipe_id": recipe_id})

    @app.post("/api/recipes/{recipe_id}/sessions", status_code=201)
    def api_open_session(
        recipe_id: str,
        context: EditorContext = Depends(get_context),
    ) -> ORJSONResponse:
        with editor_errors():
            session = WorkflowEditSession.open(
                context.store,
                recipe_id,
                context.layout,
                terminal_markers=context.settings.editor.terminal_markers,
            )
        session_id = context.sessions.add(session)
        return ORJSONResponse(session_payload(session_id, session), status_code=201)

    @app.get("/api/sessions/{session_id}")
    def api_session(
        session_id: str,
        context: EditorContext = Depends(get_context),
    ) -> ORJSONResponse:
        session = context.sessions.get(session_id)
        return ORJSONResponse(session_payload(session_id, session))

    @app.get("/api/sessions/{session_id}/nodes/{node_id}/path")
    def api_node_path(
        session_id: str,
        node_id: str,
        context: EditorContext = Depends(get_context),
    ) -> ORJSONResponse:
        session = context.sessions.get(session_id)
        path = session.path_to(node_id)
        if path is None:
            raise HTTPException(status_code=404, detail="Element not found")
        return ORJSONResponse(
            {
                "node_id": node_id,
                "path": [
                    {"id": node.id, "name": node.name, "type": node.kind.value}
                    for node in path
                ],
            }
        )

    @app.post("/api/sessions/{session_id}/nodes", status_code=201)
    def api_add_element(
        session_id: str,
        body: AddElementRequest,
        context: EditorContext = Depends(get_context),
    ) -> ORJSONResponse:
        session = context.sessions.get(session_id)
        with editor_errors():
            node = session.add_child(body.parent_id, body.id, body.name, body.type)
        payload = session_payload(session_id, session)
        payload["added"] = node_payload(node)
        return ORJSONResponse(payload, status_code=201)

    @app.post("/api/sessions/{session_id}/levels/{level_id}")
    def api_open_level(
        session_id: str,
        level_id: str,
        context: EditorContext = Depends(get_context),
    ) -> ORJSONResponse:
        session = context.sessions.get(session_id)
        with editor_errors():
            state = session.open_level(level_id)
        return ORJSONResponse(level_payload(session, state))

    @app.put("/api/sessions/{session_id}/levels/{level_id}")
    def api_replace_level(
        session_id: str,
        level_id: str,
        body: LevelStateRequest,
        context: EditorContext = Depends(get_context),
    ) -> ORJSONResponse:
        session = context.sessions.get(session_id)
        with editor_errors():
            state = session.replace_level(level_id, body.to_level_state(level_id))
        return ORJSONResponse(level_payload(session, state))

    @app.post("/api/sessions/{session_id}/levels/{level_id}/placements")
    def api_place(
        session_id: str,
        level_id: str,
        body: PlacementRequest,
        context: EditorContext = Depends(get_context),
    ) -> ORJSONResponse:
        session = context.sessions.get(session_id)
        with editor_errors():
            state = session.place(level_id, body.child_id)
        return ORJSONResponse(level_payload(session, state))

    @app.delete("/api/sessions/{session_id}/levels/{level_id}/placements/{node_id}")
    def api_unplace(
        session_id: str,
        level_id: str,
        node_id: str,
        context: EditorContext = Depends(get_context),
    ) -> ORJSONResponse:
        session = context.sessions.get(session_id)
        with editor_errors():
            state = session.unplace(level_id, node_id)
        return ORJSONResponse(level_payload(session, state))

    @app.put("/api/sessions/{session_id}/levels/{level_id}/positions/{node_id}")
    def api_move(
        session_id: str,
        level_id: str,
        node_id: str,
        body: WorkflowPosition,
        context: EditorContext = Depends(get_context),
    ) -> ORJSONResponse:
        session = context.sessions.get(session_id)
        with editor_errors():
            state = session.move(level_id, node_id, Point(body.x, body.y))
        return ORJSONResponse(level_payload(session, state))

    @app.post("/api/sessions/{session_id}/levels/{level_id}/connections")
    def api_connect(
        session_id: str,
        level_id: str,
        body: ConnectionRequest,
        context: EditorContext = Depends(get_context),
    ) -> ORJSONResponse:
        session = context.sessions.get(session_id)
        with editor_errors():
            state = session.connect(level_id, body.source, body.target)
        return ORJSONResponse(level_payload(session, state))

    @app.delete("/api/sessions/{session_id}/levels/{level_id}/connections/{connection_id}")
    def api_disconnect(
        session_id: str,
        level_id: str,
        connection_id: str,
        context: EditorContext = Depends(get_context),
    ) -> ORJSONResponse:
        session = context.sessions.get(session_id)
        with editor_errors():
            state = session.disconnect(level_id, connection_id)
        return ORJSONResponse(level_payload(session, state))

    @app.get("/api/sessions/{session_id}/document")
    def api_document(
        session_id: str,
        context: EditorContext = Depends(get_context),
    ) -> ORJSONResponse:
        session = context.sessions.get(session_id)
        return ORJSONResponse(session.to_document().to_dict())

    @app.post("/api/sessions/{session_id}/save")
    def api_save(
        session_id: str,
        context: EditorContext = Depends(get_context),
    ) -> ORJSONResponse:
        session = context.sessions.get(session_id)
        with editor_errors():
            saved = session.save()
        return ORJSONResponse({"status": "ok", "saved": saved, "dirty": session.is_dirty})

    @app.delete("/api/sessions/{session_id}")
    def api_close_session(
        session_id: str,
        confirm: bool = Query(default=False),
        context: EditorContext = Depends(get_context),
    ) -> ORJSONResponse:
        session = context.sessions.get(session_id)
        with editor_errors():
            session.close(confirm=confirm)
        context.sessions.discard(session_id)
        return ORJSONResponse({"status": "closed", "session_id": session_id})

    return app


def get_context(request: Request) -> EditorContext:
    return cast(EditorContext, request.app.state.context)


@contextmanager
def editor_errors() -> Iterator[None]:
    try:
        yield
    except (HierarchyRuleError, CanvasRuleError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (NodeNotFoundError, RecipeNotFoundError) as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (UnsavedChangesError, RecipeAlreadyExistsError, SessionStateError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ProcedureSaveError as exc:
        logger.exception("Saving procedure for %s failed.", exc.recipe_id)
        raise HTTPException(status_code=502, detail=exc.reason) from exc
    except ValidationError as exc:
        logger.warning("Stored recipe record is malformed: %s", exc)
        raise HTTPException(status_code=422, detail="Stored recipe record is malformed") from exc


def recipe_summary(record: RecipeRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "name": record.name,
        "description": record.description,
        "has_procedure_logic": bool(
            record.procedure_logic and not record.procedure_logic.is_empty()
        ),
    }


def node_payload(node: HierarchyNode) -> dict[str, Any]:
    child_kind = child_kind_of(node.kind)
    return {
        "id": node.id,
        "name": node.name,
        "type": node.kind.value,
        "label": label_for(node.kind),
        "child_type": child_kind.value if child_kind else None,
        "children": [node_payload(child) for child in node.children],
    }


def level_payload(session: WorkflowEditSession, state: CanvasLevelState) -> dict[str, Any]:
    owner = session.find(state.level_id)
    available = [
        {"id": child.id, "name": child.name, "type": child.kind.value}
        for child in (owner.children if owner else ())
        if child.id not in state.placed
    ]
    payload = state.to_dict()
    payload["available"] = available
    payload["dirty"] = session.is_dirty
    return payload


def session_payload(session_id: str, session: WorkflowEditSession) -> dict[str, Any]:
    return {
        "session_id": session_id,
        "recipe_id": session.recipe_id,
        "state": session.state.value,
        "dirty": session.is_dirty,
        "tree": node_payload(session.tree),
        "levels": {
            level_id: session.levels[level_id].to_dict() for level_id in sorted(session.levels)
        },
    }


def build_default_app() -> FastAPI:
    return create_app(load_settings())
