from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
import uvicorn
from rich.console import Console
from rich.tree import Tree

from adapters.filesystem.json_utils import dump_json_bytes, load_json
from app.config import AppSettings, load_settings
from app.store_wiring import build_layout, build_recipe_store
from domain.errors import WorkflowError
from domain.hierarchy_rules import label_for
from domain.models import HierarchyNode, Point, ProcedureLogic, RecipeRecord
from domain.services.edit_session import WorkflowEditSession
from domain.services.rebuild_procedure_logic import ProcedureLogicRebuilder

app = typer.Typer(no_args_is_help=True)
recipe_app = typer.Typer(no_args_is_help=True)
workflow_app = typer.Typer(no_args_is_help=True)
app.add_typer(recipe_app, name="recipe")
app.add_typer(workflow_app, name="workflow")
console = Console()

ConfigOption = typer.Option(None, "--config", help="YAML settings file.")


def _open_session(settings: AppSettings, recipe_id: str) -> WorkflowEditSession:
    return WorkflowEditSession.open(
        build_recipe_store(settings),
        recipe_id,
        build_layout(settings),
        terminal_markers=settings.editor.terminal_markers,
    )


def _fail(exc: Exception) -> typer.Exit:
    console.print(f"[red]Error:[/] {exc}")
    return typer.Exit(code=1)


def _render_tree(node: HierarchyNode, branch: Tree | None = None) -> Tree:
    label = f"{node.name} [dim]({label_for(node.kind)} {node.id})[/]"
    current = Tree(label) if branch is None else branch.add(label)
    for child in node.children:
        _render_tree(child, current)
    return current


def _save(session: WorkflowEditSession) -> None:
    if session.save():
        console.print(f"[green]Saved[/] workflow of {session.recipe_id}")
    else:
        console.print(f"[yellow]No changes to save for {session.recipe_id}[/]")


@recipe_app.command("create")
def recipe_create(
    recipe_id: str = typer.Argument(..., help="Recipe id, e.g. RCP-001."),
    name: str = typer.Argument(..., help="Recipe name."),
    description: Optional[str] = typer.Option(None, help="Free text description."),
    config: Optional[Path] = ConfigOption,
) -> None:
    store = build_recipe_store(load_settings(config))
    try:
        store.create_recipe(RecipeRecord(id=recipe_id, name=name, description=description))
    except WorkflowError as exc:
        raise _fail(exc) from exc
    console.print(f"[green]Created[/] recipe {recipe_id}")


@recipe_app.command("list")
def recipe_list(config: Optional[Path] = ConfigOption) -> None:
    records = build_recipe_store(load_settings(config)).list_recipes()
    if not records:
        console.print("[yellow]No recipes found[/]")
        return
    for record in records:
        console.print(f"{record.id}\t{record.name}")


@recipe_app.command("show")
def recipe_show(
    recipe_id: str = typer.Argument(...),
    config: Optional[Path] = ConfigOption,
) -> None:
    try:
        session = _open_session(load_settings(config), recipe_id)
    except WorkflowError as exc:
        raise _fail(exc) from exc
    console.print(_render_tree(session.tree))
    for level_id in sorted(session.levels):
        level = session.levels[level_id]
        console.print(
            f"[bold]{level_id}[/]: placed {len(level.placed)}, "
            f"connections {len(level.connections)}, terminals {len(level.terminals)}"
        )


@recipe_app.command("delete")
def recipe_delete(
    recipe_id: str = typer.Argument(...),
    config: Optional[Path] = ConfigOption,
) -> None:
    try:
        build_recipe_store(load_settings(config)).delete_recipe(recipe_id)
    except WorkflowError as exc:
        raise _fail(exc) from exc
    console.print(f"[green]Deleted[/] recipe {recipe_id}")


@workflow_app.command("add")
def workflow_add(
    recipe_id: str = typer.Argument(...),
    parent_id: str = typer.Argument(..., help="Element that receives the new child."),
    element_id: str = typer.Argument(...),
    name: str = typer.Argument(...),
    config: Optional[Path] = ConfigOption,
) -> None:
    try:
        session = _open_session(load_settings(config), recipe_id)
        node = session.add_child(parent_id, element_id, name)
        _save(session)
    except WorkflowError as exc:
        raise _fail(exc) from exc
    console.print(f"Added {label_for(node.kind)} {node.id} under {parent_id}")


@workflow_app.command("place")
def workflow_place(
    recipe_id: str = typer.Argument(...),
    level_id: str = typer.Argument(..., help="Parent element whose level is edited."),
    child_id: str = typer.Argument(...),
    x: Optional[float] = typer.Option(None),
    y: Optional[float] = typer.Option(None),
    config: Optional[Path] = ConfigOption,
) -> None:
    try:
        session = _open_session(load_settings(config), recipe_id)
        state = session.place(level_id, child_id)
        if x is not None or y is not None:
            current = state.positions[child_id]
            session.move(
                level_id,
                child_id,
                Point(x if x is not None else current.x, y if y is not None else current.y),
            )
        _save(session)
    except WorkflowError as exc:
        raise _fail(exc) from exc


@workflow_app.command("move")
def workflow_move(
    recipe_id: str = typer.Argument(...),
    level_id: str = typer.Argument(...),
    node_id: str = typer.Argument(..., help="Placed element or terminal marker."),
    x: float = typer.Argument(...),
    y: float = typer.Argument(...),
    config: Optional[Path] = ConfigOption,
) -> None:
    try:
        session = _open_session(load_settings(config), recipe_id)
        session.move(level_id, node_id, Point(x, y))
        _save(session)
    except WorkflowError as exc:
        raise _fail(exc) from exc


@workflow_app.command("connect")
def workflow_connect(
    recipe_id: str = typer.Argument(...),
    level_id: str = typer.Argument(...),
    source_id: str = typer.Argument(...),
    target_id: str = typer.Argument(...),
    config: Optional[Path] = ConfigOption,
) -> None:
    try:
        session = _open_session(load_settings(config), recipe_id)
        session.connect(level_id, source_id, target_id)
        _save(session)
    except WorkflowError as exc:
        raise _fail(exc) from exc


@workflow_app.command("export")
def workflow_export(
    recipe_id: str = typer.Argument(...),
    output: Optional[Path] = typer.Option(None, help="Write the document here instead of stdout."),
    config: Optional[Path] = ConfigOption,
) -> None:
    try:
        session = _open_session(load_settings(config), recipe_id)
    except WorkflowError as exc:
        raise _fail(exc) from exc
    payload = dump_json_bytes(session.to_document().to_dict())
    if output is None:
        typer.echo(payload.decode("utf-8"))
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(payload)
    console.print(f"[green]Wrote[/] {output}")


@app.command("validate")
def validate(
    input_path: Path = typer.Argument(..., help="Procedure logic JSON file to validate."),
    root_id: Optional[str] = typer.Option(None, help="Root element id, defaults to the root."),
) -> None:
    if not input_path.exists():
        console.print(f"[red]File not found:[/] {input_path}")
        raise typer.Exit(code=1)

    try:
        document = ProcedureLogic.model_validate(load_json(input_path))
    except ValueError as exc:
        console.print(f"[red]Validation failed:[/] {exc}")
        raise typer.Exit(code=1) from exc

    roots = document.workflow.root_ids()
    if root_id is None and len(roots) > 1:
        console.print(f"[red]Validation failed:[/] several root elements: {', '.join(roots)}")
        raise typer.Exit(code=1)
    resolved_root = root_id or (roots[0] if roots else "")
    result = ProcedureLogicRebuilder().rebuild(document, resolved_root)
    if result is None:
        console.print(f"[red]Validation failed:[/] root element {resolved_root!r} not found")
        raise typer.Exit(code=1)
    console.print(f"[green]Valid procedure logic:[/] {input_path}")
    console.print(_render_tree(result.tree))


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1"),
    port: int = typer.Option(8080),
) -> None:
    uvicorn.run("app.web_main:build_default_app", host=host, port=port, factory=True)


if __name__ == "__main__":
    app()
