"""CLI commands for applying patch documents to tree documents."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from .config import (
    DEFAULT_CONFIG_NAME,
    ConfigError,
    configure_logging,
    copy_config_template,
    load_config,
    write_config,
)
from .documents import (
    DocumentError,
    dump_document,
    load_document,
    patch_set_from_document,
    tree_from_document,
    tree_to_document,
)
from .session import SyncSession
from .tree import Instance, LiveTree

APP_HELP = "Apply instance tree patches and report what changed."

app = typer.Typer(help=APP_HELP)


def _load_cli_config(config: Optional[str]) -> Dict[str, Any]:
    """Load the configuration, falling back to defaults when the default file is absent."""
    config_path = Path(config) if config else Path(DEFAULT_CONFIG_NAME)
    try:
        if config is None and not config_path.exists():
            data = load_config(None)
        else:
            data = load_config(config_path)
        configure_logging(data)
    except ConfigError as error:
        typer.echo(f"Configuration error: {error}", err=True)
        raise typer.Exit(code=1) from error
    return data


def _load_tree(tree_path: Path, config_data: Dict[str, Any]) -> LiveTree:
    tree_cfg = config_data.get("tree") or {}
    try:
        return tree_from_document(
            load_document(tree_path),
            id_scheme=tree_cfg.get("id_scheme") or "uuid",
            property_defaults=tree_cfg.get("property_defaults") or {},
        )
    except DocumentError as error:
        typer.echo(f"Failed to load tree: {error}", err=True)
        raise typer.Exit(code=1) from error


def _outline(tree: LiveTree, node: Instance, depth: int = 0) -> list[str]:
    lines = [f"{'  ' * depth}{node.name} ({node.class_name}) [{node.id}]"]
    for child in tree.children(node.id):
        lines.extend(_outline(tree, child, depth + 1))
    return lines


@app.command()
def init(
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path of the configuration file to create.",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Overwrite an existing configuration file.",
    ),
) -> None:
    """Write the default configuration file."""
    config_path = Path(config)
    if config_path.exists() and not force:
        typer.echo(f"Config already exists at {config_path}; use --force to overwrite.")
        raise typer.Exit(code=1)
    write_config(config_path, copy_config_template())
    typer.echo(f"Wrote default configuration to {config_path}.")


@app.command()
def apply(
    tree_path: Path = typer.Argument(..., help="Tree document (YAML or JSON)."),
    patch_path: Path = typer.Argument(..., help="Patch document (YAML or JSON)."),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to the configuration file.",
    ),
    write_tree: Optional[Path] = typer.Option(
        None,
        "--write-tree",
        help="Write the patched tree document to this path.",
    ),
) -> None:
    """Apply a patch document and print the applied patch as JSON."""
    config_data = _load_cli_config(config)
    tree = _load_tree(tree_path, config_data)

    try:
        patch_set = patch_set_from_document(load_document(patch_path))
    except DocumentError as error:
        typer.echo(f"Failed to load patch: {error}", err=True)
        raise typer.Exit(code=1) from error

    session = SyncSession.from_config(config_data, tree=tree)
    applied = session.apply(patch_set)
    typer.echo(json.dumps(applied.model_dump(mode="json"), indent=2))

    if write_tree is not None:
        dump_document(write_tree, tree_to_document(tree))


@app.command()
def show(
    tree_path: Path = typer.Argument(..., help="Tree document (YAML or JSON)."),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to the configuration file.",
    ),
) -> None:
    """Print a tree document as an indented outline."""
    config_data = _load_cli_config(config)
    tree = _load_tree(tree_path, config_data)
    for line in _outline(tree, tree.get(tree.root_id)):
        typer.echo(line)


if __name__ == "__main__":
    app()
