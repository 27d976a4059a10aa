from __future__ import annotations

import logging
import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path

import pytest
from typer.testing import CliRunner, Result

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from treepatch.cli import app  # noqa: E402
from treepatch.snapshot.schema import InstanceId  # noqa: E402
from treepatch.tree import LiveTree  # noqa: E402


@dataclass(slots=True)
class SampleTree:
    """Small live tree with named handles for the interesting instances."""

    tree: LiveTree
    workspace: InstanceId
    folder: InstanceId
    part: InstanceId
    storage: InstanceId


@pytest.fixture()
def sample_tree() -> SampleTree:
    """DataModel > (Workspace > (Folder > Part), ReplicatedStorage)."""

    tree = LiveTree(
        id_scheme="sequential",
        property_defaults={"Part": {"Color": "Medium stone grey", "Anchored": False}},
    )
    workspace = tree.insert_instance(tree.root_id, "Workspace", "Workspace")
    folder = tree.insert_instance(workspace, "Models", "Folder")
    part = tree.insert_instance(folder, "Brick", "Part", properties={"Color": "Bright red", "Size": [4, 1, 2]})
    storage = tree.insert_instance(tree.root_id, "ReplicatedStorage", "ReplicatedStorage")
    return SampleTree(tree=tree, workspace=workspace, folder=folder, part=part, storage=storage)


@dataclass(slots=True)
class DocumentWorkspace:
    """Fixture payload holding tree/patch documents for CLI tests."""

    root: Path
    tree_path: Path
    patch_path: Path
    config_path: Path

    def run_cli(self, *args: str) -> Result:
        """Invoke the typer app in-process with the provided arguments."""

        runner = CliRunner()
        return runner.invoke(app, list(args), catch_exceptions=False)


@pytest.fixture()
def document_workspace(tmp_path: Path) -> DocumentWorkspace:
    """Write a tree document, a patch document and a config for CLI tests."""

    tree_path = tmp_path / "tree.yaml"
    tree_path.write_text(
        textwrap.dedent(
            """
            id: root
            name: DataModel
            class_name: DataModel
            children:
              - id: ws
                name: Workspace
                class_name: Workspace
                children:
                  - id: brick
                    name: Brick
                    class_name: Part
                    properties:
                      Color: Bright red
              - id: old
                name: Obsolete
                class_name: Folder
            """
        ).lstrip(),
        encoding="utf-8",
    )

    patch_path = tmp_path / "patch.yaml"
    patch_path.write_text(
        textwrap.dedent(
            """
            removed_instances: [old, missing]
            added_instances:
              - parent_id: ws
                instance:
                  snapshot_id: new-model
                  name: Model
                  class_name: Model
                  properties:
                    PrimaryPart: {$ref: new-handle}
                  children:
                    - snapshot_id: new-handle
                      name: Handle
                      class_name: Part
            updated_instances:
              - id: brick
                changed_name: RedBrick
                changed_properties:
                  Color: null
              - id: old
                changed_name: Ghost
            """
        ).lstrip(),
        encoding="utf-8",
    )

    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        textwrap.dedent(
            """
            tree:
              id_scheme: sequential
              property_defaults:
                Part:
                  Color: Medium stone grey
            logging:
              level: WARNING
              telemetry: false
            """
        ).lstrip(),
        encoding="utf-8",
    )

    return DocumentWorkspace(root=tmp_path, tree_path=tree_path, patch_path=patch_path, config_path=config_path)


@pytest.fixture(autouse=True)
def _reset_treepatch_loggers():
    """Undo logger level changes made by configure_logging between tests."""

    yield
    for name in ("treepatch", "treepatch.telemetry"):
        logger = logging.getLogger(name)
        logger.setLevel(logging.NOTSET)
        logger.disabled = False
