"""Load and dump tree and patch documents written in YAML or JSON.

Tree documents are nested mappings::

    id: root              # optional; allocated when missing
    name: DataModel
    class_name: DataModel
    properties: {}
    metadata: {}
    children: [...]

Patch documents mirror :class:`~treepatch.snapshot.patch.PatchSet`. In both,
a property value written as ``{"$ref": "<id>"}`` becomes a
:class:`~treepatch.snapshot.schema.Ref`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Mapping

import yaml
from pydantic import ValidationError

from .snapshot.patch import PatchSet
from .snapshot.schema import InstanceId, InstanceMetadata, Ref
from .tree import LiveTree, TreeError

__all__ = [
    "DocumentError",
    "dump_document",
    "load_document",
    "patch_set_from_document",
    "tree_from_document",
    "tree_to_document",
]

REF_KEY = "$ref"


class DocumentError(ValueError):
    """Raised when a tree or patch document cannot be interpreted."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


def load_document(path: Path | str) -> Dict[str, Any]:
    """Read a YAML (or JSON) mapping from disk."""
    document_path = Path(path)
    try:
        with document_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except OSError as error:
        raise DocumentError(f"Unable to read {document_path}: {error}", details={"path": str(document_path)}) from error
    except yaml.YAMLError as error:
        raise DocumentError(f"Failed to parse {document_path}: {error}", details={"path": str(document_path)}) from error
    if not isinstance(data, Mapping):
        raise DocumentError(f"Expected mapping at top level of {document_path}", details={"path": str(document_path)})
    return dict(data)


def _decode_value(value: Any) -> Any:
    if isinstance(value, Mapping) and set(value) == {REF_KEY}:
        target = value[REF_KEY]
        return Ref(target=InstanceId(str(target)) if target is not None else None)
    return value


def _decode_properties(properties: Any) -> Any:
    if not isinstance(properties, Mapping):
        return properties
    return {str(name): _decode_value(value) for name, value in properties.items()}


def _encode_value(value: Any) -> Any:
    if isinstance(value, Ref):
        return {REF_KEY: value.target}
    return value


def _decode_id(value: Any) -> Any:
    """Read numeric ids the same way tree documents do."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


def _decode_snapshot(node: Any) -> Any:
    if not isinstance(node, Mapping):
        return node
    decoded = dict(node)
    if "snapshot_id" in decoded:
        decoded["snapshot_id"] = _decode_id(decoded["snapshot_id"])
    if "properties" in decoded:
        decoded["properties"] = _decode_properties(decoded["properties"])
    children = decoded.get("children")
    if isinstance(children, list):
        decoded["children"] = [_decode_snapshot(child) for child in children]
    return decoded


def patch_set_from_document(data: Mapping[str, Any]) -> PatchSet:
    """Build a :class:`PatchSet` from a decoded patch document."""
    payload = dict(data)
    removed = payload.get("removed_instances")
    if isinstance(removed, list):
        payload["removed_instances"] = [_decode_id(entry) for entry in removed]
    added = payload.get("added_instances")
    if isinstance(added, list):
        payload["added_instances"] = [
            {**entry, "parent_id": _decode_id(entry.get("parent_id")), "instance": _decode_snapshot(entry.get("instance"))}
            if isinstance(entry, Mapping)
            else entry
            for entry in added
        ]
    updated = payload.get("updated_instances")
    if isinstance(updated, list):
        payload["updated_instances"] = [
            {
                **entry,
                "id": _decode_id(entry.get("id")),
                "changed_properties": _decode_properties(entry.get("changed_properties")),
            }
            if isinstance(entry, Mapping)
            else entry
            for entry in updated
        ]
    try:
        return PatchSet.model_validate(payload)
    except ValidationError as error:
        raise DocumentError(f"Invalid patch document: {error}") from error


def _node_fields(node: Any, location: str) -> tuple[str, str, Dict[str, Any], InstanceMetadata]:
    if not isinstance(node, Mapping):
        raise DocumentError(f"Tree node at {location} must be a mapping", details={"location": location})
    name = node.get("name")
    class_name = node.get("class_name")
    if not isinstance(name, str) or not isinstance(class_name, str):
        raise DocumentError(
            f"Tree node at {location} needs string 'name' and 'class_name'",
            details={"location": location},
        )
    properties = _decode_properties(node.get("properties") or {})
    if not isinstance(properties, Mapping):
        raise DocumentError(f"Properties at {location} must be a mapping", details={"location": location})
    try:
        metadata = InstanceMetadata.model_validate(node.get("metadata") or {})
    except ValidationError as error:
        raise DocumentError(f"Invalid metadata at {location}: {error}", details={"location": location}) from error
    return name, class_name, dict(properties), metadata


def tree_from_document(
    data: Mapping[str, Any],
    *,
    id_scheme: str = "uuid",
    property_defaults: Mapping[str, Mapping[str, Any]] | None = None,
) -> LiveTree:
    """Build a :class:`LiveTree`, keeping any ids the document spells out."""
    name, class_name, properties, metadata = _node_fields(data, "/")
    root_id = data.get("id")
    try:
        tree = LiveTree(
            root_name=name,
            root_class=class_name,
            id_scheme=id_scheme,
            property_defaults=property_defaults,
            root_id=InstanceId(str(root_id)) if root_id is not None else None,
        )
        for key, value in properties.items():
            tree.set_property(tree.root_id, key, value)
        tree.set_metadata(tree.root_id, metadata)
        for index, child in enumerate(data.get("children") or []):
            _insert_node(tree, tree.root_id, child, f"/{index}")
    except TreeError as error:
        raise DocumentError(f"Invalid tree document: {error}", details=error.details) from error
    return tree


def _insert_node(tree: LiveTree, parent_id: InstanceId, node: Any, location: str) -> None:
    name, class_name, properties, metadata = _node_fields(node, location)
    explicit_id = node.get("id")
    instance_id = tree.insert_instance(
        parent_id,
        name,
        class_name,
        properties=properties,
        metadata=metadata,
        instance_id=InstanceId(str(explicit_id)) if explicit_id is not None else None,
    )
    for index, child in enumerate(node.get("children") or []):
        _insert_node(tree, instance_id, child, f"{location}/{index}")


def tree_to_document(tree: LiveTree, instance_id: InstanceId | None = None) -> Dict[str, Any]:
    """Dump a live subtree as a nested mapping suitable for YAML or JSON."""
    node = tree.get(instance_id or tree.root_id)
    document: Dict[str, Any] = {
        "id": node.id,
        "name": node.name,
        "class_name": node.class_name,
    }
    if node.properties:
        document["properties"] = {key: _encode_value(value) for key, value in node.properties.items()}
    metadata = node.metadata.model_dump(mode="json", exclude_defaults=True)
    if metadata:
        document["metadata"] = metadata
    if node.children:
        document["children"] = [tree_to_document(tree, child) for child in node.children]
    return document


def dump_document(path: Path | str, data: Mapping[str, Any]) -> None:
    """Write a mapping to disk as YAML with stable key order."""
    document_path = Path(path)
    document_path.parent.mkdir(parents=True, exist_ok=True)
    with document_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(dict(data), handle, sort_keys=False)
