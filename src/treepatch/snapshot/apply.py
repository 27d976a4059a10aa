"""Apply a :class:`PatchSet` to a live tree and record the committed effect."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Set

from .patch import (
    AppliedPatchAdd,
    AppliedPatchSet,
    AppliedPatchUpdate,
    ChangeKind,
    PatchAdd,
    PatchSet,
    PatchUpdate,
    PropertyChange,
)
from .schema import InstanceId, Ref

if TYPE_CHECKING:
    from ..tree import LiveTree

__all__ = ["apply_patch_set"]

LOGGER = logging.getLogger(__name__)
TELEMETRY_LOGGER = logging.getLogger("treepatch.telemetry")


def _serialise_event_value(value: Any) -> Any:
    """Convert telemetry payload values into JSON-friendly representations."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple, set)):
        return [_serialise_event_value(item) for item in value]
    if isinstance(value, Mapping):
        return {str(key): _serialise_event_value(child) for key, child in value.items()}
    return str(value)


def _emit_apply_event(event: str, **fields: Any) -> None:
    """Log one compact JSON line on the telemetry logger."""
    if not TELEMETRY_LOGGER.isEnabledFor(logging.INFO):
        return
    payload = {"event": event, "timestamp": datetime.now(timezone.utc).isoformat()}
    for key, value in fields.items():
        payload[key] = _serialise_event_value(value)
    TELEMETRY_LOGGER.info(json.dumps(payload, separators=(",", ":"), ensure_ascii=True))


class SkipReason(str, Enum):
    """Why a patch entry produced no applied record."""

    MISSING_INSTANCE = "missing_instance"
    MISSING_PARENT = "missing_parent"
    ROOT_INSTANCE = "root_instance"


@dataclass(slots=True)
class _PatchApplyContext:
    """Bookkeeping for a single application pass."""

    snapshot_ids: Dict[InstanceId, InstanceId] = field(default_factory=dict)
    materialized: List[InstanceId] = field(default_factory=list)
    removed: List[InstanceId] = field(default_factory=list)
    removed_seen: Set[InstanceId] = field(default_factory=set)
    added: List[AppliedPatchAdd] = field(default_factory=list)
    updated: List[AppliedPatchUpdate] = field(default_factory=list)
    skipped: int = 0

    def resolve(self, tree: LiveTree, instance_id: InstanceId) -> InstanceId:
        """Map an id to a live id, falling back to snapshot ids from this pass.

        Live ids win, so a snapshot id that collides with a live instance
        never shadows it.
        """
        if instance_id in tree:
            return instance_id
        return self.snapshot_ids.get(instance_id, instance_id)

    def rewrite(self, tree: LiveTree, value: Any) -> Any:
        if not isinstance(value, Ref) or value.target is None or value.target in tree:
            return value
        if value.target in self.snapshot_ids:
            return Ref(target=self.snapshot_ids[value.target])
        return value

    def skip(self, phase: str, instance_id: InstanceId, reason: SkipReason) -> None:
        self.skipped += 1
        LOGGER.debug("Skipping %s of %s: %s", phase, instance_id, reason.value)
        _emit_apply_event("patch_entry_skipped", phase=phase, id=instance_id, reason=reason)


def apply_patch_set(tree: LiveTree, patch_set: PatchSet) -> AppliedPatchSet:
    """Apply ``patch_set`` to ``tree`` and describe what was committed.

    Removals run first, then additions in order, then updates. Entries whose
    targets cannot be found are skipped without raising; they are simply
    missing from the returned record. The whole pass runs inside the tree's
    mutation window.
    """

    context = _PatchApplyContext()
    with tree.mutation():
        for instance_id in patch_set.removed_instances:
            _apply_removal(tree, instance_id, context)

        for patch_add in patch_set.added_instances:
            _apply_add(tree, patch_add, context)
        _rewrite_added_refs(tree, context)

        for patch_update in patch_set.updated_instances:
            _apply_update(tree, patch_update, context)

    applied = AppliedPatchSet(
        removed=tuple(context.removed),
        added=tuple(context.added),
        updated=tuple(context.updated),
    )
    _emit_apply_event(
        "patch_applied",
        removed=len(applied.removed),
        added=len(applied.added),
        updated=len(applied.updated),
        skipped=context.skipped,
    )
    return applied


def _apply_removal(tree: LiveTree, instance_id: InstanceId, context: _PatchApplyContext) -> None:
    if instance_id in context.removed_seen:
        return
    if instance_id not in tree:
        context.skip("remove", instance_id, SkipReason.MISSING_INSTANCE)
        return
    if instance_id == tree.root_id:
        context.skip("remove", instance_id, SkipReason.ROOT_INSTANCE)
        return
    tree.remove(instance_id)
    context.removed.append(instance_id)
    context.removed_seen.add(instance_id)


def _apply_add(tree: LiveTree, patch_add: PatchAdd, context: _PatchApplyContext) -> None:
    parent_id = context.resolve(tree, patch_add.parent_id)
    if parent_id not in tree:
        context.skip("add", patch_add.parent_id, SkipReason.MISSING_PARENT)
        return
    root_id, mapping = tree.insert_snapshot(parent_id, patch_add.instance)
    context.snapshot_ids.update(mapping)
    context.materialized.append(root_id)
    context.materialized.extend(node.id for node in tree.descendants(root_id))
    context.added.append(AppliedPatchAdd(instance_id=root_id))


def _rewrite_added_refs(tree: LiveTree, context: _PatchApplyContext) -> None:
    """Point ``Ref`` values at live ids once every addition is materialised."""
    if not context.snapshot_ids:
        return
    for instance_id in context.materialized:
        node = tree.get(instance_id)
        for name, value in list(node.properties.items()):
            rewritten = context.rewrite(tree, value)
            if rewritten is not value:
                tree.set_property(instance_id, name, rewritten)


def _apply_update(tree: LiveTree, patch_update: PatchUpdate, context: _PatchApplyContext) -> None:
    instance_id = patch_update.id
    if instance_id not in tree:
        context.skip("update", instance_id, SkipReason.MISSING_INSTANCE)
        return
    if patch_update.is_empty():
        return

    if patch_update.changed_name is not None:
        tree.set_name(instance_id, patch_update.changed_name)
    if patch_update.changed_class_name is not None:
        tree.set_class_name(instance_id, patch_update.changed_class_name)

    committed: Dict[str, PropertyChange] = {}
    for name, change in patch_update.changed_properties.items():
        if change.kind is ChangeKind.SET:
            value = context.rewrite(tree, change.value)
            tree.set_property(instance_id, name, value)
            committed[name] = PropertyChange.set(value)
        elif change.kind is ChangeKind.CLEARED:
            tree.clear_property(instance_id, name)
            committed[name] = change

    if patch_update.changed_metadata is not None:
        tree.set_metadata(instance_id, patch_update.changed_metadata)

    context.updated.append(
        AppliedPatchUpdate(
            id=instance_id,
            changed_name=patch_update.changed_name,
            changed_class_name=patch_update.changed_class_name,
            changed_properties=committed,
            changed_metadata=patch_update.changed_metadata,
        )
    )
