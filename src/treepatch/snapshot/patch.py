"""Patch records describing intended and committed changes to a live tree.

Two layers live here:

``PatchSet``
    What a producer *wants* to change. Computed fresh for every
    reconciliation cycle and consumed once by :func:`apply_patch_set`.

``AppliedPatchSet``
    What actually changed once the patch was applied. Entries whose targets
    were missing are absent, so the applied set is always a subset of the
    requested one. This is the record handed to observers.

Patch sets carry no version token and no previous values. Applying a patch
computed against a tree state that has since moved on is not detected.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import Field, field_validator

from .schema import FrozenRecord, InstanceId, InstanceMetadata, InstanceSnapshot, RecordModel

__all__ = [
    "AppliedPatchAdd",
    "AppliedPatchSet",
    "AppliedPatchUpdate",
    "ChangeKind",
    "PatchAdd",
    "PatchSet",
    "PatchUpdate",
    "PropertyChange",
]


class ChangeKind(str, Enum):
    """Requested effect on a single property."""

    UNCHANGED = "unchanged"
    CLEARED = "cleared"
    SET = "set"


class PropertyChange(FrozenRecord):
    """Explicit three-state property change."""

    kind: ChangeKind
    value: Any = None

    @classmethod
    def set(cls, value: Any) -> "PropertyChange":
        return cls(kind=ChangeKind.SET, value=value)

    @classmethod
    def clear(cls) -> "PropertyChange":
        return cls(kind=ChangeKind.CLEARED)

    @classmethod
    def unchanged(cls) -> "PropertyChange":
        return cls(kind=ChangeKind.UNCHANGED)

    @property
    def is_unchanged(self) -> bool:
        return self.kind is ChangeKind.UNCHANGED


_UNCHANGED = PropertyChange.unchanged()
_CHANGE_KEYS = frozenset({"kind", "value"})


def _coerce_change(raw: Any) -> Any:
    """Normalise a raw mapping value into a :class:`PropertyChange`.

    ``None`` clears the property and any other plain value sets it. Mappings
    shaped like a serialised change (``{"kind": ..., "value": ...}``) are
    passed through for validation so dumped patches load back unchanged.
    """
    if isinstance(raw, PropertyChange):
        return raw
    if raw is None:
        return PropertyChange.clear()
    if isinstance(raw, Mapping) and "kind" in raw and set(raw) <= _CHANGE_KEYS:
        return raw
    return PropertyChange.set(raw)


def _coerce_changes(value: Any) -> Any:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        return value
    return {key: _coerce_change(raw) for key, raw in value.items()}


class PatchAdd(RecordModel):
    """Instance subtree to insert as a new child of ``parent_id``.

    ``parent_id`` may name a live instance or the ``snapshot_id`` of an
    instance added earlier in the same patch set.
    """

    parent_id: InstanceId
    instance: InstanceSnapshot


class PatchUpdate(RecordModel):
    """Requested changes to an existing instance.

    Unset fields request no change. A property missing from
    ``changed_properties`` is left alone, a ``CLEARED`` entry resets it.
    """

    id: InstanceId
    changed_name: Optional[str] = None
    changed_class_name: Optional[str] = None
    changed_properties: Dict[str, PropertyChange] = Field(default_factory=dict)
    changed_metadata: Optional[InstanceMetadata] = None

    @field_validator("changed_properties", mode="before")
    @classmethod
    def normalise_properties(cls, value: Any) -> Any:
        return _coerce_changes(value)

    def change_for(self, name: str) -> PropertyChange:
        return self.changed_properties.get(name, _UNCHANGED)

    def is_empty(self) -> bool:
        return (
            self.changed_name is None
            and self.changed_class_name is None
            and self.changed_metadata is None
            and all(change.is_unchanged for change in self.changed_properties.values())
        )


class PatchSet(RecordModel):
    """One batch of intended changes, applied as a single unit."""

    removed_instances: List[InstanceId] = Field(default_factory=list)
    added_instances: List[PatchAdd] = Field(default_factory=list)
    updated_instances: List[PatchUpdate] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.removed_instances or self.added_instances or self.updated_instances)


class AppliedPatchAdd(FrozenRecord):
    """Root id of a subtree that was inserted."""

    instance_id: InstanceId


class AppliedPatchUpdate(FrozenRecord):
    """Fields that were committed to an existing instance."""

    id: InstanceId
    changed_name: Optional[str] = None
    changed_class_name: Optional[str] = None
    changed_properties: Dict[str, PropertyChange] = Field(default_factory=dict)
    changed_metadata: Optional[InstanceMetadata] = None

    @field_validator("changed_properties", mode="before")
    @classmethod
    def normalise_properties(cls, value: Any) -> Any:
        return _coerce_changes(value)


class AppliedPatchSet(FrozenRecord):
    """Record of what a patch application actually did.

    Produced only by the applier and handed to observers as evidence of
    history; it is never re-applied.
    """

    removed: Tuple[InstanceId, ...] = ()
    added: Tuple[AppliedPatchAdd, ...] = ()
    updated: Tuple[AppliedPatchUpdate, ...] = ()

    def is_empty(self) -> bool:
        return not (self.removed or self.added or self.updated)
