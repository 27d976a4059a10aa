"""Snapshot and patch records exchanged between producers, the tree and observers."""

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
from .schema import InstanceId, InstanceMetadata, InstanceSnapshot, Ref

__all__ = [
    "AppliedPatchAdd",
    "AppliedPatchSet",
    "AppliedPatchUpdate",
    "ChangeKind",
    "InstanceId",
    "InstanceMetadata",
    "InstanceSnapshot",
    "PatchAdd",
    "PatchSet",
    "PatchUpdate",
    "PropertyChange",
    "Ref",
]
