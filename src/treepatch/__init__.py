"""Patch protocol for reconciling a live instance tree with a desired state."""

from .queue import AppliedPatchQueue
from .session import SyncSession
from .snapshot import (
    AppliedPatchAdd,
    AppliedPatchSet,
    AppliedPatchUpdate,
    ChangeKind,
    InstanceId,
    InstanceMetadata,
    InstanceSnapshot,
    PatchAdd,
    PatchSet,
    PatchUpdate,
    PropertyChange,
    Ref,
)
from .snapshot.apply import apply_patch_set
from .tree import Instance, InstanceNotFoundError, LiveTree, TreeError

__version__ = "0.1.0"

__all__ = [
    "AppliedPatchAdd",
    "AppliedPatchQueue",
    "AppliedPatchSet",
    "AppliedPatchUpdate",
    "ChangeKind",
    "Instance",
    "InstanceId",
    "InstanceMetadata",
    "InstanceNotFoundError",
    "InstanceSnapshot",
    "LiveTree",
    "PatchAdd",
    "PatchSet",
    "PatchUpdate",
    "PropertyChange",
    "Ref",
    "SyncSession",
    "TreeError",
    "apply_patch_set",
]
