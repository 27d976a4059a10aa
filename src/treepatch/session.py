"""Pairing of a live tree with the queue that publishes its applied patches."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from .queue import DEFAULT_MAX_HISTORY, AppliedPatchQueue
from .snapshot.apply import apply_patch_set
from .snapshot.patch import AppliedPatchSet, PatchSet
from .tree import LiveTree

__all__ = ["SyncSession"]

LOGGER = logging.getLogger(__name__)


class SyncSession:
    """Applies patch sets to one tree and publishes what changed."""

    def __init__(self, tree: LiveTree, queue: AppliedPatchQueue | None = None) -> None:
        self.tree = tree
        self.queue = queue or AppliedPatchQueue()

    @classmethod
    def from_config(cls, config: Mapping[str, Any], *, tree: LiveTree | None = None) -> "SyncSession":
        tree_cfg = config.get("tree") or {}
        queue_cfg = config.get("queue") or {}
        if tree is None:
            tree = LiveTree(
                root_name=tree_cfg.get("root_name") or "DataModel",
                root_class=tree_cfg.get("root_class") or "DataModel",
                id_scheme=tree_cfg.get("id_scheme") or "uuid",
                property_defaults=tree_cfg.get("property_defaults") or {},
            )
        queue = AppliedPatchQueue(max_history=int(queue_cfg.get("max_history") or DEFAULT_MAX_HISTORY))
        return cls(tree, queue)

    def apply(self, patch_set: PatchSet) -> AppliedPatchSet:
        """Apply ``patch_set`` and publish the result to observers when non-empty.

        The record is appended to the queue while the mutation window is
        still held so cursor order always matches application order.
        Subscribers are called after the window is released and may read or
        patch the tree from any thread.
        """
        cursor = None
        with self.tree.mutation():
            applied = apply_patch_set(self.tree, patch_set)
            if applied.is_empty():
                LOGGER.debug("Patch produced no changes; nothing published")
            else:
                cursor = self.queue.record(applied)
        if cursor is not None:
            self.queue.notify_subscribers(cursor, applied)
        return applied
