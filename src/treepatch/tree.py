"""In-memory live instance tree kept in sync by patch application."""

from __future__ import annotations

import itertools
import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from .snapshot.schema import InstanceId, InstanceMetadata, InstanceSnapshot

__all__ = [
    "ID_SCHEMES",
    "Instance",
    "InstanceNotFoundError",
    "LiveTree",
    "TreeError",
]

LOGGER = logging.getLogger(__name__)
ID_SCHEMES = ("uuid", "sequential")


class TreeError(RuntimeError):
    """Raised when a direct tree operation cannot be performed."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class InstanceNotFoundError(TreeError, KeyError):
    """Raised when an instance id is not present in the tree."""

    def __init__(self, instance_id: str) -> None:
        super().__init__(f"Instance not found: {instance_id}", details={"id": instance_id})
        self.instance_id = instance_id

    def __str__(self) -> str:
        return self.args[0]


@dataclass(slots=True)
class Instance:
    """Live node owned by a :class:`LiveTree`."""

    id: InstanceId
    name: str
    class_name: str
    parent: Optional[InstanceId] = None
    properties: Dict[str, Any] = field(default_factory=dict)
    children: List[InstanceId] = field(default_factory=list)
    metadata: InstanceMetadata = field(default_factory=InstanceMetadata)


class LiveTree:
    """Mutable instance hierarchy with a single id lookup table.

    Every method takes the tree lock. :meth:`mutation` holds it across a
    whole block, so a patch application is never interleaved with other
    mutations or reads from another thread.
    """

    def __init__(
        self,
        root_name: str = "DataModel",
        root_class: str = "DataModel",
        *,
        id_scheme: str = "uuid",
        property_defaults: Mapping[str, Mapping[str, Any]] | None = None,
        root_id: InstanceId | None = None,
    ) -> None:
        if id_scheme not in ID_SCHEMES:
            raise TreeError(f"Unknown id scheme: {id_scheme}", details={"id_scheme": id_scheme})
        self.id_scheme = id_scheme
        self.property_defaults: Dict[str, Dict[str, Any]] = {
            class_name: dict(values) for class_name, values in (property_defaults or {}).items()
        }
        self._instances: Dict[InstanceId, Instance] = {}
        self._retired: set[InstanceId] = set()
        self._counter = itertools.count(1)
        self._lock = threading.RLock()
        self._root_id = root_id or self.allocate_id()
        self._instances[self._root_id] = Instance(id=self._root_id, name=root_name, class_name=root_class)

    # Lookup --------------------------------------------------------------

    @property
    def root_id(self) -> InstanceId:
        return self._root_id

    def __contains__(self, instance_id: object) -> bool:
        with self._lock:
            return instance_id in self._instances

    def __len__(self) -> int:
        with self._lock:
            return len(self._instances)

    def get(self, instance_id: InstanceId) -> Instance:
        with self._lock:
            try:
                return self._instances[instance_id]
            except KeyError:
                raise InstanceNotFoundError(instance_id) from None

    def find(self, instance_id: InstanceId) -> Optional[Instance]:
        with self._lock:
            return self._instances.get(instance_id)

    def children(self, instance_id: InstanceId) -> Tuple[Instance, ...]:
        with self._lock:
            node = self.get(instance_id)
            return tuple(self._instances[child] for child in node.children)

    def descendants(self, instance_id: InstanceId) -> Iterator[Instance]:
        """Iterate every instance below ``instance_id``, depth first.

        The walk is collected under the lock, so later mutations do not
        affect an iteration already in progress.
        """
        with self._lock:
            collected: List[Instance] = []
            stack = list(reversed(self.get(instance_id).children))
            while stack:
                node = self._instances[stack.pop()]
                collected.append(node)
                stack.extend(reversed(node.children))
        return iter(collected)

    # Identity ------------------------------------------------------------

    def allocate_id(self) -> InstanceId:
        """Return an id that is neither live nor previously retired."""
        while True:
            if self.id_scheme == "sequential":
                candidate = InstanceId(f"i{next(self._counter)}")
            else:
                candidate = InstanceId(uuid.uuid4().hex)
            if candidate not in self._instances and candidate not in self._retired:
                return candidate

    @contextmanager
    def mutation(self) -> Iterator["LiveTree"]:
        """Hold the exclusive mutation window for the duration of the block."""
        with self._lock:
            yield self

    # Mutation ------------------------------------------------------------

    def insert_instance(
        self,
        parent_id: InstanceId,
        name: str,
        class_name: str,
        *,
        properties: Mapping[str, Any] | None = None,
        metadata: InstanceMetadata | None = None,
        instance_id: InstanceId | None = None,
    ) -> InstanceId:
        with self._lock:
            parent = self.get(parent_id)
            if instance_id is None:
                instance_id = self.allocate_id()
            elif instance_id in self._instances or instance_id in self._retired:
                raise TreeError(f"Instance id already used: {instance_id}", details={"id": instance_id})
            self._instances[instance_id] = Instance(
                id=instance_id,
                name=name,
                class_name=class_name,
                parent=parent_id,
                properties=dict(properties or {}),
                metadata=metadata or InstanceMetadata(),
            )
            parent.children.append(instance_id)
            return instance_id

    def insert_snapshot(
        self, parent_id: InstanceId, snapshot: InstanceSnapshot
    ) -> Tuple[InstanceId, Dict[InstanceId, InstanceId]]:
        """Materialise ``snapshot`` under ``parent_id`` with fresh ids.

        Returns the id of the new subtree root together with a mapping from
        every ``snapshot_id`` found in the subtree to its live id.
        """
        with self._lock:
            self.get(parent_id)
            mapping: Dict[InstanceId, InstanceId] = {}
            root_id = self._insert_snapshot(parent_id, snapshot, mapping)
            return root_id, mapping

    def _insert_snapshot(
        self,
        parent_id: InstanceId,
        snapshot: InstanceSnapshot,
        mapping: Dict[InstanceId, InstanceId],
    ) -> InstanceId:
        instance_id = self.insert_instance(
            parent_id,
            snapshot.name,
            snapshot.class_name,
            properties=snapshot.properties,
            metadata=snapshot.metadata,
        )
        if snapshot.snapshot_id is not None:
            mapping[snapshot.snapshot_id] = instance_id
        for child in snapshot.children:
            self._insert_snapshot(instance_id, child, mapping)
        return instance_id

    def remove(self, instance_id: InstanceId) -> List[InstanceId]:
        """Remove an instance and its subtree, returning every removed id."""
        with self._lock:
            node = self.get(instance_id)
            if instance_id == self._root_id:
                raise TreeError("The root instance cannot be removed", details={"id": instance_id})
            removed = [instance_id, *(child.id for child in self.descendants(instance_id))]
            if node.parent is not None:
                self._instances[node.parent].children.remove(instance_id)
            for removed_id in removed:
                del self._instances[removed_id]
                self._retired.add(removed_id)
            LOGGER.debug("Removed %d instance(s) rooted at %s", len(removed), instance_id)
            return removed

    def set_name(self, instance_id: InstanceId, name: str) -> None:
        with self._lock:
            self.get(instance_id).name = name

    def set_class_name(self, instance_id: InstanceId, class_name: str) -> None:
        with self._lock:
            self.get(instance_id).class_name = class_name

    def set_property(self, instance_id: InstanceId, name: str, value: Any) -> None:
        with self._lock:
            self.get(instance_id).properties[name] = value

    def clear_property(self, instance_id: InstanceId, name: str) -> None:
        """Reset a property to its class default, or drop it when there is none."""
        with self._lock:
            node = self.get(instance_id)
            defaults = self.property_defaults.get(node.class_name) or {}
            if name in defaults:
                node.properties[name] = defaults[name]
            else:
                node.properties.pop(name, None)

    def set_metadata(self, instance_id: InstanceId, metadata: InstanceMetadata) -> None:
        with self._lock:
            self.get(instance_id).metadata = metadata

    # Views ---------------------------------------------------------------

    def to_snapshot(self, instance_id: InstanceId | None = None) -> InstanceSnapshot:
        """Describe a live subtree as a detached snapshot carrying live ids."""
        with self._lock:
            node = self.get(instance_id or self._root_id)
            return InstanceSnapshot(
                snapshot_id=node.id,
                name=node.name,
                class_name=node.class_name,
                properties=dict(node.properties),
                children=[self.to_snapshot(child) for child in node.children],
                metadata=node.metadata,
            )
