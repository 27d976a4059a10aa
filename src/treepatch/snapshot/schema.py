"""Identity and snapshot records shared by patches and the live tree."""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, NewType, Optional

from pydantic import BaseModel, ConfigDict, Field

InstanceId = NewType("InstanceId", str)


class RecordModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=False)


class FrozenRecord(BaseModel):
    """Immutable variant of :class:`RecordModel`."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class Ref(FrozenRecord):
    """Property value pointing at another instance."""

    target: Optional[InstanceId] = None


class InstanceMetadata(FrozenRecord):
    """Bookkeeping attached to an instance outside of its properties."""

    ignore_unknown_instances: bool = False
    instigating_source: Optional[str] = None
    relevant_paths: List[str] = Field(default_factory=list)


class InstanceSnapshot(FrozenRecord):
    """Detached description of a subtree that is not part of a live tree yet."""

    snapshot_id: Optional[InstanceId] = None
    name: str
    class_name: str
    properties: Dict[str, Any] = Field(default_factory=dict)
    children: List["InstanceSnapshot"] = Field(default_factory=list)
    metadata: InstanceMetadata = Field(default_factory=InstanceMetadata)

    def walk(self) -> Iterator["InstanceSnapshot"]:
        """Yield this snapshot and its descendants, depth first."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def count(self) -> int:
        return sum(1 for _ in self.walk())


InstanceSnapshot.model_rebuild()
