"""Immutable, versioned audit snapshot stored on every merge history row."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from dealmerge.merging.errors import MergeStateError

SNAPSHOT_VERSION = 1


@dataclass(frozen=True, slots=True)
class MergeSnapshot:
    """Everything needed to audit or reverse one merge.

    `pre_merge` maps entity id to its full JSON-safe record as it was read
    inside the merge transaction.
    """

    target_entity_id: str
    source_entity_ids: tuple[str, ...]
    merged_data: Mapping[str, Any]
    pre_merge: Mapping[str, Mapping[str, Any]]
    conflicts: tuple[Mapping[str, Any], ...]
    merge_strategy: str
    conflict_resolution_strategy: str
    preserve_source: bool
    version: int = SNAPSHOT_VERSION

    def to_json(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "target_entity_id": self.target_entity_id,
            "source_entity_ids": list(self.source_entity_ids),
            "merged_data": dict(self.merged_data),
            "pre_merge": {entity_id: dict(record) for entity_id, record in self.pre_merge.items()},
            "conflicts": [dict(conflict) for conflict in self.conflicts],
            "merge_strategy": self.merge_strategy,
            "conflict_resolution_strategy": self.conflict_resolution_strategy,
            "preserve_source": self.preserve_source,
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "MergeSnapshot":
        version = payload.get("version")
        if version != SNAPSHOT_VERSION:
            raise MergeStateError(f"Unsupported merge snapshot version: {version!r}")
        return cls(
            target_entity_id=str(payload["target_entity_id"]),
            source_entity_ids=tuple(str(item) for item in payload.get("source_entity_ids", [])),
            merged_data=dict(payload.get("merged_data") or {}),
            pre_merge={str(key): dict(value) for key, value in (payload.get("pre_merge") or {}).items()},
            conflicts=tuple(dict(item) for item in payload.get("conflicts") or []),
            merge_strategy=str(payload.get("merge_strategy") or ""),
            conflict_resolution_strategy=str(payload.get("conflict_resolution_strategy") or ""),
            preserve_source=bool(payload.get("preserve_source", False)),
            version=SNAPSHOT_VERSION,
        )
