"""
Serializable schema builder state.

The builder's state is persisted on the import job between orchestrator
invocations. Snapshots are tagged with a kind and a format version so an
older snapshot can be recognised and migrated instead of misread.

Format history:
    1: untagged camelCase layout (``fieldStats``, ``uniqueSamples``, ...)
    2: tagged snake_case layout with distinct-value counts and an
       explicit reservoir overflow flag
"""

import copy
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from importer.schema.statistics import FieldStatistics, NumericStats, value_key

SNAPSHOT_KIND = "progressive-schema-builder"
SNAPSHOT_FORMAT_VERSION = 2

# Type names used by format 1 snapshots
LEGACY_TYPE_NAMES = {
    "number": "float",
    "boolean-string": "boolean",
    "undefined": "null",
}


class SchemaStateError(Exception):
    """Raised for snapshots that cannot be restored or misuse of a finalized builder."""
    pass


@dataclass
class TypeConflict:
    """A field that has seen more than one non-null type."""

    path: str
    types: dict[str, int] = field(default_factory=dict)
    samples: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class SchemaBuilderState:
    """Everything the builder needs to resume where it stopped."""

    version: int = 0
    field_stats: dict[str, FieldStatistics] = field(default_factory=dict)
    record_count: int = 0
    batch_count: int = 0
    data_samples: list[dict[str, Any]] = field(default_factory=list)
    type_conflicts: list[TypeConflict] = field(default_factory=list)
    finalized: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": SNAPSHOT_KIND,
            "format_version": SNAPSHOT_FORMAT_VERSION,
            "version": self.version,
            "field_stats": {path: stats.to_dict() for path, stats in self.field_stats.items()},
            "record_count": self.record_count,
            "batch_count": self.batch_count,
            "data_samples": copy.deepcopy(self.data_samples),
            "type_conflicts": [
                {"path": c.path, "types": dict(c.types), "samples": copy.deepcopy(c.samples)}
                for c in self.type_conflicts
            ],
            "finalized": self.finalized,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], max_unique_values: int = 100) -> "SchemaBuilderState":
        """
        Rebuild state from a snapshot, migrating older formats.

        Args:
            data: Snapshot as produced by ``to_dict`` (or a legacy snapshot)
            max_unique_values: Reservoir cap assumed when migrating legacy
                snapshots, which did not record overflow

        Raises:
            SchemaStateError: Unknown kind, newer format or unrecognised layout
        """
        if not isinstance(data, dict):
            raise SchemaStateError(f"Schema builder snapshot must be a mapping, got {type(data).__name__}")

        if "kind" not in data:
            if "fieldStats" in data:
                logger.info("Migrating untagged schema builder snapshot (format 1)")
                return _migrate_v1(data, max_unique_values)
            raise SchemaStateError("Unrecognised schema builder snapshot: missing kind tag")

        if data["kind"] != SNAPSHOT_KIND:
            raise SchemaStateError(f"Snapshot kind {data['kind']!r} is not a schema builder snapshot")

        format_version = data.get("format_version")
        if not isinstance(format_version, int) or format_version > SNAPSHOT_FORMAT_VERSION:
            raise SchemaStateError(
                f"Schema builder snapshot format {format_version!r} is newer than supported "
                f"format {SNAPSHOT_FORMAT_VERSION}"
            )

        return cls(
            version=data.get("version", 0),
            field_stats={
                path: FieldStatistics.from_dict(stats) for path, stats in data.get("field_stats", {}).items()
            },
            record_count=data.get("record_count", 0),
            batch_count=data.get("batch_count", 0),
            data_samples=copy.deepcopy(data.get("data_samples", [])),
            type_conflicts=[
                TypeConflict(path=c["path"], types=dict(c.get("types", {})), samples=copy.deepcopy(c.get("samples", [])))
                for c in data.get("type_conflicts", [])
            ],
            finalized=data.get("finalized", False),
        )


def _migrate_v1(data: dict[str, Any], max_unique_values: int) -> SchemaBuilderState:
    field_stats = {}
    for path, legacy in data.get("fieldStats", {}).items():
        field_stats[path] = _migrate_field_v1(path, legacy, max_unique_values)

    conflicts = []
    for legacy in data.get("typeConflicts", []):
        types = {}
        for name, count in legacy.get("types", {}).items():
            mapped = LEGACY_TYPE_NAMES.get(name, name)
            types[mapped] = types.get(mapped, 0) + count
        conflicts.append(TypeConflict(path=legacy["path"], types=types, samples=list(legacy.get("samples", []))))

    return SchemaBuilderState(
        version=data.get("version", 0),
        field_stats=field_stats,
        record_count=data.get("recordCount", 0),
        batch_count=data.get("batchCount", 0),
        data_samples=copy.deepcopy(data.get("dataSamples", [])),
        type_conflicts=conflicts,
        finalized=False,
    )


def _migrate_field_v1(path: str, legacy: dict[str, Any], max_unique_values: int) -> FieldStatistics:
    distribution = {}
    for name, count in legacy.get("typeDistribution", {}).items():
        mapped = LEGACY_TYPE_NAMES.get(name, name)
        distribution[mapped] = distribution.get(mapped, 0) + count

    occurrences = legacy.get("occurrences", 0)
    null_count = legacy.get("nullCount", 0)

    numeric = None
    legacy_numeric = legacy.get("numericStats")
    if legacy_numeric:
        count = distribution.get("integer", 0) + distribution.get("float", 0) or max(occurrences - null_count, 1)
        numeric = NumericStats(
            min=legacy_numeric["min"],
            max=legacy_numeric["max"],
            total=legacy_numeric.get("avg", 0) * count,
            count=count,
            is_integer=legacy_numeric.get("isInteger", False),
        )

    # Format 1 kept counts only for enum candidates
    value_counts = {}
    for item in legacy.get("enumValues") or []:
        if item.get("value") is not None:
            value_counts[value_key(item["value"])] = item.get("count", 1)
    for sample in legacy.get("uniqueSamples", []):
        if sample is not None:
            value_counts.setdefault(value_key(sample), 1)

    return FieldStatistics(
        path=path,
        depth=legacy.get("depth", path.count(".")),
        occurrences=occurrences,
        null_count=null_count,
        type_distribution=distribution,
        formats=dict(legacy.get("formats", {})),
        numeric_stats=numeric,
        value_counts=value_counts,
        # Format 1 never recorded overflow; a full reservoir may have dropped values
        overflowed=legacy.get("uniqueValues", len(value_counts)) >= max_unique_values,
    )
