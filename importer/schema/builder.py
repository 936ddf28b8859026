"""
Progressive schema builder.

Infers a JSON-schema-like model for a dataset one batch at a time. The
builder never needs the whole dataset in memory: its state can be
snapshotted after any batch, persisted, and restored by a later worker,
and a restored builder behaves exactly as if it had never stopped.
"""

import copy
from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from typing import Any, Literal

from loguru import logger

from importer.config import SchemaSettings, settings
from importer.schema.state import SchemaBuilderState, SchemaStateError, TypeConflict
from importer.schema.statistics import NUMERIC_TYPES, FieldStatistics, infer_value_type

ENUM_VALUE_TYPES = {"string", "integer", "boolean"}

JSON_SCHEMA_TYPES = {
    "string": "string",
    "integer": "integer",
    "float": "number",
    "boolean": "boolean",
    "date": "string",
    "array": "array",
    "object": "object",
}

MAX_CONFLICT_SAMPLES = 5


@dataclass
class SchemaBuilderConfig:
    """Limits and thresholds for schema inference."""

    max_samples: int = 100
    max_unique_values: int = 100
    enum_threshold: int = 50
    enum_mode: Literal["count", "percentage"] = "count"
    max_depth: int = 3
    required_threshold: float = 0.9

    @classmethod
    def from_settings(cls, schema_settings: SchemaSettings | None = None) -> "SchemaBuilderConfig":
        schema_settings = schema_settings or settings.schema_builder
        return cls(**schema_settings.model_dump())


@dataclass
class SchemaChange:
    """A change to the inferred schema noticed while processing rows."""

    type: str
    path: str
    details: dict[str, Any] = field(default_factory=dict)
    severity: str = "info"
    auto_approvable: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BatchResult:
    schema_changed: bool
    changes: list[SchemaChange]


class ProgressiveSchemaBuilder:
    """
    Builds field statistics and a schema incrementally.

    Usage:
        builder = ProgressiveSchemaBuilder.restore(job.schema_builder_state, config)
        builder.process_batch(rows)
        job.schema_builder_state = builder.get_state()
        ...
        builder.detect_enum_fields()   # once, after the last batch
        schema = builder.get_schema()
    """

    def __init__(self, state: SchemaBuilderState | None = None, config: SchemaBuilderConfig | None = None):
        self.config = config or SchemaBuilderConfig()
        self._state = state or SchemaBuilderState()

    @classmethod
    def restore(
        cls,
        snapshot: dict[str, Any] | None,
        config: SchemaBuilderConfig | None = None,
    ) -> "ProgressiveSchemaBuilder":
        """Create a builder from a persisted snapshot (or a fresh one for None)."""
        config = config or SchemaBuilderConfig()
        if snapshot is None:
            return cls(config=config)
        state = SchemaBuilderState.from_dict(snapshot, max_unique_values=config.max_unique_values)
        return cls(state=state, config=config)

    def get_state(self) -> dict[str, Any]:
        """Serializable snapshot of the current state."""
        return self._state.to_dict()

    @property
    def state(self) -> SchemaBuilderState:
        return self._state

    @property
    def record_count(self) -> int:
        return self._state.record_count

    @property
    def is_finalized(self) -> bool:
        return self._state.finalized

    @property
    def data_samples(self) -> list[dict[str, Any]]:
        return self._state.data_samples

    def get_field_statistics(self) -> dict[str, FieldStatistics]:
        return self._state.field_stats

    def process_batch(self, rows: Iterable[dict[str, Any]]) -> BatchResult:
        """
        Fold a batch of rows into the running statistics.

        Args:
            rows: Row mappings (column name -> cell value)

        Returns:
            BatchResult listing new fields and type changes seen in the batch

        Raises:
            SchemaStateError: If enum detection already finalized the builder
        """
        if self._state.finalized:
            raise SchemaStateError("Schema builder is finalized; enum verdicts are frozen")

        rows = list(rows)
        changes: list[SchemaChange] = []

        self._update_samples(rows)
        for row in rows:
            changes.extend(self._process_record(row, ""))

        self._state.record_count += len(rows)
        self._state.batch_count += 1

        schema_changed = any(c.type in ("new_field", "type_change") for c in changes)
        if schema_changed:
            self._state.version += 1
            logger.debug(
                f"Schema version {self._state.version}: "
                f"{sum(1 for c in changes if c.type == 'new_field')} new fields, "
                f"{sum(1 for c in changes if c.type == 'type_change')} type changes"
            )

        return BatchResult(schema_changed=schema_changed, changes=changes)

    def _update_samples(self, rows: list[dict[str, Any]]) -> None:
        samples = self._state.data_samples
        samples.extend(copy.deepcopy(rows))
        if len(samples) > self.config.max_samples:
            del samples[: len(samples) - self.config.max_samples]

    def _process_record(self, record: dict[str, Any], prefix: str, depth: int = 0) -> list[SchemaChange]:
        changes: list[SchemaChange] = []
        if depth >= self.config.max_depth or not isinstance(record, dict):
            return changes

        for key, value in record.items():
            path = f"{prefix}.{key}" if prefix else str(key)
            stats = self._state.field_stats.get(path)
            value_type = infer_value_type(value)

            if stats is None:
                stats = FieldStatistics.for_path(path)
                self._state.field_stats[path] = stats
                changes.append(
                    SchemaChange(
                        type="new_field",
                        path=path,
                        details={"data_type": value_type},
                        severity="info",
                        auto_approvable=True,
                    )
                )
            else:
                conflict = self._check_type_conflict(stats, value_type, value)
                if conflict:
                    changes.append(conflict)

            stats.update(value, self.config.max_unique_values)

            if isinstance(value, dict):
                changes.extend(self._process_record(value, path, depth + 1))
            elif isinstance(value, list) and value and isinstance(value[0], dict):
                changes.extend(self._process_record(value[0], f"{path}[]", depth + 1))

        return changes

    def _check_type_conflict(self, stats: FieldStatistics, value_type: str, value: Any) -> SchemaChange | None:
        if value_type == "null" or stats.type_distribution.get(value_type, 0) > 0:
            return None

        existing = stats.non_null_types()
        if not existing:
            return None
        # Integers and floats are one numeric family
        if value_type in NUMERIC_TYPES and all(t in NUMERIC_TYPES for t in existing):
            return None

        self._record_conflict(stats, value_type, value)
        return SchemaChange(
            type="type_change",
            path=stats.path,
            details={"old_type": existing[0], "new_type": value_type},
            severity="warning",
            auto_approvable=False,
        )

    def _record_conflict(self, stats: FieldStatistics, value_type: str, value: Any) -> None:
        conflict = next((c for c in self._state.type_conflicts if c.path == stats.path), None)
        if conflict is None:
            conflict = TypeConflict(
                path=stats.path,
                types={t: c for t, c in stats.type_distribution.items() if t != "null" and c > 0},
            )
            self._state.type_conflicts.append(conflict)
        conflict.types[value_type] = conflict.types.get(value_type, 0) + 1
        if len(conflict.samples) < MAX_CONFLICT_SAMPLES and not isinstance(value, (dict, list)):
            conflict.samples.append({"type": value_type, "value": value})

    def detect_enum_fields(self) -> dict[str, list[Any]]:
        """
        Classify closed enums and freeze the verdict.

        Must run once, after the last batch: a field only qualifies while
        its distinct-value reservoir has never overflowed, which is only
        known for certain once every row has been seen. Calling it again
        returns the same verdict.

        Returns:
            Mapping of field path to its enum values, most frequent first
        """
        if not self._state.finalized:
            for stats in self._state.field_stats.values():
                stats.is_enum = self._is_enum_candidate(stats)
                if stats.is_enum:
                    samples = stats.unique_samples
                    ordered = sorted(
                        enumerate(stats.value_counts.items()),
                        key=lambda item: (-item[1][1], item[0]),
                    )
                    stats.enum_values = [samples[index] for index, _ in ordered]
                else:
                    stats.enum_values = []
            self._state.finalized = True
            logger.debug(
                f"Enum detection: {sum(1 for s in self._state.field_stats.values() if s.is_enum)} "
                f"of {len(self._state.field_stats)} fields are enums"
            )

        return {path: list(stats.enum_values) for path, stats in self._state.field_stats.items() if stats.is_enum}

    def _is_enum_candidate(self, stats: FieldStatistics) -> bool:
        if stats.overflowed or not stats.value_counts:
            return False
        types = set(stats.non_null_types())
        if not types or not types <= ENUM_VALUE_TYPES:
            return False

        distinct = len(stats.value_counts)
        if self.config.enum_mode == "percentage":
            return distinct / stats.non_null_count * 100 <= self.config.enum_threshold
        return distinct <= self.config.enum_threshold

    def get_schema(self) -> dict[str, Any]:
        """
        Derive the schema from the current statistics.

        Callable at any time; before ``detect_enum_fields`` the result is
        provisional and carries no enum constraints.
        """
        schema: dict[str, Any] = {"type": "object", "properties": {}, "required": []}

        for path, stats in self._state.field_stats.items():
            parts = [p for p in path.split(".") if p]
            container = schema
            for part in parts[:-1]:
                container = self._child_container(container, part)

            properties = container.setdefault("properties", {})
            name = parts[-1]
            prop = self._property_schema(stats)
            existing = properties.get(name, {})
            for key in ("properties", "items"):
                if key in existing:
                    prop[key] = existing[key]
            if "required" in existing:
                prop["required"] = existing["required"]
            properties[name] = prop

            if self._is_required(stats):
                container.setdefault("required", []).append(name)

        return schema

    @staticmethod
    def _child_container(container: dict[str, Any], part: str) -> dict[str, Any]:
        properties = container.setdefault("properties", {})
        if part.endswith("[]"):
            node = properties.setdefault(part[:-2], {"type": "array"})
            return node.setdefault("items", {"type": "object"})
        return properties.setdefault(part, {"type": "object"})

    def _is_required(self, stats: FieldStatistics) -> bool:
        if not self._state.record_count:
            return False
        return stats.non_null_count >= self._state.record_count * self.config.required_threshold

    def _property_schema(self, stats: FieldStatistics) -> dict[str, Any]:
        observed = stats.non_null_types()
        json_types: list[str] = []
        for value_type in observed:
            json_type = JSON_SCHEMA_TYPES.get(value_type, "string")
            if json_type not in json_types:
                json_types.append(json_type)
        if "integer" in json_types and "number" in json_types:
            json_types.remove("integer")
        if stats.null_count or not json_types:
            json_types.append("null")

        prop: dict[str, Any] = {"type": json_types[0] if len(json_types) == 1 else json_types}

        if "date" in observed:
            prop["format"] = "date-time" if stats.formats.get("dateTime") else "date"

        if stats.numeric_stats:
            prop["minimum"] = stats.numeric_stats.min
            prop["maximum"] = stats.numeric_stats.max

        if stats.is_enum:
            prop["enum"] = list(stats.enum_values)

        return prop
