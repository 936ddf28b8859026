"""
Running per-field statistics for progressive schema inference.

Every value seen for a field updates its ``FieldStatistics``: a vote for
the value's inferred type, null counts, numeric and date ranges, string
format counters and a bounded reservoir of distinct values used for the
final enum verdict. Statistics only ever accumulate evidence.
"""

import json
import math
import re
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any

from importer.normalizers.dates import (
    ISO_DATETIME_PREFIX,
    ISO_DAY_PATTERN,
    is_date_string,
    parse_timestamp,
)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
URL_PATTERN = re.compile(r"^https?://\S+")
NUMERIC_STRING_PATTERN = re.compile(r"^-?\d+(\.\d+)?$")

NUMERIC_TYPES = ("integer", "float")


def is_null(value: Any) -> bool:
    """None and NaN both count as missing."""
    return value is None or (isinstance(value, float) and math.isnan(value))


def infer_value_type(value: Any) -> str:
    """
    Infer the primitive type of a single cell value.

    Returns one of: null, boolean, integer, float, date, string, array, object.
    """
    if is_null(value):
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "float"
    if isinstance(value, (datetime, date)):
        return "date"
    if isinstance(value, str):
        if is_date_string(value):
            return "date"
        if value.lower() in ("true", "false"):
            return "boolean"
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return "string"


def value_key(value: Any) -> str:
    """Stable key for the distinct-value reservoir (keeps 1, 1.0, "1" and True apart)."""
    if isinstance(value, (datetime, date)):
        value = value.isoformat()
    return json.dumps(value, ensure_ascii=False)


@dataclass
class NumericStats:
    min: float
    max: float
    total: float
    count: int
    is_integer: bool

    @property
    def avg(self) -> float:
        return self.total / self.count if self.count else 0.0

    def update(self, value: float) -> None:
        self.min = min(self.min, value)
        self.max = max(self.max, value)
        self.total += value
        self.count += 1
        self.is_integer = self.is_integer and float(value).is_integer()


@dataclass
class FieldStatistics:
    """Running aggregate for one field path."""

    path: str
    depth: int = 0
    occurrences: int = 0
    null_count: int = 0
    type_distribution: dict[str, int] = field(default_factory=dict)
    formats: dict[str, int] = field(default_factory=dict)
    numeric_stats: NumericStats | None = None
    min_date: str | None = None
    max_date: str | None = None
    # Distinct non-null values (keyed by value_key) with their counts
    value_counts: dict[str, int] = field(default_factory=dict)
    overflowed: bool = False
    is_enum: bool = False
    enum_values: list[Any] = field(default_factory=list)

    @classmethod
    def for_path(cls, path: str) -> "FieldStatistics":
        return cls(path=path, depth=path.count("."))

    @property
    def name(self) -> str:
        """Last segment of the path."""
        return self.path.split(".")[-1]

    @property
    def non_null_count(self) -> int:
        return self.occurrences - self.null_count

    @property
    def unique_samples(self) -> list[Any]:
        return [json.loads(key) for key in self.value_counts]

    @property
    def unique_values(self) -> int:
        return len(self.value_counts)

    def type_share(self, *types: str) -> float:
        """Share of occurrences whose inferred type is one of ``types``."""
        if not self.occurrences:
            return 0.0
        return sum(self.type_distribution.get(t, 0) for t in types) / self.occurrences

    def non_null_types(self) -> list[str]:
        """Observed non-null types, most frequent first."""
        votes = [(t, c) for t, c in self.type_distribution.items() if t != "null" and c > 0]
        return [t for t, _ in sorted(votes, key=lambda item: (-item[1], item[0]))]

    def update(self, value: Any, max_unique_values: int) -> str:
        """Record one observed value and return its inferred type."""
        self.occurrences += 1
        value_type = infer_value_type(value)
        self.type_distribution[value_type] = self.type_distribution.get(value_type, 0) + 1

        if value_type == "null":
            self.null_count += 1
            return value_type

        if value_type in NUMERIC_TYPES:
            number = float(value)
            if self.numeric_stats is None:
                self.numeric_stats = NumericStats(
                    min=number, max=number, total=number, count=1, is_integer=number.is_integer()
                )
            else:
                self.numeric_stats.update(number)
        elif value_type == "date":
            self._update_date_range(value)

        if isinstance(value, str):
            self._detect_formats(value)

        if not isinstance(value, (list, tuple, dict)):
            self._track_value(value, max_unique_values)

        return value_type

    def _update_date_range(self, value: Any) -> None:
        parsed = parse_timestamp(value)
        if parsed is None:
            return
        if self.min_date is None or parsed < datetime.fromisoformat(self.min_date):
            self.min_date = parsed.isoformat()
        if self.max_date is None or parsed > datetime.fromisoformat(self.max_date):
            self.max_date = parsed.isoformat()

    def _detect_formats(self, value: str) -> None:
        formats = self.formats
        if EMAIL_PATTERN.match(value):
            formats["email"] = formats.get("email", 0) + 1
        if URL_PATTERN.match(value):
            formats["url"] = formats.get("url", 0) + 1
        if ISO_DATETIME_PREFIX.match(value):
            formats["dateTime"] = formats.get("dateTime", 0) + 1
        if ISO_DAY_PATTERN.match(value):
            formats["date"] = formats.get("date", 0) + 1
        if NUMERIC_STRING_PATTERN.match(value):
            formats["numeric"] = formats.get("numeric", 0) + 1

    def _track_value(self, value: Any, max_unique_values: int) -> None:
        key = value_key(value)
        if key in self.value_counts:
            self.value_counts[key] += 1
        elif len(self.value_counts) < max_unique_values:
            self.value_counts[key] = 1
        else:
            self.overflowed = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FieldStatistics":
        numeric = data.get("numeric_stats")
        return cls(
            path=data["path"],
            depth=data.get("depth", 0),
            occurrences=data.get("occurrences", 0),
            null_count=data.get("null_count", 0),
            type_distribution=dict(data.get("type_distribution", {})),
            formats=dict(data.get("formats", {})),
            numeric_stats=NumericStats(**numeric) if numeric else None,
            min_date=data.get("min_date"),
            max_date=data.get("max_date"),
            value_counts=dict(data.get("value_counts", {})),
            overflowed=data.get("overflowed", False),
            is_enum=data.get("is_enum", False),
            enum_values=list(data.get("enum_values", [])),
        )
