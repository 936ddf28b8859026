"""
Duplicate analysis.

Rows are duplicates either of an earlier row in the same sheet (internal)
or of an event already stored for the dataset (external). The analysis
runs batch by batch; the ids seen so far travel with the job.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from importer.deduplication.ids import IdGenerationError, IdStrategy, generate_unique_id


@dataclass
class DuplicateRows:
    """
    Rows to skip downstream, by source.

    ``internal`` maps a row to the first row carrying the same id,
    ``external`` maps a row to the id already present in the event store.
    A row is only ever recorded in one of them; internal wins.
    """

    internal: dict[int, int] = field(default_factory=dict)
    external: dict[int, str] = field(default_factory=dict)

    @property
    def row_numbers(self) -> set[int]:
        return set(self.internal) | set(self.external)

    def __contains__(self, row_number: int) -> bool:
        return row_number in self.internal or row_number in self.external

    def __len__(self) -> int:
        return len(self.row_numbers)

    def add_internal(self, row_number: int, first_occurrence: int) -> None:
        self.external.pop(row_number, None)
        self.internal[row_number] = first_occurrence

    def add_external(self, row_number: int, unique_id: str) -> None:
        if row_number not in self.internal:
            self.external[row_number] = unique_id

    def merge(self, other: "DuplicateRows") -> "DuplicateRows":
        merged = DuplicateRows(internal=dict(self.internal), external=dict(self.external))
        for row, first in other.internal.items():
            merged.add_internal(row, first)
        for row, unique_id in other.external.items():
            merged.add_external(row, unique_id)
        return merged

    def summary(self, total_rows: int) -> dict[str, int]:
        duplicates = len(self)
        return {
            "total_rows": total_rows,
            "unique_rows": total_rows - duplicates,
            "internal": len(self.internal),
            "external": len(self.external),
            "total": duplicates,
        }

    def to_dict(self) -> dict[str, Any]:
        # JSON object keys are strings
        return {
            "internal": {str(row): first for row, first in sorted(self.internal.items())},
            "external": {str(row): unique_id for row, unique_id in sorted(self.external.items())},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "DuplicateRows":
        data = data or {}
        return cls(
            internal={int(row): int(first) for row, first in (data.get("internal") or {}).items()},
            external={int(row): unique_id for row, unique_id in (data.get("external") or {}).items()},
        )


ExistingIdsLookup = Callable[[list[str]], set[str]]


def analyze_duplicate_batch(
    rows: Iterable[dict[str, Any]],
    start_row: int,
    dataset_id: str,
    strategy: IdStrategy,
    seen_ids: dict[str, int],
    duplicates: DuplicateRows,
    existing_ids: ExistingIdsLookup,
) -> list[tuple[int, str]]:
    """
    Find internal and external duplicates in one batch.

    Updates ``seen_ids`` and ``duplicates`` in place.

    Args:
        rows: The batch's rows
        start_row: Row number of the batch's first row
        dataset_id: Dataset the rows belong to
        strategy: The dataset's id strategy
        seen_ids: Unique id -> first row number, for all earlier rows
        duplicates: Duplicate rows found so far
        existing_ids: Returns which of the given ids already exist as events

    Returns:
        (row number, message) for rows whose id could not be derived;
        such rows are treated as unique
    """
    errors: list[tuple[int, str]] = []
    first_occurrences: dict[str, int] = {}

    for offset, row in enumerate(rows):
        row_number = start_row + offset
        try:
            unique_id = generate_unique_id(row, strategy, dataset_id)
        except IdGenerationError as e:
            errors.append((row_number, str(e)))
            continue

        if unique_id in seen_ids:
            duplicates.add_internal(row_number, seen_ids[unique_id])
        else:
            seen_ids[unique_id] = row_number
            first_occurrences[unique_id] = row_number

    if first_occurrences:
        for unique_id in existing_ids(list(first_occurrences)):
            duplicates.add_external(first_occurrences[unique_id], unique_id)

    logger.debug(
        f"Duplicate batch at row {start_row}: {len(duplicates.internal)} internal, "
        f"{len(duplicates.external)} external so far"
    )
    return errors
