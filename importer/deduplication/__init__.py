"""
Deduplication components.

These modules derive a unique id for every imported row and find rows
that repeat an earlier row or an already imported event.
"""

from importer.deduplication.analysis import DuplicateRows, analyze_duplicate_batch
from importer.deduplication.ids import (
    IdGenerationError,
    IdStrategy,
    IdStrategyType,
    generate_unique_id,
    get_by_path,
    resolve_unique_id,
)

__all__ = [
    "DuplicateRows",
    "IdGenerationError",
    "IdStrategy",
    "IdStrategyType",
    "analyze_duplicate_batch",
    "generate_unique_id",
    "get_by_path",
    "resolve_unique_id",
]
