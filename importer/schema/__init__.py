"""Schema inference, comparison and field-mapping detection."""

from importer.schema.builder import (
    BatchResult,
    ProgressiveSchemaBuilder,
    SchemaBuilderConfig,
    SchemaChange,
)
from importer.schema.comparison import SchemaComparison, compare_schemas, generate_change_summary
from importer.schema.field_mapping import FieldMappings, detect_field_mappings
from importer.schema.language import LanguageDetectionResult, detect_language, detect_language_from_samples
from importer.schema.state import SchemaBuilderState, SchemaStateError
from importer.schema.statistics import FieldStatistics

__all__ = [
    "BatchResult",
    "ProgressiveSchemaBuilder",
    "SchemaBuilderConfig",
    "SchemaChange",
    "SchemaBuilderState",
    "SchemaStateError",
    "FieldStatistics",
    "SchemaComparison",
    "compare_schemas",
    "generate_change_summary",
    "FieldMappings",
    "detect_field_mappings",
    "LanguageDetectionResult",
    "detect_language",
    "detect_language_from_samples",
]
