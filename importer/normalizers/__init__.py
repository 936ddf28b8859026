"""Value normalizers: coordinates and timestamps."""

from importer.normalizers.coordinates import (
    CoordinateExtraction,
    CoordinateFormat,
    ValidatedCoordinates,
    ValidationStatus,
    calculate_confidence,
    detect_coordinate_format,
    detect_swapped_coordinates,
    extract_from_combined,
    parse_coordinate,
    validate_coordinates,
)
from importer.normalizers.dates import is_date_string, parse_timestamp

__all__ = [
    "CoordinateExtraction",
    "CoordinateFormat",
    "ValidatedCoordinates",
    "ValidationStatus",
    "calculate_confidence",
    "detect_coordinate_format",
    "detect_swapped_coordinates",
    "extract_from_combined",
    "parse_coordinate",
    "validate_coordinates",
    "is_date_string",
    "parse_timestamp",
]
