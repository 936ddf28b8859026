"""
Coordinate parsing, validation and repair.

Spreadsheets carry coordinates in many notations: plain decimal degrees,
degrees-minutes-seconds, degrees with decimal minutes, hemisphere suffixes
and single cells holding a whole pair. The helpers here turn those into
decimal degrees, classify suspicious values and repair swapped
latitude/longitude pairs when asked to.
"""

import json
import math
import re
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

DECIMAL_PATTERN = re.compile(r"^[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?$")
DMS_PATTERN = re.compile(
    r"""^(-?\d{1,3})\s*[°\s]\s*(\d{1,2})\s*['′\s]\s*(\d{1,2}(?:\.\d{1,6})?)\s*(?:"|″|'')?\s*([NSEW])?$""",
    re.IGNORECASE,
)
DEGREES_MINUTES_PATTERN = re.compile(
    r"^(-?\d{1,3})\s*[°\s]\s*(\d{1,2}(?:\.\d{1,6})?)\s*['′]?\s*([NSEW])?$",
    re.IGNORECASE,
)
DIRECTIONAL_PATTERN = re.compile(r"^(-?\d{1,3}(?:\.\d{1,10})?)\s*°?\s*([NSEW])$", re.IGNORECASE)

_NUMBER = r"(-?\d{1,3}(?:\.\d{1,10})?)"
COMMA_PAIR_PATTERN = re.compile(rf"^{_NUMBER}\s*,\s*{_NUMBER}$")
SPACE_PAIR_PATTERN = re.compile(rf"^{_NUMBER}\s+{_NUMBER}$")
BRACKET_PAIR_PATTERN = re.compile(rf"^\[\s*{_NUMBER}\s*,\s*{_NUMBER}\s*\]$")

# Values that show up as defaults or test data rather than real places
PLACEHOLDER_COORDINATES = (
    (0.0, 0.0),
    (1.0, 1.0),
    (-1.0, -1.0),
    (12.345678, 12.345678),
)
PLACEHOLDER_TOLERANCE = 0.0001

SWAP_DETECTION_RATIO = 0.7


class ValidationStatus(str, Enum):
    """Outcome of validating a coordinate pair."""

    VALID = "valid"
    OUT_OF_RANGE = "out_of_range"
    SUSPICIOUS_ZERO = "suspicious_zero"
    SWAPPED = "swapped"
    INVALID = "invalid"


class CoordinateFormat(str, Enum):
    """Layouts of a single cell holding both coordinates."""

    COMBINED_COMMA = "combined_comma"
    COMBINED_SPACE = "combined_space"
    GEOJSON = "geojson"
    BRACKETS = "brackets"
    UNKNOWN = "unknown"


@dataclass
class ValidatedCoordinates:
    """A coordinate pair after range checks and optional swap repair."""

    latitude: float
    longitude: float
    is_valid: bool
    validation_status: ValidationStatus
    confidence: float
    was_swapped: bool = False
    original_latitude: float | None = None
    original_longitude: float | None = None


@dataclass
class CoordinateExtraction:
    """Coordinates pulled out of a combined cell."""

    latitude: float | None
    longitude: float | None
    format: CoordinateFormat
    is_valid: bool


def is_valid_coordinates(lat: float, lon: float) -> bool:
    """Check if latitude and longitude are within WGS84 bounds.

    Args:
        lat: Latitude in degrees
        lon: Longitude in degrees

    Returns:
        True if coordinates are valid, False otherwise
    """
    return -90 <= lat <= 90 and -180 <= lon <= 180


def has_swap_signature(lat: float, lon: float) -> bool:
    """True when lat only makes sense as a longitude and lon fits as a latitude."""
    return 90 < abs(lat) <= 180 and abs(lon) <= 90


def parse_coordinate(value: Any) -> Optional[float]:
    """
    Parse a single coordinate value into decimal degrees.

    Supported notations, tried in this order:
    - decimal degrees ("40.7128", "-74.006", numbers)
    - degrees, minutes, seconds ("40°42'46\\"N", "40 42 46 N")
    - degrees and decimal minutes ("40°42.768'N")
    - decimal degrees with hemisphere suffix ("74.0060 W", "74.0060W")

    A hemisphere of S or W makes the result negative, as does a negative
    degree component.

    Args:
        value: Raw cell value

    Returns:
        Decimal degrees, or None if the value cannot be parsed
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return None if math.isnan(number) or math.isinf(number) else number
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    if DECIMAL_PATTERN.match(text):
        number = float(text)
        return None if math.isinf(number) else number

    match = DMS_PATTERN.match(text)
    if match:
        degrees, minutes, seconds, direction = match.groups()
        return _to_decimal(degrees, float(minutes), float(seconds), direction)

    match = DEGREES_MINUTES_PATTERN.match(text)
    if match:
        degrees, minutes, direction = match.groups()
        return _to_decimal(degrees, float(minutes), 0.0, direction)

    match = DIRECTIONAL_PATTERN.match(text)
    if match:
        magnitude, direction = match.groups()
        number = abs(float(magnitude))
        return -number if direction.upper() in ("S", "W") or magnitude.startswith("-") else number

    return None


def _to_decimal(degrees: str, minutes: float, seconds: float, direction: str | None) -> Optional[float]:
    if minutes >= 60 or seconds >= 60:
        return None
    value = abs(int(degrees)) + minutes / 60 + seconds / 3600
    negative = degrees.startswith("-") or (direction is not None and direction.upper() in ("S", "W"))
    return -value if negative else value


def _is_missing(value: float | None) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def validate_coordinates(
    latitude: float | None,
    longitude: float | None,
    auto_fix: bool = True,
) -> ValidatedCoordinates:
    """
    Validate a coordinate pair, optionally repairing swapped axes.

    Rules are applied in order: missing values, the (0, 0) placeholder,
    the swap signature, range checks. The swap check must come before the
    range check because a latitude that only fits as a longitude is the
    mark of a swap rather than a generic bad value.

    Args:
        latitude: Latitude in decimal degrees
        longitude: Longitude in decimal degrees
        auto_fix: Swap the values back when the swap signature is found

    Returns:
        ValidatedCoordinates describing the outcome
    """
    if _is_missing(latitude) or _is_missing(longitude):
        return ValidatedCoordinates(
            latitude=0.0,
            longitude=0.0,
            is_valid=False,
            validation_status=ValidationStatus.INVALID,
            confidence=0.0,
        )

    lat = float(latitude)
    lon = float(longitude)

    if lat == 0 and lon == 0:
        return ValidatedCoordinates(
            latitude=lat,
            longitude=lon,
            is_valid=False,
            validation_status=ValidationStatus.SUSPICIOUS_ZERO,
            confidence=0.1,
        )

    if has_swap_signature(lat, lon):
        if auto_fix:
            return ValidatedCoordinates(
                latitude=lon,
                longitude=lat,
                is_valid=True,
                validation_status=ValidationStatus.SWAPPED,
                confidence=0.8,
                was_swapped=True,
                original_latitude=lat,
                original_longitude=lon,
            )
        return ValidatedCoordinates(
            latitude=lat,
            longitude=lon,
            is_valid=False,
            validation_status=ValidationStatus.SWAPPED,
            confidence=0.3,
        )

    if not is_valid_coordinates(lat, lon):
        return ValidatedCoordinates(
            latitude=lat,
            longitude=lon,
            is_valid=False,
            validation_status=ValidationStatus.OUT_OF_RANGE,
            confidence=0.0,
        )

    return ValidatedCoordinates(
        latitude=lat,
        longitude=lon,
        is_valid=True,
        validation_status=ValidationStatus.VALID,
        confidence=1.0,
    )


def _extraction(lat: float, lon: float, fmt: CoordinateFormat) -> CoordinateExtraction:
    # Same rules as separate columns: (0, 0) is rejected, swaps are repaired
    validated = validate_coordinates(lat, lon)
    return CoordinateExtraction(
        latitude=validated.latitude,
        longitude=validated.longitude,
        format=fmt,
        is_valid=validated.is_valid,
    )


def _extract_pair(pattern: re.Pattern, text: str, fmt: CoordinateFormat) -> CoordinateExtraction | None:
    match = pattern.match(text)
    if not match:
        return None
    return _extraction(float(match.group(1)), float(match.group(2)), fmt)


def _extract_geojson(value: Any) -> CoordinateExtraction | None:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return None
    if not isinstance(value, dict) or value.get("type") != "Point":
        return None

    coords = value.get("coordinates")
    if not isinstance(coords, (list, tuple)) or len(coords) < 2:
        return None
    lon, lat = coords[0], coords[1]
    if any(isinstance(c, bool) or not isinstance(c, (int, float)) for c in (lon, lat)):
        return None
    # GeoJSON stores [longitude, latitude]
    return _extraction(float(lat), float(lon), CoordinateFormat.GEOJSON)


def extract_from_combined(value: Any, fmt: CoordinateFormat | str = CoordinateFormat.UNKNOWN) -> CoordinateExtraction:
    """
    Extract a coordinate pair from a single cell.

    Args:
        value: Cell content, e.g. "40.7128,-74.0060", "40.7128 -74.0060",
            a GeoJSON Point (dict or JSON text) or "[40.7128, -74.0060]"
        fmt: Expected layout; UNKNOWN tries comma, space and brackets in turn
            and keeps the first layout that yields a valid pair. BRACKETS may
            also be passed explicitly to accept only "[lat, lon]".

    Returns:
        CoordinateExtraction; latitude/longitude are None when nothing matched.
        A parsed pair goes through validate_coordinates, so (0, 0) is not
        valid and a swapped pair comes back repaired.
    """
    fmt = CoordinateFormat(fmt)
    failed = CoordinateExtraction(latitude=None, longitude=None, format=fmt, is_valid=False)

    if value is None or value == "":
        return failed

    if fmt == CoordinateFormat.GEOJSON or (fmt == CoordinateFormat.UNKNOWN and isinstance(value, dict)):
        return _extract_geojson(value) or failed

    if not isinstance(value, str):
        return failed
    text = value.strip()

    if fmt == CoordinateFormat.COMBINED_COMMA:
        return _extract_pair(COMMA_PAIR_PATTERN, text, fmt) or failed
    if fmt == CoordinateFormat.COMBINED_SPACE:
        return _extract_pair(SPACE_PAIR_PATTERN, text, fmt) or failed
    if fmt == CoordinateFormat.BRACKETS:
        return _extract_pair(BRACKET_PAIR_PATTERN, text, fmt) or failed

    candidates = [
        _extract_pair(pattern, text, layout)
        for pattern, layout in (
            (COMMA_PAIR_PATTERN, CoordinateFormat.COMBINED_COMMA),
            (SPACE_PAIR_PATTERN, CoordinateFormat.COMBINED_SPACE),
            (BRACKET_PAIR_PATTERN, CoordinateFormat.BRACKETS),
        )
    ]
    matched = [c for c in candidates if c is not None]
    # First valid layout wins; otherwise report the first one that parsed
    return next((c for c in matched if c.is_valid), matched[0] if matched else failed)


def detect_coordinate_format(values: Iterable[Any], min_ratio: float = 0.7) -> CoordinateFormat:
    """Guess the combined-cell layout shared by most of the given samples.

    Returns UNKNOWN unless at least ``min_ratio`` of the non-empty samples
    extract to valid coordinates in the same layout.
    """
    samples = [v for v in values if v not in (None, "")]
    if not samples:
        return CoordinateFormat.UNKNOWN

    formats = Counter()
    for sample in samples:
        extraction = extract_from_combined(sample)
        if extraction.is_valid:
            formats[extraction.format] += 1

    if not formats:
        return CoordinateFormat.UNKNOWN
    best, count = formats.most_common(1)[0]
    return best if count / len(samples) >= min_ratio else CoordinateFormat.UNKNOWN


def detect_swapped_coordinates(samples: Sequence[tuple[float | None, float | None]]) -> bool:
    """
    Decide whether a dataset stores latitude and longitude the wrong way round.

    Args:
        samples: (latitude, longitude) pairs as imported

    Returns:
        True when more than 70% of the samples carry the swap signature
    """
    if not samples:
        return False

    swapped = sum(
        1
        for lat, lon in samples
        if not _is_missing(lat) and not _is_missing(lon) and has_swap_signature(lat, lon)
    )
    return swapped > len(samples) * SWAP_DETECTION_RATIO


def calculate_confidence(lat: float, lon: float) -> float:
    """
    Score how trustworthy a coordinate pair looks.

    Starts at 1.0 and multiplies in penalties for whole-degree values,
    values near the poles or the antimeridian and known placeholder pairs.

    Args:
        lat: Latitude in decimal degrees
        lon: Longitude in decimal degrees

    Returns:
        Confidence in (0, 1]
    """
    confidence = 1.0

    if float(lat).is_integer() and float(lon).is_integer():
        confidence *= 0.9

    if abs(lat) > 85 or abs(lon) > 175:
        confidence *= 0.95

    for placeholder_lat, placeholder_lon in PLACEHOLDER_COORDINATES:
        if abs(lat - placeholder_lat) < PLACEHOLDER_TOLERANCE and abs(lon - placeholder_lon) < PLACEHOLDER_TOLERANCE:
            confidence *= 0.5
            break

    return confidence
