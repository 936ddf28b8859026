# SPDX-License-Identifier: MIT
"""Tests for field-mapping detection."""

from importer.schema.builder import ProgressiveSchemaBuilder
from importer.schema.field_mapping import (
    LATITUDE_BOUNDS,
    LATITUDE_PATTERNS,
    FieldMappings,
    coordinate_field_confidence,
    detect_field_mappings,
    validate_field_role,
)


def _stats(rows: list[dict]):
    builder = ProgressiveSchemaBuilder()
    builder.process_batch(rows)
    return builder.get_field_statistics()


ENGLISH_ROWS = [
    {
        "title": "Jazz Night in the Park",
        "description": "An evening of live jazz with local bands and food trucks",
        "date": "2024-06-01",
        "venue": "Central Park",
        "address": "Central Park, New York",
        "lat": 40.7812,
        "lng": -73.9665,
    },
    {
        "title": "Open Air Cinema",
        "description": "Classic movies on a big screen under the stars",
        "date": "2024-06-08",
        "venue": "Bryant Park",
        "address": "Bryant Park, New York",
        "lat": 40.7536,
        "lng": -73.9832,
    },
]

GERMAN_ROWS = [
    {
        "titel": "Sommerfest im Stadtpark",
        "beschreibung": "Ein Fest für die ganze Familie mit Musik, Essen und Spielen",
        "datum": "01.07.2024",
        "ort": "Stadtpark Hamburg",
    },
    {
        "titel": "Lange Nacht der Museen",
        "beschreibung": "Die Museen der Stadt sind bis Mitternacht geöffnet",
        "datum": "15.08.2024",
        "ort": "Museumsinsel Berlin",
    },
]


class TestDetectFieldMappings:
    """Test detection of the standard event fields."""

    def test_english_columns(self):
        mappings = detect_field_mappings(_stats(ENGLISH_ROWS), "eng")

        assert mappings.title_path == "title"
        assert mappings.description_path == "description"
        assert mappings.timestamp_path == "date"
        assert mappings.location_name_path == "venue"
        assert mappings.location_path == "address"
        assert mappings.latitude_path == "lat"
        assert mappings.longitude_path == "lng"
        assert mappings.coordinates_path is None
        assert mappings.has_coordinates

    def test_german_columns(self):
        mappings = detect_field_mappings(_stats(GERMAN_ROWS), "deu")

        assert mappings.title_path == "titel"
        assert mappings.description_path == "beschreibung"
        assert mappings.timestamp_path == "datum"
        assert mappings.location_name_path == "ort"
        assert not mappings.has_coordinates

    def test_falls_back_to_english_patterns(self):
        """English headers are still found in a dataset detected as German."""
        mappings = detect_field_mappings(_stats(ENGLISH_ROWS), "deu")
        assert mappings.title_path == "title"
        assert mappings.description_path == "description"

    def test_unknown_language_uses_english(self):
        mappings = detect_field_mappings(_stats(ENGLISH_ROWS), "jpn")
        assert mappings.title_path == "title"

    def test_out_of_range_latitude_is_ignored(self):
        rows = [{"lat": 140.0 + i, "lng": 13.4} for i in range(3)]
        mappings = detect_field_mappings(_stats(rows))
        assert mappings.latitude_path is None
        assert mappings.longitude_path == "lng"

    def test_string_coordinates(self):
        rows = [{"latitude": "52.52", "longitude": "13.405"}, {"latitude": "48.13", "longitude": "11.58"}]
        mappings = detect_field_mappings(_stats(rows))
        assert mappings.latitude_path == "latitude"
        assert mappings.longitude_path == "longitude"

    def test_combined_coordinates(self):
        rows = [{"coordinates": "52.52,13.405"}, {"coordinates": "48.13,11.58"}]
        mappings = detect_field_mappings(_stats(rows))
        assert mappings.coordinates_path == "coordinates"
        assert mappings.coordinates_format == "combined_comma"
        assert mappings.has_coordinates

    def test_location_holding_coordinates_is_not_an_address(self):
        rows = [{"location": "52.52,13.405"}, {"location": "48.13,11.58"}]
        mappings = detect_field_mappings(_stats(rows))
        assert mappings.coordinates_path == "location"
        assert mappings.location_path is None

    def test_unix_timestamp_column(self):
        rows = [{"timestamp": 1_700_000_000 + i * 3600} for i in range(3)]
        assert detect_field_mappings(_stats(rows)).timestamp_path == "timestamp"

    def test_numeric_title_is_rejected(self):
        rows = [{"name": i} for i in range(5)]
        assert detect_field_mappings(_stats(rows)).title_path is None


class TestRoleValidation:
    """Test content checks behind the name patterns."""

    def test_free_text_date_column(self):
        rows = [{"when": "June 21, 2024"}, {"when": "July 4, 2024"}, {"when": "soon"}]
        stats = _stats(rows)["when"]
        assert validate_field_role(stats, "timestamp") > 0

    def test_text_column_is_not_a_timestamp(self):
        stats = _stats([{"date": "tbd"}, {"date": "later"}])["date"]
        assert validate_field_role(stats, "timestamp") == 0

    def test_coordinate_confidence(self):
        stats = _stats([{"lat": 52.52}, {"lat": 48.13}, {"lat": None}])["lat"]
        confidence = coordinate_field_confidence(stats, LATITUDE_PATTERNS, LATITUDE_BOUNDS)
        # exact name, valid range, mixed float/null votes, two thirds complete
        assert round(confidence, 4) == round(0.4 + 0.3 + 2 / 3 * 0.2 + 2 / 3 * 0.1, 4)


class TestFieldMappings:
    """Test the mapping value object."""

    def test_overrides_win(self):
        detected = FieldMappings(title_path="titel", description_path="beschreibung")
        merged = detected.merged_with({"title_path": "name", "description_path": "", "bogus": "x"})

        assert merged.title_path == "name"
        assert merged.description_path == "beschreibung"
        assert detected.title_path == "titel"

    def test_roundtrip(self):
        mappings = FieldMappings(latitude_path="lat", longitude_path="lon")
        assert FieldMappings.from_dict(mappings.to_dict()) == mappings
        assert FieldMappings.from_dict(None) == FieldMappings()
