"""
Field-mapping detection.

Guesses which columns hold an event's title, description, date, location
name, address, latitude/longitude or a combined coordinate cell, using
per-language column-name patterns checked against the accumulated field
statistics. A dataset's own overrides always win over detection.
"""

import re
from dataclasses import asdict, dataclass, fields
from typing import Any

from importer.normalizers.coordinates import CoordinateFormat, detect_coordinate_format, parse_coordinate
from importer.normalizers.dates import ISO_DATETIME_PREFIX, is_unix_timestamp, parse_timestamp
from importer.schema.statistics import FieldStatistics


def _compile(*patterns: str) -> list[re.Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


# Ordered most specific first; earlier matches score higher
FIELD_PATTERNS: dict[str, dict[str, list[re.Pattern]]] = {
    "title": {
        "eng": _compile(r"^title$", r"^name$", r"^event.*name$", r"^event.*title$", r"^label$", r"^event$"),
        "deu": _compile(
            r"^titel$", r"^name$", r"^bezeichnung$", r"^veranstaltung.*name$", r"^veranstaltung.*titel$",
            r"^veranstaltung$",
        ),
        "fra": _compile(r"^titre$", r"^nom$", r"^événement.*nom$", r"^événement.*titre$", r"^intitulé$", r"^événement$"),
        "spa": _compile(
            r"^título$", r"^nombre$", r"^evento.*nombre$", r"^evento.*título$", r"^denominación$", r"^evento$"
        ),
        "ita": _compile(r"^titolo$", r"^nome$", r"^evento.*nome$", r"^evento.*titolo$", r"^denominazione$", r"^evento$"),
        "nld": _compile(
            r"^titel$", r"^naam$", r"^evenement.*naam$", r"^evenement.*titel$", r"^benaming$", r"^evenement$"
        ),
        "por": _compile(r"^título$", r"^nome$", r"^evento.*nome$", r"^evento.*título$", r"^denominação$", r"^evento$"),
    },
    "description": {
        "eng": _compile(
            r"^description$", r"^details$", r"^summary$", r"^notes$", r"^text$", r"^content$",
            r"^event.*description$",
        ),
        "deu": _compile(
            r"^beschreibung$", r"^details$", r"^zusammenfassung$", r"^notizen$", r"^text$", r"^inhalt$",
            r"^veranstaltung.*beschreibung$",
        ),
        "fra": _compile(
            r"^description$", r"^détails$", r"^résumé$", r"^notes$", r"^texte$", r"^contenu$",
            r"^événement.*description$",
        ),
        "spa": _compile(
            r"^descripción$", r"^detalles$", r"^resumen$", r"^notas$", r"^texto$", r"^contenido$",
            r"^evento.*descripción$",
        ),
        "ita": _compile(
            r"^descrizione$", r"^dettagli$", r"^sommario$", r"^note$", r"^testo$", r"^contenuto$",
            r"^evento.*descrizione$",
        ),
        "nld": _compile(
            r"^beschrijving$", r"^details$", r"^samenvatting$", r"^notities$", r"^tekst$", r"^inhoud$",
            r"^evenement.*beschrijving$",
        ),
        "por": _compile(
            r"^descrição$", r"^detalhes$", r"^resumo$", r"^notas$", r"^texto$", r"^conteúdo$",
            r"^evento.*descrição$",
        ),
    },
    "location_name": {
        "eng": _compile(
            r"^venue$", r"^venue.*name$", r"^place$", r"^place.*name$", r"^location$", r"^location.*name$",
            r"^site$", r"^spot$", r"^where$",
        ),
        "deu": _compile(
            r"^veranstaltungsort$", r"^ort$", r"^spielstätte$", r"^standort$", r"^platz$", r"^lokalität$", r"^wo$"
        ),
        "fra": _compile(r"^lieu$", r"^endroit$", r"^place$", r"^salle$", r"^site$", r"^où$"),
        "spa": _compile(r"^lugar$", r"^sitio$", r"^local$", r"^sede$", r"^recinto$", r"^donde$", r"^dónde$"),
        "ita": _compile(r"^luogo$", r"^posto$", r"^locale$", r"^sede$", r"^sito$", r"^dove$"),
        "nld": _compile(r"^locatie$", r"^plaats$", r"^plek$", r"^zaal$", r"^site$", r"^waar$"),
        "por": _compile(r"^local$", r"^lugar$", r"^recinto$", r"^sede$", r"^sítio$", r"^onde$"),
    },
    "timestamp": {
        "eng": _compile(
            r"^date$", r"^timestamp$", r"^datetime$", r"^date.*time$", r"^created.*at$", r"^event.*date$",
            r"^event.*time$", r"^start.*date$", r"^time$", r"^when$",
        ),
        "deu": _compile(
            r"^datum$", r"^zeitstempel$", r"^erstellt.*am$", r"^veranstaltung.*datum$", r"^veranstaltung.*zeit$",
            r"^zeit$", r"^wann$",
        ),
        "fra": _compile(
            r"^date$", r"^horodatage$", r"^créé.*le$", r"^événement.*date$", r"^événement.*heure$", r"^heure$",
            r"^quand$",
        ),
        "spa": _compile(
            r"^fecha$", r"^timestamp$", r"^creado.*el$", r"^evento.*fecha$", r"^evento.*hora$", r"^hora$",
            r"^cuándo$",
        ),
        "ita": _compile(
            r"^data$", r"^timestamp$", r"^creato.*il$", r"^evento.*data$", r"^evento.*ora$", r"^ora$", r"^quando$"
        ),
        "nld": _compile(
            r"^datum$", r"^tijdstempel$", r"^gemaakt.*op$", r"^evenement.*datum$", r"^evenement.*tijd$",
            r"^tijd$", r"^wanneer$",
        ),
        "por": _compile(
            r"^data$", r"^timestamp$", r"^criado.*em$", r"^evento.*data$", r"^evento.*hora$", r"^hora$",
            r"^quando$",
        ),
    },
    "location": {
        "eng": _compile(
            r"^address$", r"^addr$", r"^location$", r"^place$", r"^venue$", r"^city$", r"^town$", r"^region$",
            r"^area$", r"^street$", r"^full.*address$", r"^event.*location$", r"^event.*address$",
            r"^event.*place$", r"^postal.*address$",
        ),
        "deu": _compile(
            r"^adresse$", r"^ort$", r"^standort$", r"^platz$", r"^veranstaltungsort$", r"^stadt$", r"^region$",
            r"^straße$", r"^strasse$", r"^vollständige.*adresse$", r"^veranstaltung.*ort$",
            r"^veranstaltung.*adresse$", r"^postadresse$",
        ),
        "fra": _compile(
            r"^adresse$", r"^lieu$", r"^emplacement$", r"^place$", r"^salle$", r"^ville$", r"^région$", r"^rue$",
            r"^adresse.*complète$", r"^événement.*lieu$", r"^événement.*adresse$", r"^adresse.*postale$",
        ),
        "spa": _compile(
            r"^dirección$", r"^lugar$", r"^ubicación$", r"^sitio$", r"^local$", r"^ciudad$", r"^región$",
            r"^calle$", r"^dirección.*completa$", r"^evento.*lugar$", r"^evento.*dirección$",
            r"^dirección.*postal$",
        ),
        "ita": _compile(
            r"^indirizzo$", r"^luogo$", r"^posizione$", r"^posto$", r"^locale$", r"^città$", r"^regione$",
            r"^via$", r"^indirizzo.*completo$", r"^evento.*luogo$", r"^evento.*indirizzo$",
            r"^indirizzo.*postale$",
        ),
        "nld": _compile(
            r"^adres$", r"^locatie$", r"^plaats$", r"^plek$", r"^zaal$", r"^stad$", r"^regio$", r"^straat$",
            r"^volledig.*adres$", r"^evenement.*locatie$", r"^evenement.*adres$", r"^postadres$",
        ),
        "por": _compile(
            r"^endereço$", r"^local$", r"^localização$", r"^lugar$", r"^recinto$", r"^cidade$", r"^região$",
            r"^rua$", r"^endereço.*completo$", r"^evento.*local$", r"^evento.*endereço$", r"^endereço.*postal$",
        ),
    },
}

LATITUDE_PATTERNS = _compile(
    r"^lat(itude)?$",
    r"^lat[_\s.-]?deg(rees)?$",
    r"^y[_\s.-]?coord(inate)?$",
    r"^location[_\s.-]?lat(itude)?$",
    r"^geo[_\s.-]?lat(itude)?$",
    r"^decimal[_\s.-]?lat(itude)?$",
    r"^latitude[_\s.-]?decimal$",
    r"^wgs84[_\s.-]?lat(itude)?$",
    r"^breite$",
    r"^breitengrad$",
)

LONGITUDE_PATTERNS = _compile(
    r"^lon(g|gitude)?$",
    r"^lng$",
    r"^lon[_\s.-]?deg(rees)?$",
    r"^long[_\s.-]?deg(rees)?$",
    r"^x[_\s.-]?coord(inate)?$",
    r"^location[_\s.-]?lon(g|gitude)?$",
    r"^geo[_\s.-]?lon(g|gitude)?$",
    r"^decimal[_\s.-]?lon(g|gitude)?$",
    r"^longitude[_\s.-]?decimal$",
    r"^wgs84[_\s.-]?lon(g|gitude)?$",
    r"^länge$",
    r"^laenge$",
    r"^längengrad$",
)

COMBINED_COORDINATE_PATTERNS = _compile(
    r"^coord(inate)?s?$",
    r"^lat[_\s.-]?lon(g)?$",
    r"^location$",
    r"^geo[_\s.-]?location$",
    r"^position$",
    r"^point$",
    r"^geometry$",
    r"^geo$",
    r"^geolocation$",
    r"^geo[_\s.-]?point$",
    r"^latlng$",
    r"^lat[_\s.-]?lng$",
    r"^lnglat$",
    r"^lng[_\s.-]?lat$",
    r"^koordinaten$",
)

LATITUDE_BOUNDS = (-90.0, 90.0)
LONGITUDE_BOUNDS = (-180.0, 180.0)

# Coordinate columns are judged on this many string samples
COORDINATE_SAMPLE_SIZE = 10


@dataclass
class FieldMappings:
    """Physical column (path) for each logical event role."""

    title_path: str | None = None
    description_path: str | None = None
    location_name_path: str | None = None
    timestamp_path: str | None = None
    latitude_path: str | None = None
    longitude_path: str | None = None
    location_path: str | None = None
    coordinates_path: str | None = None
    coordinates_format: str | None = None

    def merged_with(self, overrides: "FieldMappings | dict[str, Any] | None") -> "FieldMappings":
        """Return a copy where every non-empty override slot replaces the detected one."""
        if overrides is None:
            return FieldMappings(**asdict(self))
        if isinstance(overrides, FieldMappings):
            overrides = asdict(overrides)

        merged = asdict(self)
        known = {f.name for f in fields(self)}
        for slot, value in overrides.items():
            if slot in known and value not in (None, ""):
                merged[slot] = value
        return FieldMappings(**merged)

    @property
    def has_coordinates(self) -> bool:
        return bool((self.latitude_path and self.longitude_path) or self.coordinates_path)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "FieldMappings":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})


def detect_field_mappings(field_stats: dict[str, FieldStatistics], language: str = "eng") -> FieldMappings:
    """
    Detect the standard event fields of a dataset.

    Args:
        field_stats: Statistics for all fields, keyed by path
        language: ISO 639-3 code of the dataset language

    Returns:
        Detected FieldMappings (slots are None when nothing qualified)
    """
    latitude_path = find_coordinate_field(field_stats, LATITUDE_PATTERNS, LATITUDE_BOUNDS)
    longitude_path = find_coordinate_field(field_stats, LONGITUDE_PATTERNS, LONGITUDE_BOUNDS)

    coordinates_path = None
    coordinates_format = None
    if not (latitude_path and longitude_path):
        coordinates_path, coordinates_format = find_combined_coordinate_field(field_stats)

    location_path = detect_field(field_stats, "location", language)
    if location_path and location_path == coordinates_path:
        location_path = None

    return FieldMappings(
        title_path=detect_field(field_stats, "title", language),
        description_path=detect_field(field_stats, "description", language),
        location_name_path=detect_field(field_stats, "location_name", language),
        timestamp_path=detect_field(field_stats, "timestamp", language),
        latitude_path=latitude_path,
        longitude_path=longitude_path,
        location_path=location_path,
        coordinates_path=coordinates_path,
        coordinates_format=coordinates_format,
    )


def detect_field(field_stats: dict[str, FieldStatistics], role: str, language: str) -> str | None:
    """Best matching path for a text role, falling back to English patterns."""
    patterns_by_language = FIELD_PATTERNS[role]
    patterns = patterns_by_language.get(language, patterns_by_language["eng"])

    best = _find_best_match(field_stats, patterns, role)
    if best is None and language != "eng":
        best = _find_best_match(field_stats, patterns_by_language["eng"], role)
    return best[0] if best else None


def _pattern_index(name: str, patterns: list[re.Pattern]) -> int:
    for index, pattern in enumerate(patterns):
        if pattern.search(name):
            return index
    return -1


def _find_best_match(
    field_stats: dict[str, FieldStatistics],
    patterns: list[re.Pattern],
    role: str,
) -> tuple[str, float] | None:
    best: tuple[str, float] | None = None
    for path, stats in field_stats.items():
        index = _pattern_index(stats.name, patterns)
        if index == -1:
            continue

        validation = validate_field_role(stats, role)
        if validation == 0:
            continue

        score = (1 - index / len(patterns)) * 0.6 + validation * 0.4
        if best is None or score > best[1]:
            best = (path, score)
    return best


def _average_string_length(stats: FieldStatistics) -> float | None:
    strings = [v for v in stats.unique_samples if isinstance(v, str)]
    if not strings:
        return None
    return sum(len(s) for s in strings) / len(strings)


def _score_length(avg: float, bands: list[tuple[float, float, float]], short: tuple[float, float], fallback: float) -> float:
    for low, high, score in bands:
        if low <= avg <= high:
            return score
    if avg < short[0]:
        return short[1]
    return fallback


def validate_field_role(stats: FieldStatistics, role: str) -> float:
    """Score in [0, 1] for how well a field's content fits a role (0 disqualifies)."""
    if not stats.occurrences:
        return 0.0

    if role == "timestamp":
        return _validate_timestamp(stats)

    string_share = stats.type_share("string")
    minimum_share = 0.8 if role == "title" else 0.7
    if string_share < minimum_share:
        return 0.0

    if not stats.value_counts:
        return 0.5
    avg = _average_string_length(stats)
    if avg is None:
        return 0.0

    if role == "title":
        if avg < 3 or avg > 500:
            return 0.3
        return _score_length(avg, [(10, 100, 1.0), (5, 200, 0.8)], (0, 0), 0.6)
    if role == "description":
        if avg > 1000:
            return 0.7
        return _score_length(avg, [(20, 500, 1.0), (10, 1000, 0.8)], (5, 0.2), 0.6)
    if role == "location_name":
        if avg > 100:
            return 0.6
        return _score_length(avg, [(3, 50, 1.0), (2, 100, 0.8)], (2, 0.2), 0.5)
    if role == "location":
        if avg > 500:
            return 0.6
        return _score_length(avg, [(3, 100, 1.0), (2, 500, 0.8)], (2, 0.2), 0.5)
    return 0.0


def _validate_timestamp(stats: FieldStatistics) -> float:
    samples = stats.unique_samples

    # Native dates or ISO datetimes
    date_share = stats.type_share("date")
    if date_share > 0.7 and samples:
        iso = [v for v in samples if isinstance(v, str) and ISO_DATETIME_PREFIX.match(v)]
        parsed = [v for v in samples if parse_timestamp(v) is not None]
        if len(iso) / len(samples) >= 0.7 or len(parsed) / len(samples) >= 0.7:
            return 1.0
        if len(parsed) / len(samples) >= 0.5:
            return 0.8

    date_formats = stats.formats.get("date", 0) + stats.formats.get("dateTime", 0)
    if date_formats:
        return min(1.0, 0.7 + date_formats / stats.occurrences * 0.3)

    string_share = stats.type_share("string", "date")
    strings = [v for v in samples if isinstance(v, str)][:10]
    if string_share > 0.5 and strings:
        valid = sum(1 for v in strings if parse_timestamp(v) is not None) / len(strings)
        if valid >= 0.7:
            return 0.9
        if valid >= 0.5:
            return 0.7
        if valid >= 0.3:
            return 0.5

    numeric = stats.numeric_stats
    if numeric and is_unix_timestamp(numeric.min) and is_unix_timestamp(numeric.max):
        return 0.8

    return 0.0


def _is_numeric_coordinate(stats: FieldStatistics, bounds: tuple[float, float]) -> bool:
    numeric = stats.numeric_stats
    return numeric is not None and bounds[0] <= numeric.min and numeric.max <= bounds[1]


def _string_coordinate_share(stats: FieldStatistics, bounds: tuple[float, float]) -> tuple[int, int]:
    valid = total = 0
    for sample in stats.unique_samples[:COORDINATE_SAMPLE_SIZE]:
        if isinstance(sample, str) and sample.strip():
            parsed = parse_coordinate(sample)
            if parsed is not None:
                total += 1
                if bounds[0] <= parsed <= bounds[1]:
                    valid += 1
    return valid, total


def is_valid_coordinate_field(stats: FieldStatistics, bounds: tuple[float, float]) -> bool:
    if _is_numeric_coordinate(stats, bounds):
        return True
    if stats.type_distribution.get("string", 0) > 0:
        valid, total = _string_coordinate_share(stats, bounds)
        return total > 0 and valid / total >= 0.7
    return False


def coordinate_field_confidence(stats: FieldStatistics, patterns: list[re.Pattern], bounds: tuple[float, float]) -> float:
    """
    Confidence that a field holds one coordinate axis.

    Pattern quality (0.4) + type validity (0.3) + type consistency (0.2)
    + completeness (0.1).
    """
    index = _pattern_index(stats.name, patterns)
    pattern_score = (1 - index / len(patterns)) * 0.4 if index != -1 else 0.0

    type_score = 0.0
    if stats.numeric_stats is not None:
        type_score = 0.3 if _is_numeric_coordinate(stats, bounds) else 0.0
    elif stats.type_distribution.get("string", 0) > 0:
        valid, _ = _string_coordinate_share(stats, bounds)
        strings = sum(1 for s in stats.unique_samples[:COORDINATE_SAMPLE_SIZE] if isinstance(s, str) and s.strip())
        type_score = valid / strings * 0.3 if strings else 0.0

    total_votes = sum(stats.type_distribution.values())
    consistency = max(stats.type_distribution.values()) / total_votes * 0.2 if total_votes else 0.0
    completeness = stats.non_null_count / stats.occurrences * 0.1 if stats.occurrences else 0.0

    return pattern_score + type_score + consistency + completeness


def find_coordinate_field(
    field_stats: dict[str, FieldStatistics],
    patterns: list[re.Pattern],
    bounds: tuple[float, float],
) -> str | None:
    best_path = None
    best_confidence = 0.0
    for path, stats in field_stats.items():
        if _pattern_index(stats.name, patterns) == -1 or not is_valid_coordinate_field(stats, bounds):
            continue
        confidence = coordinate_field_confidence(stats, patterns, bounds)
        if confidence > best_confidence:
            best_path, best_confidence = path, confidence
    return best_path


def find_combined_coordinate_field(field_stats: dict[str, FieldStatistics]) -> tuple[str | None, str | None]:
    """Column holding whole coordinate pairs, with the layout its samples use."""
    for path, stats in field_stats.items():
        if _pattern_index(stats.name, COMBINED_COORDINATE_PATTERNS) == -1:
            continue
        fmt = detect_coordinate_format(stats.unique_samples[:COORDINATE_SAMPLE_SIZE])
        if fmt != CoordinateFormat.UNKNOWN:
            return path, fmt.value
    return None, None
