"""
Natural-language detection for sampled dataset text.

Field-mapping detection needs to know which language the column names
and values are written in. Detection scores the supported languages by
their most common function words, with a small bonus for characters that
are typical of each language, over headers and string cells that carry
actual words (identifiers, numbers, dates, URLs and e-mail addresses are
skipped).
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

SUPPORTED_LANGUAGES = ("eng", "deu", "fra", "spa", "ita", "nld", "por")

LANGUAGE_NAMES = {
    "eng": "English",
    "deu": "German",
    "fra": "French",
    "spa": "Spanish",
    "ita": "Italian",
    "nld": "Dutch",
    "por": "Portuguese",
    "und": "Unknown",
}

MIN_TEXT_LENGTH = 20
RELIABILITY_THRESHOLD = 0.5

STOPWORDS = {
    "eng": {
        "the", "and", "of", "to", "in", "is", "for", "on", "with", "at", "by", "from", "this", "that",
        "are", "was", "be", "an", "or", "as", "it", "its", "will", "event", "date", "name", "title",
        "description", "location", "city", "street", "park", "new", "all", "our", "you",
    },
    "deu": {
        "der", "die", "das", "und", "ist", "im", "mit", "von", "zu", "den", "des", "ein", "eine",
        "einer", "auf", "für", "nicht", "sich", "auch", "über", "am", "bei", "dem", "nach", "wird",
        "aus", "titel", "beschreibung", "datum", "ort", "veranstaltung", "stadt", "straße", "strasse",
    },
    "fra": {
        "le", "la", "les", "et", "des", "du", "un", "une", "est", "pour", "dans", "sur", "avec", "au",
        "aux", "par", "qui", "que", "ce", "ne", "pas", "titre", "lieu", "ville", "rue", "événement",
        "adresse", "nom", "sont",
    },
    "spa": {
        "el", "los", "las", "y", "del", "es", "por", "con", "para", "una", "en", "al", "se", "que",
        "su", "sus", "como", "fecha", "título", "lugar", "ciudad", "calle", "evento", "descripción",
        "nombre", "dirección",
    },
    "ita": {
        "il", "lo", "gli", "della", "delle", "dei", "del", "e", "è", "per", "con", "una", "uno", "nel",
        "nella", "sul", "che", "di", "da", "titolo", "luogo", "città", "via", "evento", "descrizione",
        "nome", "indirizzo", "sono",
    },
    "nld": {
        "de", "het", "een", "en", "van", "is", "op", "voor", "met", "aan", "bij", "niet", "zijn",
        "ook", "naar", "dit", "wordt", "titel", "datum", "locatie", "plaats", "stad", "straat",
        "evenement", "beschrijving", "naam", "adres",
    },
    "por": {
        "o", "os", "as", "e", "do", "da", "dos", "das", "em", "no", "na", "um", "uma", "para", "com",
        "não", "por", "que", "título", "local", "cidade", "rua", "evento", "descrição", "nome",
        "endereço", "são",
    },
}

CHARACTER_HINTS = {
    "deu": "äöüß",
    "fra": "èêëçœû",
    "spa": "ñ¿¡",
    "ita": "ìò",
    "por": "ãõ",
}
CHARACTER_HINT_WEIGHT = 0.5

WORD_PATTERN = re.compile(r"[^\W\d_]+")

# Values that carry no language signal
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[a-z]{2,}$", re.IGNORECASE)
URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)
ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}(T\d{2}:\d{2}:\d{2})?")
NUMBER_PATTERN = re.compile(r"^-?\d+(\.\d+)?$")
COORDINATE_PATTERN = re.compile(r"^-?\d+\.\d+,\s?-?\d+\.\d+$")
UUID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
NUMERIC_WITH_SEPARATORS = re.compile(r"^[\d\s./-]+$")


@dataclass
class LanguageDetectionResult:
    code: str
    name: str
    confidence: float
    is_reliable: bool


DEFAULT_RESULT = LanguageDetectionResult(code="eng", name="English", confidence=0.0, is_reliable=False)


def is_non_text_value(value: str) -> bool:
    """True for strings that look like identifiers, numbers, dates, URLs or e-mails."""
    return bool(
        EMAIL_PATTERN.match(value)
        or URL_PATTERN.match(value)
        or ISO_DATE_PATTERN.match(value)
        or NUMBER_PATTERN.match(value)
        or COORDINATE_PATTERN.match(value)
        or UUID_PATTERN.match(value)
        or NUMERIC_WITH_SEPARATORS.match(value)
    )


def extract_text_for_language_detection(rows: Iterable[dict[str, Any]], headers: Iterable[str]) -> str:
    """Join headers and word-bearing string cells into one text blob."""
    parts = [h for h in headers if isinstance(h, str) and len(h) > 2 and not is_non_text_value(h)]
    for row in rows:
        for value in row.values():
            if isinstance(value, str):
                text = value.strip()
                if len(text) >= 3 and not is_non_text_value(text):
                    parts.append(text)
    return " ".join(parts)


def detect_language(text: str) -> LanguageDetectionResult:
    """
    Detect the language of a text blob.

    Texts shorter than 20 characters, or without any recognised words,
    default to English with zero confidence.
    """
    if len(text) < MIN_TEXT_LENGTH:
        return DEFAULT_RESULT

    lowered = text.lower()
    words = WORD_PATTERN.findall(lowered)

    scores = {code: 0.0 for code in SUPPORTED_LANGUAGES}
    for word in words:
        for code in SUPPORTED_LANGUAGES:
            if word in STOPWORDS[code]:
                scores[code] += 1
    for code, characters in CHARACTER_HINTS.items():
        scores[code] += sum(lowered.count(c) for c in characters) * CHARACTER_HINT_WEIGHT
    # Dutch "ij" digraph
    scores["nld"] += sum(1 for word in words if "ij" in word) * CHARACTER_HINT_WEIGHT

    total = sum(scores.values())
    if total == 0:
        return DEFAULT_RESULT

    ranked = sorted(SUPPORTED_LANGUAGES, key=lambda code: (-scores[code], SUPPORTED_LANGUAGES.index(code)))
    top, runner_up = ranked[0], ranked[1]
    share = scores[top] / total
    gap = share - scores[runner_up] / total
    confidence = min(1.0, share + gap * 0.5)

    return LanguageDetectionResult(
        code=top,
        name=LANGUAGE_NAMES[top],
        confidence=confidence,
        is_reliable=confidence >= RELIABILITY_THRESHOLD,
    )


def detect_language_from_samples(rows: Iterable[dict[str, Any]], headers: Iterable[str]) -> LanguageDetectionResult:
    """Detect the language of a dataset from its headers and sampled rows."""
    return detect_language(extract_text_for_language_detection(rows, headers))


def is_supported_language(code: str | None) -> bool:
    return code in SUPPORTED_LANGUAGES
