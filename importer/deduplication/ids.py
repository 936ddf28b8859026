"""
Unique-id generation for imported rows.

A dataset's id strategy decides what makes two rows "the same event":
an id column in the source data, a hash over a chosen set of fields, a
hash over the whole row, or an external id with a fallback.
"""

import hashlib
import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

SAFE_ID_PATTERN = re.compile(r"^[\w\-.:]+$")
MAX_ID_LENGTH = 255
COMPUTED_HASH_LENGTH = 16


class IdGenerationError(Exception):
    """Raised when a row lacks the values its id strategy needs."""
    pass


class IdStrategyType(str, Enum):
    EXTERNAL = "external"
    COMPUTED = "computed"
    CONTENT_HASH = "content_hash"
    HYBRID = "hybrid"


@dataclass
class IdStrategy:
    type: IdStrategyType = IdStrategyType.CONTENT_HASH
    external_id_path: Optional[str] = None
    computed_fields: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "external_id_path": self.external_id_path,
            "computed_fields": list(self.computed_fields),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "IdStrategy":
        data = data or {}
        return cls(
            type=IdStrategyType(data.get("type", IdStrategyType.CONTENT_HASH.value)),
            external_id_path=data.get("external_id_path"),
            computed_fields=list(data.get("computed_fields") or []),
        )


def get_by_path(data: Any, path: str) -> Any:
    """Value at a dot path inside nested dicts, or None."""
    if not path:
        return None
    value = data
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=False, default=str)


def _sanitize_external_id(value: Any) -> str:
    text = str(value).strip()
    if not text or len(text) > MAX_ID_LENGTH:
        raise IdGenerationError(f"Invalid ID length: {len(text)} (must be 1-{MAX_ID_LENGTH} characters)")
    if not SAFE_ID_PATTERN.match(text):
        raise IdGenerationError(f"Invalid ID format: {text} (only alphanumeric, -, _, :, . allowed)")
    return text


def external_id(row: dict[str, Any], path: str | None, dataset_id: str) -> str:
    value = get_by_path(row, path or "")
    if value is None or value == "":
        raise IdGenerationError(f"Missing external ID at path: {path or 'unknown'}")
    return f"{dataset_id}:ext:{_sanitize_external_id(value)}"


def computed_id(row: dict[str, Any], fields: list[str], dataset_id: str) -> str:
    if not fields:
        raise IdGenerationError("No fields configured for computed ID")

    missing = [path for path in fields if get_by_path(row, path) is None]
    if missing:
        raise IdGenerationError(f"Missing required fields for computed ID: {', '.join(missing)}")

    hash_input = "|".join(f"{path}:{json.dumps(get_by_path(row, path), default=str)}" for path in sorted(fields))
    digest = hashlib.sha256(f"{dataset_id}:{hash_input}".encode("utf-8")).hexdigest()
    return f"{dataset_id}:comp:{digest[:COMPUTED_HASH_LENGTH]}"


def content_hash_id(row: dict[str, Any], dataset_id: str) -> str:
    digest = hashlib.sha256(_canonical_json(row).encode("utf-8")).hexdigest()
    return f"{dataset_id}:hash:{digest}"


def generate_unique_id(row: dict[str, Any], strategy: IdStrategy, dataset_id: str) -> str:
    """
    Derive a row's unique id under the dataset's strategy.

    Args:
        row: The row as read from the file
        strategy: The dataset's id strategy
        dataset_id: Dataset the row belongs to (prefixes every id)

    Returns:
        Unique id string, e.g. ``"concerts:ext:4711"``

    Raises:
        IdGenerationError: If the row lacks values the strategy needs
    """
    if strategy.type == IdStrategyType.EXTERNAL:
        return external_id(row, strategy.external_id_path, dataset_id)
    if strategy.type == IdStrategyType.COMPUTED:
        return computed_id(row, strategy.computed_fields, dataset_id)
    if strategy.type == IdStrategyType.HYBRID:
        try:
            return external_id(row, strategy.external_id_path, dataset_id)
        except IdGenerationError:
            if strategy.computed_fields:
                return computed_id(row, strategy.computed_fields, dataset_id)
            return content_hash_id(row, dataset_id)
    return content_hash_id(row, dataset_id)


def resolve_unique_id(row: dict[str, Any], strategy: IdStrategy, dataset_id: str) -> tuple[str, Optional[str]]:
    """Unique id with a content-hash fallback, plus the generation error if the fallback was used."""
    try:
        return generate_unique_id(row, strategy, dataset_id), None
    except IdGenerationError as e:
        return content_hash_id(row, dataset_id), str(e)
