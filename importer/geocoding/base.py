"""
Geocoder capability.

The import pipeline only needs ``geocode(address) -> GeocodingResult``;
a provider signals failure by raising ``GeocodingError``.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Optional


class GeocodingError(Exception):
    """Raised when an address cannot be geocoded."""
    pass


@dataclass
class GeocodingResult:
    latitude: float
    longitude: float
    confidence: float
    normalized_address: Optional[str] = None
    provider: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GeocodingResult":
        return cls(**data)


class Geocoder(ABC):
    """Resolves a free-text address to coordinates."""

    name: str = "geocoder"

    @abstractmethod
    def geocode(self, address: str) -> GeocodingResult:
        """
        Geocode one address.

        Raises:
            GeocodingError: If the provider fails or finds nothing
        """
        pass
