"""Geocoding providers."""

from importer.geocoding.base import Geocoder, GeocodingError, GeocodingResult
from importer.geocoding.nominatim import NominatimGeocoder

__all__ = [
    "Geocoder",
    "GeocodingError",
    "GeocodingResult",
    "NominatimGeocoder",
]
