"""
Adapters for the external collaborators: the backing store and the places provider.
"""
from .backing_store import BackingStore, RestBackingStore
from .places import PhotoDownload, PlacesClient, is_provider_photo, parse_city_country

__all__ = [
    "BackingStore",
    "RestBackingStore",
    "PhotoDownload",
    "PlacesClient",
    "is_provider_photo",
    "parse_city_country",
]
