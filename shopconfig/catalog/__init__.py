from .cache import TTLCache
from .client import CatalogApiClient, get_catalog_client, reset_catalog_client

__all__ = ["TTLCache", "CatalogApiClient", "get_catalog_client", "reset_catalog_client"]
