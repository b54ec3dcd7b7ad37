"""
Catalog Package
Catalog persistence and asset linking.
"""

from .store import CatalogStore, SqlCatalogStore
from .assets import AssetLinker, AssetOwner, OwnerKind

__all__ = ["CatalogStore", "SqlCatalogStore", "AssetLinker", "AssetOwner", "OwnerKind"]
