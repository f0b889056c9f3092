from .filesystem import FilesystemAssetStore
from .interfaces import AssetPayload, AssetStoreProtocol

__all__ = ["AssetPayload", "AssetStoreProtocol", "FilesystemAssetStore"]
