from .archival import RelocationOutcome, relocate_asset
from .backends import CloudBackend, LibraryBackend, LocalBackend, create_library_key
from .models import BaseCharacter, Expression, favorites_first
from .store import LibraryStore, open_library

__all__ = [
    "BaseCharacter",
    "CloudBackend",
    "Expression",
    "LibraryBackend",
    "LibraryStore",
    "LocalBackend",
    "RelocationOutcome",
    "create_library_key",
    "favorites_first",
    "open_library",
    "relocate_asset",
]
