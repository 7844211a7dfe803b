from ledgermatch.storage.base import StorageBackend
from ledgermatch.storage.local_storage import LocalStorage
from ledgermatch.storage.config import get_storage

__all__ = [
    "StorageBackend",
    "LocalStorage",
    "get_storage",
]
