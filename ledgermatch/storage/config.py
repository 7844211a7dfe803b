from functools import lru_cache

from ledgermatch.config.settings import settings
from ledgermatch.storage.base import StorageBackend
from ledgermatch.storage.local_storage import LocalStorage


@lru_cache(maxsize=1)
def get_storage() -> StorageBackend:
    """
    Storage backend for archived uploads, rooted at LOCAL_UPLOADS_PATH.

    Also used as a FastAPI dependency so tests can override it.
    """
    return LocalStorage(base_path=settings.LOCAL_UPLOADS_PATH)
