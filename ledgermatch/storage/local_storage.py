import re
from pathlib import Path

from ledgermatch.exceptions.exceptions import StorageUnavailableException
from ledgermatch.storage.base import StorageBackend

# Valid path components: alphanumeric, hyphens, underscores, dots
_SAFE_NAME_RE = re.compile(r'^[a-zA-Z0-9][a-zA-Z0-9._-]*$')


def _validate_path_component(name: str, component_type: str = "name") -> None:
    """Reject path components that could escape the storage root."""
    if not name:
        raise ValueError(f"Empty {component_type} is not allowed")
    if '..' in name or '/' in name or '\\' in name:
        raise ValueError(f"Invalid {component_type}: path traversal not allowed")
    if not _SAFE_NAME_RE.match(name):
        raise ValueError(
            f"Invalid {component_type}: only alphanumeric characters, hyphens, underscores, and dots are allowed"
        )


class LocalStorage(StorageBackend):
    """
    Local filesystem storage backend.
    Stores files in: {base_path}/{folder}/{filename}
    """

    def __init__(self, base_path: str = "uploads"):
        self.base_path = Path(base_path).resolve()

    def _get_folder_path(self, folder: str) -> Path:
        _validate_path_component(folder, "folder")
        path = (self.base_path / folder).resolve()
        if not path.is_relative_to(self.base_path):
            raise ValueError("Path traversal detected in folder")
        return path

    def _get_file_path(self, folder: str, filename: str) -> Path:
        _validate_path_component(filename, "filename")
        path = (self._get_folder_path(folder) / filename).resolve()
        if not path.is_relative_to(self.base_path):
            raise ValueError("Path traversal detected")
        return path

    def save_file(self, folder: str, filename: str, content: bytes) -> str:
        """Save a file to local storage."""
        file_path = self._get_file_path(folder, filename)
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(file_path, "wb") as f:
                f.write(content)
            return str(file_path)
        except OSError as e:
            raise StorageUnavailableException(f"Failed to archive file {filename}: {str(e)}") from e

    def file_exists(self, folder: str, filename: str) -> bool:
        return self._get_file_path(folder, filename).exists()

    def delete_file(self, folder: str, filename: str) -> bool:
        file_path = self._get_file_path(folder, filename)
        if not file_path.exists():
            return False
        try:
            file_path.unlink()
            return True
        except OSError as e:
            raise StorageUnavailableException(f"Failed to delete file {filename}: {str(e)}") from e
