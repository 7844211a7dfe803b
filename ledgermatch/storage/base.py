from abc import ABC, abstractmethod
from pathlib import Path


class StorageBackend(ABC):
    """
    Abstract base class for raw upload archives.

    Directory structure:
        {base_path}/{source_kind}/{filename}
    """

    @abstractmethod
    def save_file(self, folder: str, filename: str, content: bytes) -> str:
        """
        Save a file to storage.

        Args:
            folder: Top-level folder, one per source kind.
            filename: Name of the file to save.
            content: File content as bytes.

        Returns:
            Path or URI where the file was saved.
        """
        pass

    @abstractmethod
    def file_exists(self, folder: str, filename: str) -> bool:
        pass

    @abstractmethod
    def delete_file(self, folder: str, filename: str) -> bool:
        """
        Delete a file from storage.

        Returns:
            True if file was deleted, False if file didn't exist.
        """
        pass

    def get_file_extension(self, filename: str) -> str:
        """File extension in lower case, e.g. '.xlsx'."""
        return Path(filename).suffix.lower()

    def archive_name(self, fingerprint: str, original_filename: str) -> str:
        """Storage name for an archived upload: its fingerprint plus the original extension."""
        return f"{fingerprint}{self.get_file_extension(original_filename)}"
