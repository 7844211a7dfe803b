from typing import Any, Dict, Optional


class MainException(Exception):
    error_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details
        if error_code:
            self.error_code = error_code


# --- Upload / ingestion ---

class FileUploadException(MainException):
    pass


class ReadFileException(MainException):
    pass


class UnsupportedFileTypeException(FileUploadException):
    """Raised when the file extension is not accepted for the source kind."""
    def __init__(self, extension: str, allowed: list):
        super().__init__(
            f"Unsupported file type '{extension}'. Allowed: {', '.join(allowed)}",
            400,
            details={"extension": extension, "allowed_extensions": allowed},
        )


class FileTooLargeException(FileUploadException):
    """Raised when the upload exceeds the size ceiling."""
    def __init__(self, file_size: int, max_size_mb: int):
        super().__init__(
            f"File size ({file_size / 1024 / 1024:.1f}MB) exceeds maximum allowed size ({max_size_mb}MB)",
            413,
            details={
                "file_size_mb": round(file_size / 1024 / 1024, 2),
                "max_size_mb": max_size_mb,
            },
        )


class EmptyFileException(FileUploadException):
    def __init__(self, message: str = "The uploaded file contains no data"):
        super().__init__(message, 400)


class DuplicateFileException(MainException):
    """Raised when a file with the same content fingerprint was already ingested."""
    error_code = "DUPLICATE_FILE"

    def __init__(self, filename: str, original_upload_date: Optional[str], batch_id: Optional[int] = None):
        super().__init__(
            f"This file has already been uploaded (original upload: {original_upload_date or 'unknown'})",
            409,
            details={
                "filename": filename,
                "original_upload_date": original_upload_date,
                "batch_id": batch_id,
            },
        )


class NothingToSaveException(MainException):
    """Raised when a correction resubmission contains no corrected entries."""
    error_code = "NOTHING_TO_SAVE"

    def __init__(self, message: str = "No corrections were made"):
        super().__init__(message, 400)


class InvalidRequestException(MainException):
    pass


# --- Records / workflow ---

class RecordNotFoundException(MainException):
    error_code = "NOT_FOUND"

    def __init__(self, message: str = "Record not found", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, 404, details=details)


class ConflictException(MainException):
    """Raised when a state transition is attempted from a state that does not allow it."""
    error_code = "CONFLICT"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, 409, details=details)


class ReconciliationException(MainException):
    pass


class MatchingTimeoutException(ReconciliationException):
    """Raised when the matcher does not finish within the configured time."""
    error_code = "TIMEOUT"

    def __init__(self, timeout_seconds: float):
        super().__init__(
            f"Matching did not complete within {timeout_seconds:g} seconds. Try again or narrow the date range.",
            504,
            details={"timeout_seconds": timeout_seconds},
        )


# --- Guarded operations ---

class FeatureDisabledException(MainException):
    """Raised when a feature-flagged operation is invoked while the flag is off."""
    error_code = "FORBIDDEN"

    def __init__(self, message: str = "This operation is disabled"):
        super().__init__(message, 403)


class DeletionSequenceException(ConflictException):
    """Raised when a guarded operation stage is invoked out of order."""
    pass


# --- Infrastructure ---

class StorageUnavailableException(MainException):
    error_code = "CONNECTION_ERROR"

    def __init__(self, message: str = "File storage is unavailable"):
        super().__init__(message, 503)


class DatabaseUnavailableException(MainException):
    error_code = "CONNECTION_ERROR"

    def __init__(self, message: str = "Database is unavailable"):
        super().__init__(message, 503)
