"""
Custom exception classes for the ingestion pipeline and term linking.
"""

class ConfigurationError(Exception):
    """Raised when connection or API credentials are missing or malformed."""
    pass

class IngestionException(Exception):
    """Base exception for all ingestion-related errors."""
    pass

class StorageException(Exception):
    """Base exception for all storage-related errors."""
    pass

class SourceIterationError(IngestionException):
    """Raised when a source table page cannot be fetched."""
    pass

class EmbeddingError(IngestionException):
    """Raised when embedding generation fails after all retries."""
    pass

class InvalidEmbeddingError(IngestionException):
    """Raised when the backend returns a vector with the wrong shape or non-finite values."""
    def __init__(self, message: str, index: int = None):
        super().__init__(message)
        self.index = index

class DatabaseConnectionError(StorageException):
    """Raised when database connection fails."""
    pass

class ResourceWriteError(StorageException):
    """Raised when a resource/embedding batch cannot be committed."""
    pass


"""
Custom exception classes for defined term linking.
"""
class TermLinkingError(Exception):
    """Raised when link updates cannot be applied."""
    pass
