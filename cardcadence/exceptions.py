from typing import List, Optional


class DatabaseError(Exception):
    """Base exception for database-related errors."""

    def __init__(
        self, message: str, original_exception: Optional[Exception] = None
    ):
        super().__init__(message)
        self.original_exception = original_exception


class DatabaseConnectionError(DatabaseError):
    """Raised for errors connecting to the database."""

    pass


class SchemaInitializationError(DatabaseError):
    """Raised for errors during schema setup."""

    pass


class ItemOperationError(DatabaseError):
    """Raised for errors during item operations (CRUD)."""

    pass


class ReviewOperationError(DatabaseError):
    """Indicates an error while recording a review event."""

    pass


class StatsOperationError(DatabaseError):
    """Raised for errors reading or writing daily study statistics."""

    pass


class DeckOperationError(DatabaseError):
    """Raised for errors in the deck hierarchy, including parent cycles."""

    pass


class MarshallingError(DatabaseError):
    """Indicates an error during data conversion between application models
    and DB format."""

    pass


class CardValidationError(ValueError):
    """Raised when authored card content cannot produce schedulable items.

    The individual problems are kept on ``errors`` so callers can show all of
    them at once.
    """

    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors))
        self.errors = list(errors)


class ConfigurationError(ValueError):
    """Raised when a configuration source cannot be read or validated."""

    pass
