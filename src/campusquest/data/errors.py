"""Custom exceptions for definition loading and validation."""


class DataError(Exception):
    """Base exception for the data layer."""


class DataLoadError(DataError):
    """Raised when definition JSON is missing or unreadable."""


class DataValidationError(DataError):
    """Raised when quest or collectible content fails structural validation."""


class DataReferenceError(DataError):
    """Raised when a quest references a prerequisite that does not exist."""


class PersistenceError(Exception):
    """Raised by document stores when a read or write cannot be completed."""
