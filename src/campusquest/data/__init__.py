"""Data layer: definition loading and the document store collaborator."""

from .errors import DataError, DataLoadError, DataReferenceError, DataValidationError, PersistenceError
from .paths import get_definitions_path, get_repo_root

__all__ = [
    "DataError",
    "DataLoadError",
    "DataReferenceError",
    "DataValidationError",
    "PersistenceError",
    "get_definitions_path",
    "get_repo_root",
]
