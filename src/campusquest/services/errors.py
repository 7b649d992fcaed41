"""Service-layer exceptions."""


class SaveLoadError(Exception):
    """Raised when a persisted progress document cannot be decoded."""
