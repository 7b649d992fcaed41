"""Quest progress and completion engine for campus quests."""

__version__ = "0.1.0"
