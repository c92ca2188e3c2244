"""Queue-backed intake of free-text real-estate advertisements."""

__version__ = "0.1.0"
