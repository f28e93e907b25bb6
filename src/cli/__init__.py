"""Command-line interface for the intent engine."""

from intent_engine import __version__

__all__ = ["__version__"]
