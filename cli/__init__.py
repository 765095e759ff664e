"""Command-line interface for goldsync."""

from goldsync import __version__

__all__ = ["__version__"]
