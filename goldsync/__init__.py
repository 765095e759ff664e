"""Golden-copy database sync and worktree cloning.

This package keeps a local replica of a project's PostgreSQL source database
and clones it into per-worktree databases with migration compatibility checks.
"""

__version__ = "0.1.0"
