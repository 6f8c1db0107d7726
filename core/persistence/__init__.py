"""
Persistence Module
==================

[COMPONENTS]
- migrations: versioned schema of the sale journal database
"""

from .migrations import MIGRATIONS, LATEST_VERSION, run_migrations, get_current_version

__all__ = [
    "MIGRATIONS",
    "LATEST_VERSION",
    "run_migrations",
    "get_current_version",
]
