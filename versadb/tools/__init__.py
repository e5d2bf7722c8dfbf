"""
CLI tools for versadb administration.

Invariants:
    - Tools work offline against a data directory (no server required)
    - Structural commands are idempotent
"""

from .cli import AdminCLI, main

__all__ = ["AdminCLI", "main"]
