"""
versadb Test Suite.

This package contains:
- unit/: Unit tests (no I/O beyond temporary SQLite files)
- integration/: Integration tests (engine, core, facade, HTTP API, CLI)
"""
