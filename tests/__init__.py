"""
Historian Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies)
- integration/: Integration tests (tracker hooks over in-memory and SQLite stores)
"""
