"""
PropsDB Test Suite.

This package contains:
- unit/: Unit tests (no database)
- integration/: Integration tests (file-backed SQLite, in-process HTTP)
"""
