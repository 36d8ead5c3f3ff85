"""
OpenClaw state sync test suite.

This package contains:
- unit/: Unit tests (temp dirs, SQLite, in-memory bucket)
- integration/: Integration tests (real gateway child processes, CLI)
"""
