"""
Resource sync test suite.

This package contains:
- unit/: Unit tests (no external dependencies)
- integration/: Component tests against in-memory source and destination stores
"""
