"""
QLDB Quickstart Test Suite.

This package contains:
- unit/: Unit tests (in-memory backends and mocked AWS clients)
- integration/: Whole workflow against the in-memory backends
- e2e/: Real AWS run (opt-in with QLDB_E2E_TESTS=1)
"""
