"""
nestedset Test Suite.

This package contains:
- unit/: Unit tests (interval math, filters, config, individual stores)
- integration/: Engine and facade tests run against both stores
"""
