"""
CLI tools for nestedset administration.

This module provides command-line tools for:
- rebuild: Renumber a forest from parent links
- check: Verify nested-set invariants
- show: Print a forest

Invariants:
    - Tools work offline against the store directly
    - rebuild is idempotent
"""

from .tree_cli import TreeCLI, setup_logging

__all__ = ["TreeCLI", "setup_logging"]
