"""
Error types for nestedset.

This module defines all exception types raised by the package:
- NestedSetError: Base exception
- TreeNotBuiltError: Boundaries of a node/parent/sibling are not initialized
- NodeNotFoundError: A referenced node does not exist
- StoreError: The underlying record store failed
- InvalidFilterError: A filter uses an unsupported shape or operator
- InvalidUpdateError: An update touches fields it may not touch

Invariants:
    - All errors inherit from NestedSetError
    - TreeNotBuiltError is swallowed by the mutation engine (logged, not raised)
    - Store errors propagate unchanged, no retries at this layer
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class NestedSetError(Exception):
    """Base exception for all nestedset errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "NESTEDSET_ERROR"
        self.details = details or {}


class TreeNotBuiltError(NestedSetError):
    """Boundaries are not initialized.

    Raised when:
    - An interval predicate is evaluated against an unbuilt node
    - An interval query is issued for an unbuilt node

    Inside the mutation engine this is the soft "skip silently" case.
    """

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="NOT_BUILT",
            details={"node_id": node_id},
        )
        self.node_id = node_id


class NodeNotFoundError(NestedSetError):
    """Node not found.

    Raised when:
    - Rebuild cannot locate the children of a node
    - An update targets a node that no longer exists
    """

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={"node_id": node_id},
        )
        self.node_id = node_id


class StoreError(NestedSetError):
    """The record store failed (I/O, constraint, closed connection)."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="STORE_ERROR",
            details={"operation": operation},
        )
        self.operation = operation


class StoreNotInitializedError(StoreError):
    """Store was used before initialize() created its collection."""

    pass


class InvalidFilterError(NestedSetError):
    """Filter has an unsupported shape or operator."""

    def __init__(self, message: str, operator: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="INVALID_FILTER",
            details={"operator": operator},
        )
        self.operator = operator


class InvalidUpdateError(NestedSetError):
    """Update touches a field it is not allowed to change."""

    def __init__(self, message: str, field_name: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="INVALID_UPDATE",
            details={"field": field_name},
        )
        self.field_name = field_name
