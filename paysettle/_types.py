"""
Core types for paysettle.

Re-exports from kungfu + shared identity and error types.
"""

from __future__ import annotations

from dataclasses import dataclass

# Re-export from kungfu
from kungfu import Result, Ok, Error, LazyCoroResult

# ═══════════════════════════════════════════════════════════════════════════════
# Lazy Computation Aliases
# ═══════════════════════════════════════════════════════════════════════════════

type Lazy[T, E] = LazyCoroResult[T, E]
"""Lazy async call to a collaborator that may fail."""

# ═══════════════════════════════════════════════════════════════════════════════
# Storage Errors
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class StoreError:
    """Storage backend error (unreachable, constraint violated, ...)."""

    message: str
    cause: Exception | None = None


@dataclass(frozen=True)
class VersionConflict:
    """
    Optimistic concurrency check lost.

    Note: another writer bumped the order row between our read and our write.
    """

    order_id: str
    expected_version: int
    actual_version: int | None = None

    @property
    def message(self) -> str:
        return (
            f"Order {self.order_id} changed concurrently "
            f"(expected version {self.expected_version}, found {self.actual_version})"
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    # Re-exports from kungfu
    "Result",
    "Ok",
    "Error",
    "LazyCoroResult",
    # Type aliases
    "Lazy",
    # Errors
    "StoreError",
    "VersionConflict",
)
