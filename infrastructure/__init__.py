# ============================================================================
# INFRASTRUCTURE MODULE
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Infrastructure - Concurrency control
# PURPOSE: In-process and PostgreSQL locking primitives
# CREATED: 01 OCT 2026
# ============================================================================
"""
Infrastructure module for the fleet scheduler.

Provides:
- KeyedLocks: per-host / per-node asyncio locks
- LockService: PostgreSQL advisory locks (host commits, reconciler leader)
"""

from infrastructure.locking import (
    KeyedLocks,
    LockService,
)

__all__ = [
    "KeyedLocks",
    "LockService",
]
