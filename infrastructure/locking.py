# ============================================================================
# LOCKING SERVICE
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Infrastructure - Concurrency control
# PURPOSE: Per-key asyncio locks and PostgreSQL advisory locks
# CREATED: 01 OCT 2026
# ============================================================================
"""
Locking Service

Two layers of mutual exclusion:

In-process (KeyedLocks):
- Per-host lock: ledger check-and-commit is a single-writer section per host
- Per-node lock: status transitions for one node id are applied one at a time

Cross-instance (LockService, PostgreSQL advisory locks):
- Host lock (transaction-level): serializes placement commits for one host
  across scheduler instances; held for the commit transaction only
- Reconciler lock (session-level): only one instance sweeps heartbeats

Advisory locks are:
- Fast (in-memory, no disk I/O)
- Auto-release on disconnect (crash-safe)
- Support non-blocking try_lock semantics
- 64-bit key space

Usage:
    from infrastructure.locking import KeyedLocks, LockService

    host_locks = KeyedLocks("host")
    async with host_locks.hold(host_id, timeout=5.0):
        ...

    lock_service = LockService(pool)
    if not await lock_service.try_acquire_reconciler_lock():
        ...  # stand by

    async with pool.connection() as conn:
        async with conn.transaction():
            await lock_service.lock_host(conn, host_id)
            ...  # re-check capacity, commit placement
"""

import asyncio
import hashlib
import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

from psycopg import AsyncConnection
from psycopg_pool import AsyncConnectionPool

logger = logging.getLogger(__name__)


# ============================================================================
# IN-PROCESS KEYED LOCKS
# ============================================================================

class KeyedLocks:
    """
    Lazily created asyncio.Lock per key.

    Locks for different keys never contend, so cross-host reservations
    and cross-node transitions proceed concurrently.
    """

    def __init__(self, name: str = "key"):
        self.name = name
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: str, timeout: Optional[float] = None):
        """
        Hold the lock for key.

        Raises asyncio.TimeoutError if the wait exceeds timeout.
        """
        lock = self.get(key)
        if timeout is None:
            await lock.acquire()
        else:
            await asyncio.wait_for(lock.acquire(), timeout=timeout)
        try:
            yield
        finally:
            lock.release()

    def discard(self, key: str) -> None:
        """Forget an idle lock (host removed, node deleted)."""
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


# ============================================================================
# POSTGRESQL ADVISORY LOCKS
# ============================================================================

class LockService:
    """
    PostgreSQL-based distributed locking.

    Provides two types of locks:
    1. Reconciler lock (session-level): a single sweeping reconciler
    2. Host locks (transaction-level): per-host placement commits
    """

    # Lock namespace prefixes (hashed to int8 for pg_advisory_lock)
    RECONCILER_LOCK = "fleet:reconciler"
    HOST_LOCK_PREFIX = "fleet:host:"

    def __init__(self, pool: AsyncConnectionPool):
        """
        Initialize lock service.

        Args:
            pool: Database connection pool
        """
        self.pool = pool
        self._reconciler_conn: Optional[AsyncConnection] = None

    @staticmethod
    def _hash_to_lock_id(key: str) -> int:
        """
        Convert string key to int64 for PostgreSQL advisory lock.

        Args:
            key: String key to hash

        Returns:
            Signed int64 suitable for pg_advisory_lock
        """
        # First 8 bytes of SHA256 as signed int64
        h = hashlib.sha256(key.encode()).digest()[:8]
        return int.from_bytes(h, byteorder="big", signed=True)

    @staticmethod
    def _first_value(row) -> bool:
        if not row:
            return False
        # dict_row and tuple row factories
        return bool(row["acquired"] if hasattr(row, "keys") else row[0])

    # =========================================================================
    # RECONCILER LOCK (Session-level)
    # =========================================================================

    async def try_acquire_reconciler_lock(self) -> bool:
        """
        Try to acquire the reconciler leader lock.

        Held on a dedicated connection for the lifetime of the leader.
        Released on release_reconciler_lock(), connection close or crash.

        Returns:
            True if acquired (or already held), False if another instance holds it
        """
        if self._reconciler_conn is not None:
            return True

        lock_id = self._hash_to_lock_id(self.RECONCILER_LOCK)
        conn = await self.pool.getconn()

        try:
            result = await conn.execute(
                "SELECT pg_try_advisory_lock(%s) as acquired",
                (lock_id,),
            )
            acquired = self._first_value(await result.fetchone())
        except Exception as e:
            logger.error(f"Error acquiring reconciler lock: {e}")
            await self.pool.putconn(conn)
            return False

        if acquired:
            self._reconciler_conn = conn
            logger.info(f"Acquired reconciler lock (lock_id={lock_id})")
        else:
            logger.info("Reconciler lock held by another instance - standing by")
            await self.pool.putconn(conn)

        return acquired

    async def release_reconciler_lock(self) -> None:
        """Release the reconciler lock during graceful shutdown."""
        if self._reconciler_conn is None:
            return

        conn = self._reconciler_conn
        self._reconciler_conn = None
        lock_id = self._hash_to_lock_id(self.RECONCILER_LOCK)
        try:
            await conn.execute("SELECT pg_advisory_unlock(%s)", (lock_id,))
            logger.info(f"Released reconciler lock (lock_id={lock_id})")
        except Exception as e:
            logger.warning(f"Error releasing reconciler lock: {e}")
        finally:
            await self.pool.putconn(conn)

    @property
    def has_reconciler_lock(self) -> bool:
        """Check if this service holds the reconciler lock."""
        return self._reconciler_conn is not None

    # =========================================================================
    # HOST LOCK (Transaction-level)
    # =========================================================================

    async def lock_host(self, conn: AsyncConnection, host_id: str) -> None:
        """
        Take the host's transaction-level lock on conn.

        Must be called inside conn.transaction(); released at commit or
        rollback. Blocks until the lock is granted.
        """
        lock_id = self._hash_to_lock_id(f"{self.HOST_LOCK_PREFIX}{host_id}")
        await conn.execute("SELECT pg_advisory_xact_lock(%s)", (lock_id,))
        logger.debug(f"Acquired transaction lock for host {host_id}")


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["KeyedLocks", "LockService"]
