# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Core - Default configuration values
# PURPOSE: Centralized defaults for placement, reconciliation and storage
# CREATED: 28 SEP 2026
# ============================================================================
"""
Configuration Defaults

Provides defaults for the scheduler, the reconciler and the store.
These can be overridden via environment variables.

Design:
- Immutable dataclasses for defaults
- Environment variable overrides
- Type-safe access
"""

import os
from dataclasses import dataclass, field
from typing import Optional
from enum import Enum

from core.contracts import ResourceAffinity


class StoreBackend(str, Enum):
    """Where fleet state lives."""
    MEMORY = "memory"
    POSTGRES = "postgres"


@dataclass(frozen=True)
class SchedulerDefaults:
    """
    Defaults for placement decisions.
    """
    # Max seconds place() waits on one host's reservation lock
    lock_timeout_sec: float = 5.0

    # Resource affinity applied when a request does not specify one
    default_resource_affinity: ResourceAffinity = ResourceAffinity.LEAST_RESOURCES

    @classmethod
    def from_env(cls) -> "SchedulerDefaults":
        """Create from environment variables."""
        return cls(
            lock_timeout_sec=float(os.getenv("PLACEMENT_LOCK_TIMEOUT_SEC", 5.0)),
            default_resource_affinity=ResourceAffinity(
                os.getenv("DEFAULT_RESOURCE_AFFINITY", ResourceAffinity.LEAST_RESOURCES.value)
            ),
        )


@dataclass(frozen=True)
class ReconcilerDefaults:
    """
    Defaults for the lifecycle reconciler.

    Controls offline detection, re-placement backoff and stake derivation.
    """
    # Host offline detection
    heartbeat_timeout_sec: float = 60.0
    sweep_interval_sec: float = 10.0

    # Re-placement queue
    replacement_poll_interval_sec: float = 1.0
    replacement_backoff_initial_sec: float = 5.0
    replacement_backoff_max_sec: float = 300.0
    replacement_backoff_multiplier: float = 2.0

    # Blocks a consensus node may trail the chain head before resyncing
    sync_lag_tolerance: int = 10

    # Consecutive consensus heartbeats before a validator may be reflected as staked
    staking_streak_threshold: int = 3

    # Standby instances retry the reconciler leader lock this often
    standby_retry_sec: float = 10.0

    def backoff_for(self, attempts: int) -> float:
        """Delay before the next re-placement attempt after `attempts` failures."""
        if attempts <= 0:
            return 0.0
        delay = self.replacement_backoff_initial_sec * (
            self.replacement_backoff_multiplier ** (attempts - 1)
        )
        return min(delay, self.replacement_backoff_max_sec)

    @classmethod
    def from_env(cls) -> "ReconcilerDefaults":
        """Create from environment variables."""
        return cls(
            heartbeat_timeout_sec=float(os.getenv("HEARTBEAT_TIMEOUT_SEC", 60.0)),
            sweep_interval_sec=float(os.getenv("SWEEP_INTERVAL_SEC", 10.0)),
            replacement_poll_interval_sec=float(os.getenv("REPLACEMENT_POLL_INTERVAL_SEC", 1.0)),
            replacement_backoff_initial_sec=float(os.getenv("REPLACEMENT_BACKOFF_INITIAL_SEC", 5.0)),
            replacement_backoff_max_sec=float(os.getenv("REPLACEMENT_BACKOFF_MAX_SEC", 300.0)),
            replacement_backoff_multiplier=float(os.getenv("REPLACEMENT_BACKOFF_MULTIPLIER", 2.0)),
            sync_lag_tolerance=int(os.getenv("SYNC_LAG_TOLERANCE", 10)),
            staking_streak_threshold=int(os.getenv("STAKING_STREAK_THRESHOLD", 3)),
            standby_retry_sec=float(os.getenv("RECONCILER_STANDBY_RETRY_SEC", 10.0)),
        )


@dataclass(frozen=True)
class StoreDefaults:
    """
    Defaults for fleet state storage.
    """
    backend: StoreBackend = StoreBackend.MEMORY
    pool_min_size: int = 2
    pool_max_size: int = 10
    node_types_dir: Optional[str] = None
    auto_bootstrap_schema: bool = False

    @classmethod
    def from_env(cls) -> "StoreDefaults":
        """Create from environment variables."""
        backend = os.getenv("FLEET_STORE")
        if backend is None:
            backend = StoreBackend.POSTGRES.value if os.getenv("DATABASE_URL") else StoreBackend.MEMORY.value
        return cls(
            backend=StoreBackend(backend),
            pool_min_size=int(os.getenv("DB_POOL_MIN_SIZE", 2)),
            pool_max_size=int(os.getenv("DB_POOL_MAX_SIZE", 10)),
            node_types_dir=os.getenv("NODE_TYPES_DIR"),
            auto_bootstrap_schema=os.getenv("AUTO_BOOTSTRAP_SCHEMA", "").lower() == "true",
        )


# ============================================================================
# GLOBAL DEFAULTS INSTANCE
# ============================================================================

@dataclass
class Defaults:
    """Container for all default configurations."""
    scheduler: SchedulerDefaults = field(default_factory=SchedulerDefaults)
    reconciler: ReconcilerDefaults = field(default_factory=ReconcilerDefaults)
    store: StoreDefaults = field(default_factory=StoreDefaults)

    @classmethod
    def from_env(cls) -> "Defaults":
        """Create all defaults from environment variables."""
        return cls(
            scheduler=SchedulerDefaults.from_env(),
            reconciler=ReconcilerDefaults.from_env(),
            store=StoreDefaults.from_env(),
        )


_defaults: Optional[Defaults] = None


def get_defaults() -> Defaults:
    """Get global defaults instance."""
    global _defaults
    if _defaults is None:
        _defaults = Defaults.from_env()
    return _defaults


def reset_defaults() -> None:
    """Reset defaults (for testing)."""
    global _defaults
    _defaults = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "StoreBackend",
    "SchedulerDefaults",
    "ReconcilerDefaults",
    "StoreDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
