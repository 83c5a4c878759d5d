# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Core - Configuration and defaults
# PURPOSE: Centralized configuration management
# CREATED: 28 SEP 2026
# ============================================================================
"""
Configuration Module

Provides centralized configuration and defaults for the fleet scheduler.
"""

from core.config.defaults import (
    StoreBackend,
    SchedulerDefaults,
    ReconcilerDefaults,
    StoreDefaults,
    Defaults,
    get_defaults,
    reset_defaults,
)

__all__ = [
    "StoreBackend",
    "SchedulerDefaults",
    "ReconcilerDefaults",
    "StoreDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
