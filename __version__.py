# ============================================================================
# VERSION - FLEET SCHEDULER
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# ============================================================================
"""
Version information for the Fleet Scheduler.

This is the single source of truth for the application version.
Updated manually for each release.
"""
# Version format: major.minor.patch
# Criteria for 0.3 - failover re-placement with backoff works end to end
__version__ = "0.3.1"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Build metadata
BUILD_DATE = "2026-10-12"

EPOCH = 1
CODENAME = "Fleet Scheduler"
