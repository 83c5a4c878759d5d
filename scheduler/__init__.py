# ============================================================================
# SCHEDULER MODULE
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Scheduler - Placement decisions
# PURPOSE: Resource ledger, affinity evaluator, placement scheduler
# CREATED: 05 OCT 2026
# ============================================================================
"""
Scheduler Module

Usage:
    from scheduler import ResourceLedger, PlacementScheduler

    ledger = ResourceLedger()
    scheduler = PlacementScheduler(store, ledger, registry)
"""

from scheduler.ledger import ResourceLedger
from scheduler.affinity import HostCandidate, rank_hosts
from scheduler.placement import PlacementScheduler

__all__ = [
    "ResourceLedger",
    "HostCandidate",
    "rank_hosts",
    "PlacementScheduler",
]
