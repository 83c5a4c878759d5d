# ============================================================================
# RECONCILER MODULE
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Core - Lifecycle reconciliation
# PURPOSE: Export the lifecycle reconciler
# CREATED: 07 OCT 2026
# ============================================================================

from reconciler.loop import LifecycleReconciler

__all__ = ["LifecycleReconciler"]
