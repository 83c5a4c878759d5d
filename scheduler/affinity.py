# ============================================================================
# AFFINITY EVALUATOR
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Scheduler - Host ranking by placement policy
# PURPOSE: Filter and order capacity-eligible hosts for a pending node
# CREATED: 05 OCT 2026
# ============================================================================
"""
Affinity Evaluator

Pure ranking: no I/O, no locks. Input is the set of hosts that already
passed the capacity pre-filter, each annotated with its sibling count and
free-capacity fractions; output is host ids, best first.

Ordering, most significant first:
    1. region     - hosts outside policy.region are dropped
    2. similarity - cluster: hosts with siblings before hosts without
                    spread:  sibling-free hosts only, if any exist;
                             otherwise fewest siblings first
                    None:    no preference
    3. resource   - most_resources:  smallest free fraction first
                    least_resources: largest free fraction first
                    (fractions compared lexicographically in
                    cpu, memory, disk, ips, then alphabetical order)
    4. host id    - lowest first

An empty result means the policy cannot be met by any capacity-eligible
host.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from core.contracts import ResourceAffinity, SimilarityAffinity
from core.models import SchedulerPolicy


@dataclass
class HostCandidate:
    """A capacity-eligible host as seen by the evaluator."""
    host_id: str
    siblings: int = 0
    free_fractions: List[float] = field(default_factory=list)
    region: Optional[str] = None


def _similarity_key(candidate: HostCandidate, similarity: Optional[SimilarityAffinity]) -> int:
    if similarity == SimilarityAffinity.CLUSTER:
        return 0 if candidate.siblings > 0 else 1
    if similarity == SimilarityAffinity.SPREAD:
        return candidate.siblings
    return 0


def _resource_key(candidate: HostCandidate, resource: ResourceAffinity) -> Tuple[float, ...]:
    if resource == ResourceAffinity.MOST_RESOURCES:
        return tuple(candidate.free_fractions)
    return tuple(-f for f in candidate.free_fractions)


def rank_hosts(candidates: Sequence[HostCandidate], policy: SchedulerPolicy) -> List[str]:
    """Order candidate host ids best first under policy."""
    pool = list(candidates)

    if policy.region is not None:
        pool = [c for c in pool if c.region == policy.region]

    if policy.similarity == SimilarityAffinity.SPREAD:
        sibling_free = [c for c in pool if c.siblings == 0]
        if sibling_free:
            pool = sibling_free

    pool.sort(key=lambda c: (
        _similarity_key(c, policy.similarity),
        _resource_key(c, policy.resource),
        c.host_id,
    ))
    return [c.host_id for c in pool]


__all__ = ["HostCandidate", "rank_hosts"]
