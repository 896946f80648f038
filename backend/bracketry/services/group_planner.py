"""
Draw Capacity Planner

Computes group sizes (and byes) for a given entrant count and sizing policy,
and the round-by-round shape of a progressive qualifying ladder.

Pure functions: no database access.
"""

from dataclasses import dataclass, field
from math import ceil, floor, sqrt
from typing import List, Literal, Optional

ByePolicy = Literal["none", "pad"]
OverflowPolicy = Literal["grow", "extraGroup"]
UnderflowPolicy = Literal["shrink", "byes"]


@dataclass
class GroupPlanPolicy:
    """Sizing policy for planGroups. 0/None for group_size or group_count means auto."""
    group_size: Optional[int] = None
    group_count: Optional[int] = None
    auto_fit: bool = True
    allow_uneven: bool = True
    bye_policy: ByePolicy = "none"
    overflow_policy: OverflowPolicy = "grow"
    underflow_policy: UnderflowPolicy = "shrink"
    min_size: int = 3
    max_size: int = 16

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "GroupPlanPolicy":
        data = data or {}
        return cls(
            group_size=data.get("group_size") or None,
            group_count=data.get("group_count") or None,
            auto_fit=data.get("auto_fit", True) is not False,
            allow_uneven=data.get("allow_uneven", True) is not False,
            bye_policy=data.get("bye_policy") or "none",
            overflow_policy=data.get("overflow_policy") or "grow",
            underflow_policy=data.get("underflow_policy") or "shrink",
            min_size=int(data.get("min_size", 3)),
            max_size=int(data.get("max_size", 16)),
        )


@dataclass
class GroupPlan:
    group_sizes: List[int] = field(default_factory=list)
    byes: int = 0

    @property
    def capacity(self) -> int:
        return sum(self.group_sizes)


def compute_group_capacities(entrant_count: int, groups_count: int) -> List[int]:
    """
    Spread entrant_count over groups_count groups as evenly as possible.

    First `remainder` groups get (base_size + 1), the rest base_size.
    """
    if groups_count <= 0:
        return []

    base_size = floor(entrant_count / groups_count)
    remainder = entrant_count % groups_count
    return [base_size + 1 if i < remainder else base_size for i in range(groups_count)]


def _clamp(value: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, value))


def plan_groups(n: int, policy: Optional[GroupPlanPolicy] = None) -> GroupPlan:
    """
    Plan group sizes for n entrants.

    Returns sizes with sum(group_sizes) == n when byes == 0, else n + byes.
    min_size is a hard floor: when shrinking cannot absorb the whole deficit
    without going below it, the leftover becomes byes.
    """
    policy = policy or GroupPlanPolicy()
    if n is None or n <= 0:
        return GroupPlan()

    min_size = max(1, policy.min_size)
    max_size = max(min_size, policy.max_size)

    g_size = _clamp(int(policy.group_size), min_size, max_size) if policy.group_size else None
    g_count = int(policy.group_count) if policy.group_count and policy.group_count > 0 else None

    if not g_size and not g_count:
        g_size = _clamp(round(sqrt(n)), min_size, max_size)
    if not g_count and g_size:
        g_count = ceil(n / g_size)
    if not g_size and g_count:
        g_size = ceil(n / g_count)

    g_size = _clamp(g_size, min_size, max_size)
    g_count = max(1, g_count)

    capacity = g_count * g_size
    if capacity == n:
        return GroupPlan([g_size] * g_count, 0)

    if capacity > n:
        return _plan_underflow(n, g_size, g_count, policy, min_size)
    return _plan_overflow(n, g_size, g_count, policy, min_size, max_size)


def _plan_underflow(n: int, g_size: int, g_count: int, policy: GroupPlanPolicy, min_size: int) -> GroupPlan:
    deficit = g_count * g_size - n

    if policy.underflow_policy == "byes" or policy.bye_policy == "pad":
        return GroupPlan([g_size] * g_count, deficit)

    if not policy.allow_uneven:
        return GroupPlan([g_size] * g_count, deficit)

    # Shrink front-to-back, never below min_size
    sizes = [g_size] * g_count
    need_reduce = deficit
    for i in range(g_count):
        if need_reduce <= 0:
            break
        can_reduce = min(need_reduce, sizes[i] - min_size)
        sizes[i] -= can_reduce
        need_reduce -= can_reduce

    if need_reduce > 0 and policy.auto_fit:
        rebalanced = compute_group_capacities(n, g_count)
        if rebalanced and min(rebalanced) >= min_size:
            return GroupPlan(rebalanced, 0)

    return GroupPlan(sizes, max(0, need_reduce))


def _plan_overflow(n: int, g_size: int, g_count: int, policy: GroupPlanPolicy, min_size: int, max_size: int) -> GroupPlan:
    overflow = n - g_count * g_size

    if policy.overflow_policy == "extraGroup":
        return _with_extra_groups(n, g_size, g_count, overflow, min_size, max_size)

    if policy.allow_uneven and overflow <= g_count and g_size + 1 <= max_size:
        return GroupPlan([g_size + (1 if i < overflow else 0) for i in range(g_count)], 0)

    return _with_extra_groups(n, g_size, g_count, overflow, min_size, max_size)


def _fits(sizes: List[int], min_size: int, max_size: int) -> bool:
    return bool(sizes) and min(sizes) >= min_size and max(sizes) <= max_size


def _with_extra_groups(n: int, g_size: int, g_count: int, overflow: int, min_size: int, max_size: int) -> GroupPlan:
    """
    Redistribute n over added groups. When the even split leaves a group
    outside [min_size, max_size], use the nearest group count that fits
    (fewer groups first); if none fits, pad up to min_size with byes.
    """
    new_count = g_count + ceil(overflow / g_size)
    for count in sorted(range(1, n + 1), key=lambda c: (abs(c - new_count), c)):
        sizes = compute_group_capacities(n, count)
        if _fits(sizes, min_size, max_size):
            return GroupPlan(sizes, 0)

    count = max(1, ceil(n / max_size))
    sizes = [max(min_size, s) for s in compute_group_capacities(n, count)]
    return GroupPlan(sizes, sum(sizes) - n)


def group_keys(count: int) -> List[str]:
    """A, B, ..., Z, then G27, G28, ..."""
    return [chr(65 + i) if i < 26 else f"G{i + 1}" for i in range(max(0, count))]


def distribute_byes(group_sizes: List[int], byes: int) -> List[int]:
    """
    Bye slots per group: one per group starting from the last group, wrapping
    around while byes remain. A group never gets more byes than slots.
    """
    counts = [0] * len(group_sizes)
    remaining = max(0, byes)
    while remaining > 0 and any(counts[i] < group_sizes[i] for i in range(len(group_sizes))):
        for i in reversed(range(len(group_sizes))):
            if remaining <= 0:
                break
            if counts[i] < group_sizes[i]:
                counts[i] += 1
                remaining -= 1
    return counts


# =============================================================================
# Progressive qualifying ladder (round elimination)
# =============================================================================

@dataclass
class LadderRound:
    round: int
    entrants: int
    pairs: int
    qualifiers: int  # winners leave the ladder
    losers_next: int  # losers (plus any bye) continue


@dataclass
class LadderPlan:
    rounds: List[LadderRound] = field(default_factory=list)
    total_qualifiers: int = 0
    last_entrants: int = 0


def plan_progressive_ladder(
    entrants: int,
    max_rounds: int = 10,
    target_qualifiers: Optional[int] = None,
) -> LadderPlan:
    """
    Round r pairs floor(n/2) entrants; winners qualify, losers play on.

    Stops at max_rounds, once target_qualifiers is reached, or when fewer
    than two entrants remain.
    """
    n = max(int(entrants or 0), 0)
    plan = LadderPlan()

    r = 1
    while r <= max_rounds and n >= 2:
        pairs = n // 2
        losers = n - pairs
        plan.rounds.append(LadderRound(round=r, entrants=n, pairs=pairs, qualifiers=pairs, losers_next=losers))
        plan.total_qualifiers += pairs
        n = losers
        if target_qualifiers is not None and plan.total_qualifiers >= target_qualifiers:
            break
        r += 1

    plan.last_entrants = n
    return plan
