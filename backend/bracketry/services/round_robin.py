"""
Round-robin fixtures for group buckets (circle method).
"""
from typing import List, Tuple


def rr_pairings_by_round(group_size: int) -> List[Tuple[int, int, int, int]]:
    """
    Round-robin pairings. Returns list of (round_index, sequence_in_round, idx_a, idx_b).
    idx_a, idx_b are 0-based positions inside the group.

    Circle method: position 0 is fixed, the rest rotate. Odd sizes get a
    phantom BYE position, so every entrant sits out exactly one round.
    """
    n = group_size
    if n < 2:
        return []

    n2 = n + 1 if n % 2 == 1 else n  # Add BYE for odd n
    half = n2 // 2
    rounds_count = n2 - 1
    bye_idx = n if n % 2 == 1 else -1

    result: List[Tuple[int, int, int, int]] = []
    positions = list(range(n2))

    for round_num in range(1, rounds_count + 1):
        seq = 0
        for i in range(half):
            j = n2 - 1 - i
            a, b = positions[i], positions[j]
            if a == bye_idx or b == bye_idx:
                continue
            seq += 1
            result.append((round_num, seq, min(a, b), max(a, b)))
        # Rotate: keep 0, move last to second, shift others
        positions = [positions[0]] + [positions[-1]] + positions[1:-1]

    return result


def rr_fixtures(group_size: int, double_round_robin: bool = False) -> List[Tuple[int, int, int, int]]:
    """
    Single or double round robin. The second leg repeats the first with sides
    swapped and rounds continuing after the last first-leg round.
    """
    first_leg = rr_pairings_by_round(group_size)
    if not double_round_robin or not first_leg:
        return first_leg

    last_round = max(r for r, _, _, _ in first_leg)
    second_leg = [(last_round + r, seq, b, a) for r, seq, a, b in first_leg]
    return first_leg + second_leg
