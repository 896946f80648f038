"""Small bracket arithmetic helpers shared by the builder and the draw engine."""
from math import floor, log2
from typing import Any, Dict, List, Optional

DEFAULT_RULES = {"best_of": 3, "points_to_win": 11, "win_by_two": True}
ALLOWED_BEST_OF = (1, 3, 5)
ALLOWED_POINTS_TO_WIN = (11, 15, 21)


def next_pow2(n: int) -> int:
    """Smallest power of two >= n (minimum 2)."""
    size = 2
    while size < n:
        size *= 2
    return size


def max_rounds_for_entrants(entrant_count: int) -> int:
    """floor(log2(entrant_count)); 0 when fewer than two entrants."""
    if entrant_count < 2:
        return 0
    return int(floor(log2(entrant_count)))


def round_title_by_pairs(pairs: int) -> str:
    """F / SF / QF / R16 / R32 ... from the number of matches in the round."""
    if pairs == 1:
        return "F"
    if pairs == 2:
        return "SF"
    if pairs == 4:
        return "QF"
    return f"R{pairs * 2}"


def bracket_fold_positions(n: int) -> List[int]:
    """Standard bracket-fold positions for *n* entries.

    Returns a flat list of seed numbers in bracket position order.
    Consecutive pairs indicate which seeds meet if chalk holds:
      4-entry  -> [1, 4, 2, 3]       -> (1v4), (2v3)
      8-entry  -> [1, 8, 4, 5, ...]   -> (1v8), (4v5), ...
    """
    if n < 1:
        return []
    if n == 1:
        return [1]
    if n == 2:
        return [1, 2]

    half = bracket_fold_positions(n // 2)

    expanded: List[int] = []
    for s in half:
        expanded.append(s)
        expanded.append(n + 1 - s)

    mid = len(expanded) // 2
    top = expanded[:mid]
    bot = expanded[mid:]
    if len(bot) >= 4:
        bot = bot[:-4] + bot[-2:] + bot[-4:-2]

    return top + bot


def bye_pair_indices(pairs: int, byes: int) -> List[int]:
    """
    Pair indices (0-based) that receive a side-B bye, top seeds' lines first.

    The line for seed s is the pair whose fold position holds s; byes go to
    seeds 1..byes. Non power-of-two pair counts fall back to index order.
    """
    byes = max(0, min(byes, pairs))
    if byes == 0:
        return []
    if pairs & (pairs - 1):
        return list(range(byes))
    fold = bracket_fold_positions(pairs)
    line_of_seed = {seed: idx for idx, seed in enumerate(fold)}
    return [line_of_seed[s] for s in range(1, byes + 1)]


def sanitize_rules(rules: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Clamp match rules to the allowed sets, falling back to defaults."""
    rules = rules or {}
    best_of = rules.get("best_of")
    points = rules.get("points_to_win")
    win_by_two = rules.get("win_by_two")
    return {
        "best_of": best_of if best_of in ALLOWED_BEST_OF else DEFAULT_RULES["best_of"],
        "points_to_win": points if points in ALLOWED_POINTS_TO_WIN else DEFAULT_RULES["points_to_win"],
        "win_by_two": win_by_two if isinstance(win_by_two, bool) else DEFAULT_RULES["win_by_two"],
    }
