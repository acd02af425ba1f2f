from typing import Dict, Hashable, Iterable, List, Mapping, Tuple, TypeVar

K = TypeVar("K", bound=Hashable)

SCORE_TOLERANCE = 1e-9


def same_score(a: float, b: float) -> bool:
    return abs(float(a) - float(b)) <= SCORE_TOLERANCE


def competition_ranks(ordered: Iterable[Tuple[K, float]]) -> List[Tuple[K, float, int]]:
    """Assign 1-based "1224" ranks to pairs already sorted best-first.

    Equal scores share a rank and the following rank skips accordingly.
    """
    ranked: List[Tuple[K, float, int]] = []
    prev_score = None
    current = 0
    for index, (key, score) in enumerate(ordered, 1):
        if prev_score is None or not same_score(score, prev_score):
            current = index
        ranked.append((key, score, current))
        prev_score = score
    return ranked


def competition_positions(totals: Mapping[K, float]) -> Dict[K, int]:
    """Rank every student in a class for one subject, highest total first."""
    ordered = sorted(totals.items(), key=lambda item: (-item[1], str(item[0])))
    return {key: rank for key, _, rank in competition_ranks(ordered)}
