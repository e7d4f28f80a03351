from typing import List, Sequence, Tuple, TypeVar

import numpy as np

from wayfinder.domain.errors import DimensionMismatchError

T = TypeVar("T")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between two vectors

    Returns exactly 0.0 when either vector has zero magnitude. Vectors of
    different length raise DimensionMismatchError.
    """

    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)

    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    score = float(np.dot(va, vb) / (norm_a * norm_b))
    # Clamp float drift so cosine(v, v) never reads as 1.0000000002
    return max(-1.0, min(1.0, score))


def rank(scored: List[Tuple[T, float]], min_score: float, limit: int) -> List[Tuple[T, float]]:
    """Filter by min_score, sort descending by score, truncate to limit

    sorted() is stable, so equal scores keep their input order.
    """

    kept = [item for item in scored if item[1] >= min_score]
    kept = sorted(kept, key=lambda item: item[1], reverse=True)
    return kept[:max(limit, 0)]
