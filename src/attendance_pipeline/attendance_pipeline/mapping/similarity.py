"""Name similarity used to rank student candidates for a device user.

Terminal names are often upper-cased, truncated or re-ordered
("BUDI SANT", "Santoso Budi"), so the score blends a token-sort ratio
(order-insensitive edit similarity) with a token-set ratio (rewards a
name whose tokens are contained in the other). Both come from
difflib.SequenceMatcher, scaled to 0..100.
"""

from __future__ import annotations

import re
import unicodedata
from difflib import SequenceMatcher
from typing import Optional

from ..core.constants import CONFIDENCE_HIGH, CONFIDENCE_MEDIUM, DEPARTMENT_MATCH_BONUS
from ..core.enums import ConfidenceBand


def normalize_name(value: Optional[str]) -> str:
    text = unicodedata.normalize("NFKD", value or "")
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = re.sub(r"[^0-9a-z]+", " ", text.lower())
    return " ".join(text.split())


def _ratio(a: str, b: str) -> float:
    if not a or not b:
        return 0.0
    return SequenceMatcher(None, a, b).ratio()


def token_sort_ratio(a: str, b: str) -> float:
    return _ratio(" ".join(sorted(a.split())), " ".join(sorted(b.split())))


def token_set_ratio(a: str, b: str) -> float:
    ta, tb = set(a.split()), set(b.split())
    if not ta or not tb:
        return 0.0

    common = " ".join(sorted(ta & tb))
    t1 = " ".join(filter(None, [common, " ".join(sorted(ta - tb))]))
    t2 = " ".join(filter(None, [common, " ".join(sorted(tb - ta))]))

    scores = [_ratio(t1, t2)]
    if common:
        scores.extend([_ratio(common, t1), _ratio(common, t2)])
    return max(scores)


def name_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Similarity of two person names in [0, 100]; 100 for equal names."""

    na, nb = normalize_name(a), normalize_name(b)
    if not na or not nb:
        return 0.0
    if na == nb:
        return 100.0
    score = 50.0 * token_sort_ratio(na, nb) + 50.0 * token_set_ratio(na, nb)
    return round(min(max(score, 0.0), 100.0), 1)


def confidence_score(
    *,
    device_user_name: str,
    student_name: str,
    department: Optional[str] = None,
    class_id: Optional[str] = None,
) -> float:
    score = name_similarity(device_user_name, student_name)
    if score > 0 and department and class_id and normalize_name(department) == normalize_name(class_id):
        score += DEPARTMENT_MATCH_BONUS
    return round(min(score, 100.0), 1)


def confidence_band(score: float) -> ConfidenceBand:
    if score >= CONFIDENCE_HIGH:
        return ConfidenceBand.HIGH
    if score >= CONFIDENCE_MEDIUM:
        return ConfidenceBand.MEDIUM
    return ConfidenceBand.LOW
