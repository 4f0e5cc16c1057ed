"""
Constitution scoring - converts a weighted questionnaire into dosha scores.

Each answer contributes its weight (default 1) to one of three categories.
Category totals are normalized to independently rounded percentages, so the
three values need not sum to exactly 100.

Classification, applied to scores sorted descending:
1. top/second and second/third both within 10 points -> Tridosha
2. top/second within 15 points -> dual dosha ("Vata-Pitta"), third as secondary
3. otherwise top alone; second is secondary only when it scores above 25
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .exceptions import ValidationFailed

BALANCED_GAP = 10
DUAL_GAP = 15
SECONDARY_THRESHOLD = 25
BALANCED = "Tridosha"
NONE = "None"


class Dosha(str, Enum):
    VATA = "vata"
    PITTA = "pitta"
    KAPHA = "kapha"

    @property
    def label(self) -> str:
        return self.value.capitalize()


@dataclass(frozen=True)
class ConstitutionScores:
    """Normalized scores plus classification."""

    vata: int
    pitta: int
    kapha: int
    primary: str
    secondary: str


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _category(answer: Mapping[str, Any]) -> Dosha | None:
    raw = answer.get("category")
    if raw is None:
        raw = answer.get("dosha_type")
    try:
        return Dosha(str(raw).lower())
    except ValueError:
        return None


def _weight(answer: Mapping[str, Any]) -> float:
    raw = answer.get("weight")
    if raw is None:
        raw = answer.get("points")
    if raw is None:
        return 1
    if isinstance(raw, bool) or not isinstance(raw, (int, float)) or not 0 <= raw < math.inf:
        raise ValidationFailed("Answer weight must be a non-negative number", ["questionnaire"])
    return raw or 1


def score(questionnaire: Iterable[Mapping[str, Any]]) -> ConstitutionScores:
    """
    Score a questionnaire.

    Args:
        questionnaire: Answers carrying ``category`` (vata/pitta/kapha) and an
            optional non-negative ``weight`` (``points`` in older clients).
            Unknown categories are ignored; a missing or zero weight counts
            as 1.

    Returns:
        ConstitutionScores with percentages and classification

    Raises:
        ValidationFailed: A weight is not a non-negative number, or no
            answer names a known category
    """
    totals = {dosha: 0.0 for dosha in Dosha}
    scored = 0
    for answer in questionnaire:
        dosha = _category(answer)
        if dosha is None:
            continue
        totals[dosha] += _weight(answer)
        scored += 1

    if not scored:
        raise ValidationFailed(
            "Questionnaire answers must name vata, pitta or kapha", ["questionnaire"]
        )

    total = sum(totals.values())
    percentages = {dosha: _round_half_up(value / total * 100) for dosha, value in totals.items()}
    primary, secondary = classify(
        percentages[Dosha.VATA], percentages[Dosha.PITTA], percentages[Dosha.KAPHA]
    )
    return ConstitutionScores(
        vata=percentages[Dosha.VATA],
        pitta=percentages[Dosha.PITTA],
        kapha=percentages[Dosha.KAPHA],
        primary=primary,
        secondary=secondary,
    )


def classify(vata: int, pitta: int, kapha: int) -> tuple[str, str]:
    """
    Pick primary and secondary dosha from three percentages.

    The >25 secondary rule is only consulted once the balanced and dual
    checks have both declined.
    """
    ranked = sorted(
        [(Dosha.VATA, vata), (Dosha.PITTA, pitta), (Dosha.KAPHA, kapha)],
        key=lambda item: item[1],
        reverse=True,
    )
    (top, top_score), (second, second_score), (third, third_score) = ranked

    if abs(top_score - second_score) < BALANCED_GAP and abs(second_score - third_score) < BALANCED_GAP:
        return BALANCED, NONE

    if abs(top_score - second_score) < DUAL_GAP:
        return f"{top.label}-{second.label}", third.label

    secondary = second.label if second_score > SECONDARY_THRESHOLD else NONE
    return top.label, secondary
