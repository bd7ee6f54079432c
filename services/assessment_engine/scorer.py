"""
Assessment Scoring Engine

Pure functions: the same catalog snapshot and responses always yield the same
score set. No clock, no randomness, no storage.
"""
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Mapping, Sequence, Union

from services.assessment_engine.models import Question, Response

logger = logging.getLogger(__name__)

MAX_SCORE = 100


def round_half_up(value: Union[Decimal, float]) -> int:
    """Rounds to the nearest integer with halves going up (never banker's rounding, never floor)."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _normalize(total: Decimal, maximum: Decimal) -> int:
    if maximum <= 0:
        return 0
    return min(MAX_SCORE, max(0, round_half_up(total * MAX_SCORE / maximum)))


def category_maxima(catalog: Sequence[Question]) -> Dict[str, Decimal]:
    """Sum of each question's highest option weight, per category, over the given snapshot only."""
    maxima: Dict[str, Decimal] = {}
    for question in catalog:
        key = question.category.value
        maxima[key] = maxima.get(key, Decimal("0")) + Decimal(str(question.max_weight))
    return maxima


def calculate_scores(
    catalog: Sequence[Question],
    responses: Union[Mapping[str, Response], Iterable[Response]],
) -> Dict[str, int]:
    """
    Calculates one 0-100 score per category present in the catalog snapshot.

    Args:
        catalog: The ordered question snapshot the responses were captured against.
        responses: Responses keyed by question id, or an iterable of responses.

    Returns:
        A dictionary of category value -> integer score. Categories with no
        answered questions score 0.
    """
    if isinstance(responses, Mapping):
        responses = responses.values()

    by_id = {q.id: q for q in catalog}
    maxima = category_maxima(catalog)
    totals: Dict[str, Decimal] = {key: Decimal("0") for key in maxima}

    for response in responses:
        question = by_id.get(response.question_id)
        if question is None:
            logger.warning(f"Ignoring response for unknown question '{response.question_id}'")
            continue
        totals[question.category.value] += Decimal(str(response.weight))

    return {key: _normalize(totals[key], maximum) for key, maximum in maxima.items()}


def dimension_maxima(catalog: Sequence[Question]) -> Dict[str, Dict[str, Decimal]]:
    """Like category_maxima, split further by each question's scoring key. Unkeyed questions are left out."""
    maxima: Dict[str, Dict[str, Decimal]] = {}
    for question in catalog:
        if not question.scoring_key:
            continue
        dimensions = maxima.setdefault(question.category.value, {})
        dimensions[question.scoring_key] = dimensions.get(question.scoring_key, Decimal("0")) + Decimal(str(question.max_weight))
    return maxima


def calculate_dimension_scores(
    catalog: Sequence[Question],
    responses: Union[Mapping[str, Response], Iterable[Response]],
) -> Dict[str, Dict[str, int]]:
    """
    Breaks each category down by scoring key (RIASEC types, aptitude areas,
    personality traits, subjects). Each dimension is normalized against its own
    maximum in the snapshot, rounded the same way as the category totals.

    Returns:
        category value -> {scoring key -> 0-100}. Categories without keyed
        questions are omitted.
    """
    if isinstance(responses, Mapping):
        responses = responses.values()

    by_id = {q.id: q for q in catalog}
    maxima = dimension_maxima(catalog)
    totals = {category: {key: Decimal("0") for key in dimensions} for category, dimensions in maxima.items()}

    for response in responses:
        question = by_id.get(response.question_id)
        if question is None or not question.scoring_key:
            continue
        totals[question.category.value][question.scoring_key] += Decimal(str(response.weight))

    return {
        category: {key: _normalize(totals[category][key], maximum) for key, maximum in dimensions.items()}
        for category, dimensions in maxima.items()
    }


def rank_categories(scores: Mapping[str, int]) -> List[str]:
    """Categories ordered by score descending; ties broken by name for a stable order."""
    return [key for key, _ in sorted(scores.items(), key=lambda item: (-item[1], item[0]))]
