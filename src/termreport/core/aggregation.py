import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence

from termreport.core.errors import ConfigError
from termreport.core.models import AssignmentActivity, AssignmentScore

logger = logging.getLogger(__name__)

COMBINE_AVERAGE = "average"
COMBINE_SUM = "sum"
COMBINATION_RULES = (COMBINE_AVERAGE, COMBINE_SUM)


@dataclass(frozen=True)
class AggregationRule:
    sba_max: float = 50.0
    exam_max: float = 50.0
    sba_combination: str = COMBINE_AVERAGE
    exam_combination: str = COMBINE_AVERAGE

    def validate(self) -> None:
        for name in (self.sba_combination, self.exam_combination):
            if name not in COMBINATION_RULES:
                raise ConfigError(f"Unknown combination rule '{name}'. Use one of: {', '.join(COMBINATION_RULES)}")
        if self.sba_max < 0 or self.exam_max < 0:
            raise ConfigError("Component caps must not be negative")
        if abs((self.sba_max + self.exam_max) - 100.0) > 1e-9:
            raise ConfigError(
                f"SBA cap ({self.sba_max:g}) and exam cap ({self.exam_max:g}) must add up to 100"
            )

    @classmethod
    def from_settings(cls) -> "AggregationRule":
        from termreport.config.settings import settings

        rule = cls(
            sba_max=settings.sba_max_score,
            exam_max=settings.exam_max_score,
            sba_combination=settings.sba_combination,
            exam_combination=settings.exam_combination,
        )
        rule.validate()
        return rule


@dataclass(frozen=True)
class ComponentScores:
    sba_score: float = 0.0
    exam_score: float = 0.0
    has_scores: bool = False

    @property
    def total_score(self) -> float:
        return round(self.sba_score + self.exam_score, 1)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def activity_lookup(activities: Iterable[AssignmentActivity]) -> Dict[str, AssignmentActivity]:
    """Map every expected assignment name ("Quiz 2", "End of Term Exam") to its activity."""
    lookup: Dict[str, AssignmentActivity] = {}
    for activity in activities:
        for name in activity.instance_names():
            if name in lookup:
                raise ConfigError(f"Assignment name '{name}' belongs to more than one activity")
            lookup[name] = activity
    return lookup


def _combine(
    activities: Sequence[AssignmentActivity],
    scores_by_activity: Dict[str, List[float]],
    rule: str,
    cap: float,
) -> float:
    if not activities or cap <= 0:
        return 0.0

    means: Dict[str, float] = {}
    for activity in activities:
        values = scores_by_activity.get(activity.id, [])
        means[activity.id] = (sum(values) / len(values)) if values else 0.0

    if rule == COMBINE_SUM:
        total = sum(means[a.id] / 100.0 * a.weight for a in activities)
        return clamp(total, 0.0, cap)

    total_weight = sum(a.weight for a in activities)
    if total_weight <= 0:
        return 0.0
    percentage = sum(means[a.id] * a.weight for a in activities) / total_weight
    return clamp(percentage / 100.0 * cap, 0.0, cap)


def aggregate_subject(
    subject_id: str,
    scores: Iterable[AssignmentScore],
    activities: Sequence[AssignmentActivity],
    rule: AggregationRule,
) -> ComponentScores:
    """Combine one student's raw records for a subject into SBA and exam components.

    Records are bucketed by their activity's ``is_exam`` flag. Missing
    activities contribute 0, so a subject with no records scores 0/0.
    """
    lookup = activity_lookup(activities)
    sba_activities = [a for a in activities if not a.is_exam]
    exam_activities = [a for a in activities if a.is_exam]

    scores_by_activity: Dict[str, List[float]] = {}
    seen = False
    for record in scores:
        if record.subject_id != subject_id:
            continue
        activity = lookup.get(record.assignment_name)
        if activity is None:
            logger.warning(
                "Ignoring score for unknown assignment '%s' (student=%s, subject=%s)",
                record.assignment_name,
                record.student_id,
                subject_id,
            )
            continue
        scores_by_activity.setdefault(activity.id, []).append(float(record.score))
        seen = True

    sba = _combine(sba_activities, scores_by_activity, rule.sba_combination, rule.sba_max)
    exam = _combine(exam_activities, scores_by_activity, rule.exam_combination, rule.exam_max)
    return ComponentScores(sba_score=round(sba, 1), exam_score=round(exam, 1), has_scores=seen)
