import logging
import math
from typing import Iterable, List

from termreport.core.aggregation import activity_lookup
from termreport.core.errors import NotFoundError, ValidationError
from termreport.core.models import AssignmentScore
from termreport.services.lock_guard import TermLockGuard
from termreport.services.storage import Storage

logger = logging.getLogger(__name__)

MIN_SCORE = 0.0
MAX_SCORE = 100.0


class ScoreService:
    """Write side of the score store.

    Every write checks the term lock and applies inside the same storage
    transaction, so a finalization cannot slip in between check and write.
    """

    def __init__(self, store: Storage, lock_guard: TermLockGuard | None = None) -> None:
        self.store = store
        self.lock_guard = lock_guard or TermLockGuard(store)

    def _validate(self, score: AssignmentScore) -> None:
        try:
            value = float(score.score)
        except (TypeError, ValueError) as exc:
            raise ValidationError(
                f"Score for {score.assignment_name} in subject {score.subject_id} is not a number",
                subject_id=score.subject_id,
                field="score",
            ) from exc
        if math.isnan(value) or value < MIN_SCORE or value > MAX_SCORE:
            raise ValidationError(
                f"Score {value:g} for {score.assignment_name} in subject {score.subject_id} "
                f"must be between {MIN_SCORE:g} and {MAX_SCORE:g}",
                subject_id=score.subject_id,
                field="score",
            )

        student = self.store.get_student(score.student_id)
        if student is None:
            raise NotFoundError(f"Student {score.student_id} not found")
        if student.class_id != score.class_id:
            raise ValidationError(
                f"Student {score.student_id} is not enrolled in class {score.class_id}",
                field="class_id",
            )
        subject_ids = {s.id for s in self.store.get_subjects_for_class(score.class_id)}
        if score.subject_id not in subject_ids:
            raise ValidationError(
                f"Subject {score.subject_id} is not taught in class {score.class_id}",
                subject_id=score.subject_id,
                field="subject_id",
            )
        if score.assignment_name not in activity_lookup(self.store.list_activities()):
            raise ValidationError(
                f"Unknown assignment '{score.assignment_name}' for subject {score.subject_id}",
                subject_id=score.subject_id,
                field="assignment_name",
            )

    def put_score(self, score: AssignmentScore) -> None:
        self.put_scores([score])

    def put_scores(self, scores: Iterable[AssignmentScore]) -> None:
        """Write a batch of scores; any rejected record leaves the store untouched."""
        batch: List[AssignmentScore] = list(scores)
        if not batch:
            return
        with self.store.transaction():
            checked = set()
            for score in batch:
                key = (score.class_id, score.term)
                if key not in checked:
                    self.lock_guard.ensure_unlocked(score.class_id, score.term)
                    checked.add(key)
                self._validate(score)
            for score in batch:
                self.store._upsert_score(score)
        logger.debug("Stored %d score(s)", len(batch))
