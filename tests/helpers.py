from termreport.core.models import AssignmentActivity, AssignmentScore, Term
from termreport.services.score_service import ScoreService
from termreport.services.storage import Storage

TERM = Term("First Term", "2023/2024")

CLASSWORK = AssignmentActivity(id="act1", name="Classwork", expected_per_term=2, weight=100)
EXAM = AssignmentActivity(id="act4", name="End of Term Exam", expected_per_term=1, weight=100, is_exam=True)


def build_store() -> Storage:
    store = Storage(":memory:")
    store.add_class("b1", "Basic 1")
    store.add_class("b2", "Basic 2")
    store.add_class("jhs1", "JHS 1")
    store.add_subject("math", "Mathematics", ["b1", "b2", "jhs1"])
    store.add_subject("eng", "English", ["b1", "b2", "jhs1"])
    store.add_activity(CLASSWORK)
    store.add_activity(EXAM)
    store.add_student("A", "Ama", "Mensah", "b1")
    store.add_student("B", "Kofi", "Boateng", "b1")
    return store


def subject_scores(student_id: str, subject_id: str, value: float, class_id: str = "b1") -> list:
    """A classwork and an exam record with the same mark, giving that total under 50/50 caps."""
    return [
        AssignmentScore(student_id, class_id, subject_id, "Classwork 1", value, TERM),
        AssignmentScore(student_id, class_id, subject_id, "End of Term Exam", value, TERM),
    ]


def record_scores(store: Storage, records: list) -> None:
    ScoreService(store).put_scores(records)


def seed_two_students(store: Storage) -> None:
    record_scores(
        store,
        subject_scores("A", "math", 90)
        + subject_scores("A", "eng", 70)
        + subject_scores("B", "math", 60)
        + subject_scores("B", "eng", 80),
    )
