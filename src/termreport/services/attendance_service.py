from typing import Dict, Protocol

from termreport.core.models import AttendanceSummary, Term
from termreport.services.storage import Storage


class AttendanceProvider(Protocol):
    def summarize(self, student_id: str, term: Term) -> AttendanceSummary:
        ...


class StoredAttendanceProvider:
    """Summarizes daily attendance captured elsewhere and written to the store."""

    def __init__(self, store: Storage) -> None:
        self.store = store

    def summarize(self, student_id: str, term: Term) -> AttendanceSummary:
        attended, total = self.store.count_attendance(student_id, term)
        return AttendanceSummary(days_attended=attended, total_days=total)


class StaticAttendanceProvider:
    """Serves summaries handed over by an external attendance system."""

    def __init__(self, summaries: Dict[str, AttendanceSummary] | None = None) -> None:
        self.summaries = dict(summaries or {})

    def summarize(self, student_id: str, term: Term) -> AttendanceSummary:
        return self.summaries.get(student_id, AttendanceSummary())
