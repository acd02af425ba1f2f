import logging

from termreport.core.errors import LockedTermError
from termreport.core.models import ReportStatus, Term
from termreport.services.storage import Storage

logger = logging.getLogger(__name__)


class TermLockGuard:
    """Derives the lock state of a class/term from the stored reports.

    Nothing is cached: the answer is recomputed on every call so it follows
    reports as they move to Final.
    """

    def __init__(self, store: Storage) -> None:
        self.store = store

    def is_locked(self, class_id: str, term: Term) -> bool:
        students = self.store.get_students(class_id)
        if not students:
            return False
        for student in students:
            report = self.store.get_report(student.id, class_id, term)
            if report is None or report.status != ReportStatus.FINAL:
                return False
        return True

    def ensure_unlocked(self, class_id: str, term: Term) -> None:
        if self.is_locked(class_id, term):
            logger.info("Rejected score write for locked class %s in %s", class_id, term.label)
            raise LockedTermError(class_id, term.label)
