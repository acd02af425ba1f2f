from __future__ import annotations

from typing import Optional


class TermReportError(Exception):
    pass


class ValidationError(TermReportError):
    def __init__(self, message: str, *, subject_id: Optional[str] = None, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.subject_id = subject_id
        self.field = field


class LockedTermError(TermReportError):
    def __init__(self, class_id: str, term_label: str) -> None:
        super().__init__(
            f"Scores for class {class_id} in {term_label} are locked: every report has been finalized."
        )
        self.class_id = class_id
        self.term_label = term_label


class ConfigError(TermReportError):
    pass


class NotFoundError(TermReportError):
    pass


class ReportStateError(TermReportError):
    pass


class RankingUnavailable(TermReportError):
    pass


class RankingTimeout(RankingUnavailable):
    pass
