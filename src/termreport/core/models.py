from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import List, Optional


class ReportStatus(str, Enum):
    PROVISIONAL = "Provisional"
    FINAL = "Final"


class RankScope(str, Enum):
    CLASS = "class"
    LEVEL = "level"
    SCHOOL = "school"


@dataclass(frozen=True)
class Term:
    name: str
    year: str

    @property
    def label(self) -> str:
        return f"{self.name} {self.year}"

    @classmethod
    def parse(cls, label: str) -> "Term":
        """Split "Second Term 2023/2024" into name and academic year."""
        name, _, year = label.strip().rpartition(" ")
        if not name or not year:
            raise ValueError(f"Term label must end with an academic year: {label!r}")
        return cls(name=name, year=year)


@dataclass(frozen=True)
class Student:
    id: str
    first_name: str
    last_name: str
    class_id: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class SchoolClass:
    id: str
    name: str
    level: Optional[str] = None


@dataclass(frozen=True)
class Subject:
    id: str
    name: str


@dataclass(frozen=True)
class AssignmentActivity:
    id: str
    name: str
    expected_per_term: int = 1
    weight: float = 100.0
    is_exam: bool = False

    def instance_names(self) -> List[str]:
        if self.expected_per_term <= 1:
            return [self.name]
        return [f"{self.name} {n}" for n in range(1, self.expected_per_term + 1)]


@dataclass
class AssignmentScore:
    student_id: str
    class_id: str
    subject_id: str
    assignment_name: str
    score: float
    term: Term
    recorded_by: str = ""
    recorded_at: Optional[datetime] = None


@dataclass(frozen=True)
class AttendanceSummary:
    days_attended: int = 0
    total_days: int = 0

    @property
    def percentage(self) -> Optional[float]:
        if self.total_days <= 0:
            return None
        return round((self.days_attended / self.total_days) * 100, 2)


@dataclass(frozen=True)
class SubjectReportLine:
    subject_id: str
    subject_name: str
    sba_score: float
    exam_score: float
    total_score: float
    grade: str
    position: int
    remarks: str = ""


@dataclass
class TermReport:
    student_id: str
    class_id: str
    term: Term
    class_name: str = ""
    status: ReportStatus = ReportStatus.PROVISIONAL
    subjects: List[SubjectReportLine] = field(default_factory=list)
    attendance: AttendanceSummary = field(default_factory=AttendanceSummary)
    conduct: str = ""
    talent_and_interest: str = ""
    class_teacher_remarks: str = ""
    head_teacher_remarks: str = ""
    next_term_begins: Optional[date] = None
    generated_at: Optional[datetime] = None
    finalized_at: Optional[datetime] = None

    @property
    def is_final(self) -> bool:
        return self.status == ReportStatus.FINAL


@dataclass(frozen=True)
class RankEntry:
    student_id: str
    name: str
    class_name: str
    average_score: float
    rank: int
