from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from termreport.core.aggregation import AggregationRule, ComponentScores, aggregate_subject
from termreport.core.errors import NotFoundError, ReportStateError, ValidationError
from termreport.core.grades import GradingScheme, load_grading_scheme
from termreport.core.models import (
    AssignmentScore,
    ReportStatus,
    SchoolClass,
    Student,
    Subject,
    SubjectReportLine,
    Term,
    TermReport,
)
from termreport.core.positions import competition_positions
from termreport.services.attendance_service import AttendanceProvider, StoredAttendanceProvider
from termreport.services.storage import Storage

logger = logging.getLogger(__name__)


class _ClassSnapshot:
    """Every enrolled student's component scores for one class and term."""

    def __init__(
        self,
        school_class: SchoolClass,
        students: List[Student],
        subjects: List[Subject],
        components: Dict[str, Dict[str, ComponentScores]],
        positions: Dict[str, Dict[str, int]],
    ) -> None:
        self.school_class = school_class
        self.students = students
        self.subjects = subjects
        self.components = components
        self.positions = positions


class ReportService:
    def __init__(
        self,
        store: Storage,
        grading_scheme: GradingScheme,
        rule: AggregationRule,
        attendance: Optional[AttendanceProvider] = None,
    ) -> None:
        rule.validate()
        self.store = store
        self.grading_scheme = grading_scheme
        self.rule = rule
        self.attendance = attendance or StoredAttendanceProvider(store)

    @classmethod
    def from_settings(cls, store: Storage) -> "ReportService":
        from termreport.config.settings import settings

        return cls(
            store,
            grading_scheme=load_grading_scheme(settings.grading_scheme),
            rule=AggregationRule.from_settings(),
        )

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def _snapshot(self, class_id: str, term: Term) -> _ClassSnapshot:
        school_class = self.store.get_class(class_id)
        if school_class is None:
            raise NotFoundError(f"Class {class_id} not found")

        students = self.store.get_students(class_id)
        subjects = self.store.get_subjects_for_class(class_id)
        activities = self.store.list_activities()

        scores_by_student: Dict[str, List[AssignmentScore]] = {}
        for record in self.store.get_scores(class_id, term):
            scores_by_student.setdefault(record.student_id, []).append(record)

        components: Dict[str, Dict[str, ComponentScores]] = {}
        for student in students:
            own = scores_by_student.get(student.id, [])
            components[student.id] = {
                subject.id: aggregate_subject(subject.id, own, activities, self.rule) for subject in subjects
            }

        # Positions need every student's total first.
        positions: Dict[str, Dict[str, int]] = {}
        for subject in subjects:
            totals = {student.id: components[student.id][subject.id].total_score for student in students}
            positions[subject.id] = competition_positions(totals)

        return _ClassSnapshot(school_class, students, subjects, components, positions)

    def _subject_lines(self, snapshot: _ClassSnapshot, student_id: str) -> List[SubjectReportLine]:
        lines: List[SubjectReportLine] = []
        for subject in snapshot.subjects:
            component = snapshot.components[student_id][subject.id]
            band = self.grading_scheme.band_for(component.total_score)
            lines.append(
                SubjectReportLine(
                    subject_id=subject.id,
                    subject_name=subject.name,
                    sba_score=component.sba_score,
                    exam_score=component.exam_score,
                    total_score=component.total_score,
                    grade=band.grade,
                    position=snapshot.positions[subject.id][student_id],
                    remarks=band.remarks,
                )
            )
        return lines

    def _assemble(self, snapshot: _ClassSnapshot, student: Student, term: Term) -> TermReport:
        existing = self.store.get_report(student.id, snapshot.school_class.id, term)
        if existing is not None and existing.is_final:
            return existing

        lines = self._subject_lines(snapshot, student.id)
        attendance = self.attendance.summarize(student.id, term)
        next_term_begins = self.store.next_term_start(term)

        if existing is None:
            report = TermReport(
                student_id=student.id,
                class_id=snapshot.school_class.id,
                class_name=snapshot.school_class.name,
                term=term,
                subjects=lines,
                attendance=attendance,
                next_term_begins=next_term_begins,
                generated_at=self._now(),
            )
            self.store.put_report(report)
            logger.info("Generated provisional report for %s (%s)", student.id, term.label)
            return report

        if (
            existing.subjects == lines
            and existing.attendance == attendance
            and existing.next_term_begins == next_term_begins
        ):
            return existing

        updated = replace(
            existing,
            class_name=snapshot.school_class.name,
            subjects=lines,
            attendance=attendance,
            next_term_begins=next_term_begins,
            generated_at=self._now(),
        )
        self.store.put_report(updated)
        logger.info("Recomputed provisional report for %s (%s)", student.id, term.label)
        return updated

    def _enrolled(self, student_id: str) -> Student:
        student = self.store.get_student(student_id)
        if student is None:
            raise NotFoundError(f"Student {student_id} not found")
        return student

    def generate_reports(self, class_id: str, term: Term) -> List[TermReport]:
        """Create or refresh the reports of every enrolled student in a class.

        Final reports are returned untouched. Nothing is written if any total
        cannot be graded.
        """
        with self.store.transaction():
            snapshot = self._snapshot(class_id, term)
            return [self._assemble(snapshot, student, term) for student in snapshot.students]

    def generate(self, student_id: str, term: Term) -> TermReport:
        with self.store.transaction():
            student = self._enrolled(student_id)
            snapshot = self._snapshot(student.class_id, term)
            return self._assemble(snapshot, student, term)

    def regenerate(self, student_id: str, term: Term) -> TermReport:
        with self.store.transaction():
            student = self._enrolled(student_id)
            existing = self.store.get_report(student.id, student.class_id, term)
            if existing is None:
                raise NotFoundError(f"No report for student {student_id} in {term.label}")
            if existing.is_final:
                raise ReportStateError(f"Report for student {student_id} in {term.label} is final")
            snapshot = self._snapshot(student.class_id, term)
            return self._assemble(snapshot, student, term)

    def update_remarks(
        self,
        student_id: str,
        term: Term,
        *,
        conduct: Optional[str] = None,
        talent_and_interest: Optional[str] = None,
        class_teacher_remarks: Optional[str] = None,
    ) -> TermReport:
        with self.store.transaction():
            report = self._provisional_report(student_id, term)
            updated = replace(
                report,
                conduct=report.conduct if conduct is None else conduct.strip(),
                talent_and_interest=(
                    report.talent_and_interest if talent_and_interest is None else talent_and_interest.strip()
                ),
                class_teacher_remarks=(
                    report.class_teacher_remarks if class_teacher_remarks is None else class_teacher_remarks.strip()
                ),
            )
            self.store.put_report(updated)
            return updated

    def finalize(self, student_id: str, term: Term, head_remarks: str) -> TermReport:
        remarks = (head_remarks or "").strip()
        if not remarks:
            raise ValidationError("Head teacher remarks are required to finalize a report", field="head_remarks")
        with self.store.transaction():
            report = self._provisional_report(student_id, term)
            final = replace(
                report,
                head_teacher_remarks=remarks,
                status=ReportStatus.FINAL,
                finalized_at=self._now(),
            )
            self.store.put_report(final)
        logger.info("Finalized report for %s (%s)", student_id, term.label)
        return final

    def _provisional_report(self, student_id: str, term: Term) -> TermReport:
        student = self._enrolled(student_id)
        report = self.store.get_report(student.id, student.class_id, term)
        if report is None:
            raise NotFoundError(f"No report for student {student_id} in {term.label}")
        if report.is_final:
            raise ReportStateError(f"Report for student {student_id} in {term.label} is already final")
        return report

