from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import asdict
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from termreport.core.models import (
    AssignmentActivity,
    AssignmentScore,
    AttendanceSummary,
    ReportStatus,
    SchoolClass,
    Student,
    Subject,
    SubjectReportLine,
    Term,
    TermReport,
)

ATTENDED_STATUSES = ("Present", "Late")
ATTENDANCE_STATUSES = ("Present", "Absent", "Late", "Excused")


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def level_for_class(school_class: SchoolClass) -> Optional[str]:
    """Explicit level if set, otherwise derived from the conventional class id."""
    if school_class.level:
        return school_class.level
    class_id = school_class.id.lower()
    if class_id.startswith(("nur", "kg")):
        return "Pre-School"
    if class_id in ("b1", "b2", "b3"):
        return "Lower Primary"
    if class_id in ("b4", "b5", "b6"):
        return "Upper Primary"
    if class_id in ("jhs1", "jhs2"):
        return "JHS"
    if class_id == "jhs3":
        return "Final Year"
    return None


class Storage:
    """SQLite-backed score, report, roster and attendance store.

    One connection is shared across threads; every statement runs under a
    re-entrant lock and writes that must see a consistent snapshot go through
    :meth:`transaction`.
    """

    def __init__(self, db_path: str = "termreport.db") -> None:
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        self._init_schema()

    @classmethod
    def from_settings(cls) -> "Storage":
        from termreport.config.settings import settings

        return cls(settings.db_path)

    def close(self) -> None:
        self.conn.close()

    def _init_schema(self) -> None:
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS classes (
              id TEXT PRIMARY KEY,
              name TEXT NOT NULL,
              level TEXT
            );

            CREATE TABLE IF NOT EXISTS students (
              id TEXT PRIMARY KEY,
              first_name TEXT NOT NULL,
              last_name TEXT NOT NULL,
              class_id TEXT NOT NULL,
              is_active INTEGER NOT NULL DEFAULT 1,
              FOREIGN KEY(class_id) REFERENCES classes(id)
            );

            CREATE TABLE IF NOT EXISTS subjects (
              id TEXT PRIMARY KEY,
              name TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS class_subjects (
              class_id TEXT NOT NULL,
              subject_id TEXT NOT NULL,
              PRIMARY KEY(class_id, subject_id),
              FOREIGN KEY(class_id) REFERENCES classes(id),
              FOREIGN KEY(subject_id) REFERENCES subjects(id)
            );

            CREATE TABLE IF NOT EXISTS activities (
              id TEXT PRIMARY KEY,
              name TEXT UNIQUE NOT NULL,
              expected_per_term INTEGER NOT NULL DEFAULT 1,
              weight REAL NOT NULL DEFAULT 100,
              is_exam INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS scores (
              student_id TEXT NOT NULL,
              class_id TEXT NOT NULL,
              subject_id TEXT NOT NULL,
              assignment_name TEXT NOT NULL,
              term_name TEXT NOT NULL,
              term_year TEXT NOT NULL,
              score REAL NOT NULL,
              recorded_by TEXT NOT NULL DEFAULT '',
              recorded_at TEXT NOT NULL,
              UNIQUE(student_id, class_id, subject_id, assignment_name, term_name, term_year)
            );

            CREATE TABLE IF NOT EXISTS reports (
              student_id TEXT NOT NULL,
              term_name TEXT NOT NULL,
              term_year TEXT NOT NULL,
              class_id TEXT NOT NULL,
              class_name TEXT NOT NULL DEFAULT '',
              status TEXT NOT NULL,
              subjects TEXT NOT NULL,
              days_attended INTEGER NOT NULL DEFAULT 0,
              total_days INTEGER NOT NULL DEFAULT 0,
              conduct TEXT NOT NULL DEFAULT '',
              talent_and_interest TEXT NOT NULL DEFAULT '',
              class_teacher_remarks TEXT NOT NULL DEFAULT '',
              head_teacher_remarks TEXT NOT NULL DEFAULT '',
              next_term_begins TEXT,
              generated_at TEXT,
              finalized_at TEXT,
              PRIMARY KEY(student_id, class_id, term_name, term_year)
            );

            CREATE TABLE IF NOT EXISTS terms (
              name TEXT NOT NULL,
              year TEXT NOT NULL,
              start_date TEXT NOT NULL,
              end_date TEXT,
              PRIMARY KEY(name, year)
            );

            CREATE TABLE IF NOT EXISTS attendance (
              student_id TEXT NOT NULL,
              term_name TEXT NOT NULL,
              term_year TEXT NOT NULL,
              day TEXT NOT NULL,
              status TEXT NOT NULL,
              UNIQUE(student_id, day)
            );
            """
        )

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed reads and writes as one immediate transaction.

        Nested calls join the outer transaction.
        """
        with self._lock:
            outer = self._depth == 0
            if outer:
                self.conn.execute("BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield self.conn
            except BaseException:
                self._depth -= 1
                if outer:
                    self.conn.execute("ROLLBACK")
                raise
            else:
                self._depth -= 1
                if outer:
                    self.conn.execute("COMMIT")

    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            return list(self.conn.execute(sql, params).fetchall())

    # Roster / catalog

    def add_class(self, class_id: str, name: str, level: Optional[str] = None) -> None:
        with self.transaction() as conn:
            conn.execute(
                """INSERT INTO classes(id, name, level) VALUES(?,?,?)
                   ON CONFLICT(id) DO UPDATE SET name=excluded.name, level=excluded.level""",
                (class_id, name, level),
            )

    def add_student(self, student_id: str, first_name: str, last_name: str, class_id: str) -> None:
        with self.transaction() as conn:
            conn.execute(
                """INSERT INTO students(id, first_name, last_name, class_id, is_active) VALUES(?,?,?,?,1)
                   ON CONFLICT(id) DO UPDATE SET
                       first_name=excluded.first_name,
                       last_name=excluded.last_name,
                       class_id=excluded.class_id,
                       is_active=1""",
                (student_id, first_name, last_name, class_id),
            )

    def withdraw_student(self, student_id: str) -> None:
        with self.transaction() as conn:
            conn.execute("UPDATE students SET is_active=0 WHERE id=?", (student_id,))

    def add_subject(self, subject_id: str, name: str, class_ids: Iterable[str] = ()) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO subjects(id, name) VALUES(?,?) ON CONFLICT(id) DO UPDATE SET name=excluded.name",
                (subject_id, name),
            )
            for class_id in class_ids:
                conn.execute(
                    "INSERT OR IGNORE INTO class_subjects(class_id, subject_id) VALUES(?,?)",
                    (class_id, subject_id),
                )

    def add_activity(self, activity: AssignmentActivity) -> None:
        with self.transaction() as conn:
            conn.execute(
                """INSERT INTO activities(id, name, expected_per_term, weight, is_exam) VALUES(?,?,?,?,?)
                   ON CONFLICT(id) DO UPDATE SET
                       name=excluded.name,
                       expected_per_term=excluded.expected_per_term,
                       weight=excluded.weight,
                       is_exam=excluded.is_exam""",
                (activity.id, activity.name, activity.expected_per_term, activity.weight, 1 if activity.is_exam else 0),
            )

    def get_class(self, class_id: str) -> Optional[SchoolClass]:
        rows = self._query("SELECT * FROM classes WHERE id=?", (class_id,))
        if not rows:
            return None
        return SchoolClass(id=rows[0]["id"], name=rows[0]["name"], level=rows[0]["level"])

    def list_classes(self) -> List[SchoolClass]:
        rows = self._query("SELECT * FROM classes ORDER BY id")
        return [SchoolClass(id=r["id"], name=r["name"], level=r["level"]) for r in rows]

    def get_classes_by_level(self, level: str) -> List[SchoolClass]:
        return [c for c in self.list_classes() if level_for_class(c) == level]

    def get_student(self, student_id: str) -> Optional[Student]:
        rows = self._query("SELECT * FROM students WHERE id=?", (student_id,))
        if not rows:
            return None
        r = rows[0]
        return Student(id=r["id"], first_name=r["first_name"], last_name=r["last_name"], class_id=r["class_id"])

    def get_students(self, class_id: str) -> List[Student]:
        rows = self._query(
            "SELECT * FROM students WHERE class_id=? AND is_active=1 ORDER BY id",
            (class_id,),
        )
        return [
            Student(id=r["id"], first_name=r["first_name"], last_name=r["last_name"], class_id=r["class_id"])
            for r in rows
        ]

    def get_subjects_for_class(self, class_id: str) -> List[Subject]:
        rows = self._query(
            """SELECT s.id, s.name FROM subjects s
               JOIN class_subjects cs ON cs.subject_id=s.id
               WHERE cs.class_id=? ORDER BY s.name, s.id""",
            (class_id,),
        )
        return [Subject(id=r["id"], name=r["name"]) for r in rows]

    def list_activities(self) -> List[AssignmentActivity]:
        rows = self._query("SELECT * FROM activities ORDER BY id")
        return [
            AssignmentActivity(
                id=r["id"],
                name=r["name"],
                expected_per_term=int(r["expected_per_term"]),
                weight=float(r["weight"]),
                is_exam=bool(r["is_exam"]),
            )
            for r in rows
        ]

    # Scores

    def _upsert_score(self, score: AssignmentScore) -> None:
        """Raw write; callers go through ScoreService so the term lock is honoured."""
        recorded_at = _to_iso(score.recorded_at or datetime.now(timezone.utc))
        with self.transaction() as conn:
            conn.execute(
                """INSERT INTO scores(student_id, class_id, subject_id, assignment_name, term_name, term_year,
                                      score, recorded_by, recorded_at)
                   VALUES(?,?,?,?,?,?,?,?,?)
                   ON CONFLICT(student_id, class_id, subject_id, assignment_name, term_name, term_year)
                   DO UPDATE SET
                       score=excluded.score,
                       recorded_by=excluded.recorded_by,
                       recorded_at=excluded.recorded_at""",
                (
                    score.student_id,
                    score.class_id,
                    score.subject_id,
                    score.assignment_name,
                    score.term.name,
                    score.term.year,
                    float(score.score),
                    score.recorded_by,
                    recorded_at,
                ),
            )

    def get_scores(self, class_id: str, term: Term) -> List[AssignmentScore]:
        rows = self._query(
            """SELECT * FROM scores WHERE class_id=? AND term_name=? AND term_year=?
               ORDER BY student_id, subject_id, assignment_name""",
            (class_id, term.name, term.year),
        )
        return [
            AssignmentScore(
                student_id=r["student_id"],
                class_id=r["class_id"],
                subject_id=r["subject_id"],
                assignment_name=r["assignment_name"],
                score=float(r["score"]),
                term=Term(r["term_name"], r["term_year"]),
                recorded_by=r["recorded_by"],
                recorded_at=_from_iso(r["recorded_at"]),
            )
            for r in rows
        ]

    # Reports

    def get_report(self, student_id: str, class_id: str, term: Term) -> Optional[TermReport]:
        rows = self._query(
            "SELECT * FROM reports WHERE student_id=? AND class_id=? AND term_name=? AND term_year=?",
            (student_id, class_id, term.name, term.year),
        )
        if not rows:
            return None
        return self._row_to_report(rows[0])

    def list_reports(self, class_id: str, term: Term) -> List[TermReport]:
        rows = self._query(
            "SELECT * FROM reports WHERE class_id=? AND term_name=? AND term_year=? ORDER BY student_id",
            (class_id, term.name, term.year),
        )
        return [self._row_to_report(r) for r in rows]

    def put_report(self, report: TermReport) -> None:
        with self.transaction() as conn:
            conn.execute(
                """INSERT INTO reports(student_id, term_name, term_year, class_id, class_name, status, subjects,
                                       days_attended, total_days, conduct, talent_and_interest,
                                       class_teacher_remarks, head_teacher_remarks, next_term_begins,
                                       generated_at, finalized_at)
                   VALUES(?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)
                   ON CONFLICT(student_id, class_id, term_name, term_year) DO UPDATE SET
                       class_name=excluded.class_name,
                       status=excluded.status,
                       subjects=excluded.subjects,
                       days_attended=excluded.days_attended,
                       total_days=excluded.total_days,
                       conduct=excluded.conduct,
                       talent_and_interest=excluded.talent_and_interest,
                       class_teacher_remarks=excluded.class_teacher_remarks,
                       head_teacher_remarks=excluded.head_teacher_remarks,
                       next_term_begins=excluded.next_term_begins,
                       generated_at=excluded.generated_at,
                       finalized_at=excluded.finalized_at""",
                (
                    report.student_id,
                    report.term.name,
                    report.term.year,
                    report.class_id,
                    report.class_name,
                    report.status.value,
                    json.dumps([asdict(line) for line in report.subjects]),
                    report.attendance.days_attended,
                    report.attendance.total_days,
                    report.conduct,
                    report.talent_and_interest,
                    report.class_teacher_remarks,
                    report.head_teacher_remarks,
                    report.next_term_begins.isoformat() if report.next_term_begins else None,
                    _to_iso(report.generated_at),
                    _to_iso(report.finalized_at),
                ),
            )

    @staticmethod
    def _row_to_report(row: sqlite3.Row) -> TermReport:
        return TermReport(
            student_id=row["student_id"],
            class_id=row["class_id"],
            term=Term(row["term_name"], row["term_year"]),
            class_name=row["class_name"],
            status=ReportStatus(row["status"]),
            subjects=[SubjectReportLine(**line) for line in json.loads(row["subjects"] or "[]")],
            attendance=AttendanceSummary(int(row["days_attended"]), int(row["total_days"])),
            conduct=row["conduct"],
            talent_and_interest=row["talent_and_interest"],
            class_teacher_remarks=row["class_teacher_remarks"],
            head_teacher_remarks=row["head_teacher_remarks"],
            next_term_begins=date.fromisoformat(row["next_term_begins"]) if row["next_term_begins"] else None,
            generated_at=_from_iso(row["generated_at"]),
            finalized_at=_from_iso(row["finalized_at"]),
        )

    # Academic calendar

    def add_term(self, term: Term, start_date: date, end_date: Optional[date] = None) -> None:
        with self.transaction() as conn:
            conn.execute(
                """INSERT INTO terms(name, year, start_date, end_date) VALUES(?,?,?,?)
                   ON CONFLICT(name, year) DO UPDATE SET start_date=excluded.start_date, end_date=excluded.end_date""",
                (term.name, term.year, start_date.isoformat(), end_date.isoformat() if end_date else None),
            )

    def next_term_start(self, term: Term) -> Optional[date]:
        """Start date of the term that follows ``term`` in the same academic year, if any."""
        rows = self._query(
            """SELECT start_date FROM terms
               WHERE year=? AND start_date > (SELECT start_date FROM terms WHERE name=? AND year=?)
               ORDER BY start_date LIMIT 1""",
            (term.year, term.name, term.year),
        )
        if not rows:
            return None
        return date.fromisoformat(rows[0]["start_date"])

    # Attendance

    def record_attendance(self, student_id: str, term: Term, day: str, status: str) -> None:
        if status not in ATTENDANCE_STATUSES:
            raise ValueError(f"Unsupported attendance status: {status}")
        with self.transaction() as conn:
            conn.execute(
                """INSERT INTO attendance(student_id, term_name, term_year, day, status) VALUES(?,?,?,?,?)
                   ON CONFLICT(student_id, day) DO UPDATE SET
                       status=excluded.status,
                       term_name=excluded.term_name,
                       term_year=excluded.term_year""",
                (student_id, term.name, term.year, day, status),
            )

    def count_attendance(self, student_id: str, term: Term) -> tuple[int, int]:
        placeholders = ",".join("?" for _ in ATTENDED_STATUSES)
        rows = self._query(
            f"""SELECT
                    COALESCE(SUM(CASE WHEN status IN ({placeholders}) THEN 1 ELSE 0 END), 0) AS attended,
                    COUNT(*) AS total
                FROM attendance WHERE student_id=? AND term_name=? AND term_year=?""",
            (*ATTENDED_STATUSES, student_id, term.name, term.year),
        )
        return int(rows[0]["attended"]), int(rows[0]["total"])
