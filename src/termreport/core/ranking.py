from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional

from termreport.core.aggregation import clamp
from termreport.core.models import RankEntry
from termreport.core.positions import competition_ranks


@dataclass(frozen=True)
class StudentTotals:
    student_id: str
    name: str
    class_name: str
    # Only subjects with at least one recorded score appear here.
    subject_totals: Mapping[str, float]


def average_score(subject_totals: Iterable[float]) -> Optional[float]:
    values = [float(v) for v in subject_totals]
    if not values:
        return None
    return round(clamp(sum(values) / len(values), 0.0, 100.0), 2)


def rank_students(students: Iterable[StudentTotals]) -> List[RankEntry]:
    """Order students by average descending, ties broken by student id ascending.

    Students without any scored subject are left out instead of ranked last.
    """
    averages: Dict[str, float] = {}
    by_id: Dict[str, StudentTotals] = {}
    for student in students:
        avg = average_score(student.subject_totals.values())
        if avg is None:
            continue
        averages[student.student_id] = avg
        by_id[student.student_id] = student

    ordered = sorted(averages.items(), key=lambda item: (-item[1], item[0]))
    return [
        RankEntry(
            student_id=student_id,
            name=by_id[student_id].name,
            class_name=by_id[student_id].class_name,
            average_score=avg,
            rank=rank,
        )
        for student_id, avg, rank in competition_ranks(ordered)
    ]
