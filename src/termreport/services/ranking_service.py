from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol

import requests
from requests import RequestException

from termreport.core.aggregation import AggregationRule, aggregate_subject
from termreport.core.errors import NotFoundError, RankingTimeout, RankingUnavailable, ValidationError
from termreport.core.models import AssignmentScore, RankEntry, RankScope, SchoolClass, Term
from termreport.core.ranking import StudentTotals, rank_students
from termreport.services.storage import Storage

logger = logging.getLogger(__name__)


class RankingSource(Protocol):
    def rank(self, scope: RankScope, scope_id: Optional[str], term: Term) -> List[RankEntry]:
        ...


class LocalRankingSource:
    """Computes rankings straight from the score store."""

    def __init__(self, store: Storage, rule: AggregationRule) -> None:
        rule.validate()
        self.store = store
        self.rule = rule

    def _classes_in_scope(self, scope: RankScope, scope_id: Optional[str]) -> List[SchoolClass]:
        if scope == RankScope.CLASS:
            school_class = self.store.get_class(scope_id or "")
            if school_class is None:
                raise NotFoundError(f"Class {scope_id} not found")
            return [school_class]
        if scope == RankScope.LEVEL:
            if not scope_id:
                raise ValidationError("A level is required for level rankings", field="scope_id")
            return self.store.get_classes_by_level(scope_id)
        return self.store.list_classes()

    def _class_totals(self, school_class: SchoolClass, term: Term) -> Iterable[StudentTotals]:
        subjects = self.store.get_subjects_for_class(school_class.id)
        activities = self.store.list_activities()
        scores_by_student: Dict[str, List[AssignmentScore]] = {}
        for record in self.store.get_scores(school_class.id, term):
            scores_by_student.setdefault(record.student_id, []).append(record)

        for student in self.store.get_students(school_class.id):
            own = scores_by_student.get(student.id, [])
            totals: Dict[str, float] = {}
            for subject in subjects:
                component = aggregate_subject(subject.id, own, activities, self.rule)
                if component.has_scores:
                    totals[subject.id] = component.total_score
            yield StudentTotals(
                student_id=student.id,
                name=student.full_name,
                class_name=school_class.name,
                subject_totals=totals,
            )

    def rank(self, scope: RankScope, scope_id: Optional[str], term: Term) -> List[RankEntry]:
        students: List[StudentTotals] = []
        for school_class in self._classes_in_scope(scope, scope_id):
            students.extend(self._class_totals(school_class, term))
        return rank_students(students)


class RemoteRankingSource:
    """Asks a remote aggregation service for a ranking.

    Failures surface as RankingUnavailable; no retry happens here.
    """

    RANKINGS_PATH = "/rankings"

    def __init__(self, endpoint: str, timeout: float = 15.0, session: Optional[requests.Session] = None) -> None:
        if not endpoint:
            raise RankingUnavailable("Missing TERMREPORT_RANKING_SERVICE_URL in environment")
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self.session = session

    def _get(self, path: str, params: Dict[str, str], timeout: float) -> Any:
        url = f"{self.endpoint}{path}"
        getter = self.session.get if self.session is not None else requests.get
        try:
            res = getter(url, params=params, timeout=timeout)
        except requests.Timeout as exc:
            logger.warning("Ranking request to %s timed out after %ss", url, timeout)
            raise RankingTimeout(f"Ranking service did not answer within {timeout:g}s") from exc
        except RequestException as exc:
            logger.warning("Ranking request to %s failed: %s", url, exc)
            raise RankingUnavailable("RANKING_SERVICE_UNAVAILABLE") from exc

        if res.status_code >= 400:
            raise RankingUnavailable(f"Ranking service returned HTTP {res.status_code}")
        try:
            return res.json()
        except ValueError as exc:
            raise RankingUnavailable("Ranking service returned invalid JSON") from exc

    @staticmethod
    def _to_entries(data: Any) -> List[RankEntry]:
        if not isinstance(data, list):
            raise RankingUnavailable("Ranking service returned an unexpected payload")
        try:
            entries = [
                RankEntry(
                    student_id=str(row["student_id"]),
                    name=str(row.get("name", "")),
                    class_name=str(row.get("class_name", "")),
                    average_score=float(row["average_score"]),
                    rank=int(row["rank"]),
                )
                for row in data
            ]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise RankingUnavailable("Ranking service returned a malformed entry") from exc

        if entries and entries[0].rank != 1:
            raise RankingUnavailable(f"Ranking service returned a list starting at rank {entries[0].rank}")
        previous_rank = 1
        for entry in entries:
            if entry.rank < previous_rank:
                raise RankingUnavailable(f"Ranking service returned ranks out of order at {entry.student_id}")
            if not 0.0 <= entry.average_score <= 100.0:
                raise RankingUnavailable(
                    f"Ranking service returned average {entry.average_score:g} for {entry.student_id}"
                )
            previous_rank = entry.rank
        return entries

    def rank(
        self,
        scope: RankScope,
        scope_id: Optional[str],
        term: Term,
        timeout: Optional[float] = None,
    ) -> List[RankEntry]:
        params = {"year": term.year, "term": term.name}
        if scope_id:
            params["scope_id"] = scope_id
        data = self._get(f"{self.RANKINGS_PATH}/{scope.value}", params, timeout or self.timeout)
        return self._to_entries(data)


class RankingService:
    def __init__(self, source: RankingSource) -> None:
        self.source = source

    @classmethod
    def from_settings(cls, store: Storage) -> "RankingService":
        from termreport.config.settings import settings

        if settings.ranking_service_url:
            return cls(RemoteRankingSource(settings.ranking_service_url, settings.ranking_timeout_seconds))
        return cls(LocalRankingSource(store, AggregationRule.from_settings()))

    def rank(self, scope: RankScope | str, scope_id: Optional[str], year: str, term: str) -> List[RankEntry]:
        try:
            resolved = RankScope(scope)
        except ValueError as exc:
            raise ValidationError(f"Unknown ranking scope '{scope}'", field="scope") from exc
        return self.source.rank(resolved, scope_id, Term(name=term, year=year))

    def rank_class(self, class_id: str, year: str, term: str) -> List[RankEntry]:
        return self.rank(RankScope.CLASS, class_id, year, term)

    def rank_level(self, level: str, year: str, term: str) -> List[RankEntry]:
        return self.rank(RankScope.LEVEL, level, year, term)

    def rank_school(self, year: str, term: str) -> List[RankEntry]:
        return self.rank(RankScope.SCHOOL, None, year, term)

    async def rank_async(
        self,
        scope: RankScope | str,
        scope_id: Optional[str],
        year: str,
        term: str,
        *,
        timeout: Optional[float] = None,
    ) -> List[RankEntry]:
        """Run a ranking off the event loop; cancelling the awaiting task abandons it."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.rank, scope, scope_id, year, term),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise RankingTimeout(f"Ranking did not complete within {timeout:g}s") from exc
