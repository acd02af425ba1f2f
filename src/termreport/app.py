from dataclasses import asdict
from datetime import datetime, timezone
from functools import lru_cache
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from termreport.config.logging_setup import setup_logging
from termreport.config.settings import settings
from termreport.core.aggregation import AggregationRule
from termreport.core.errors import (
    ConfigError,
    LockedTermError,
    NotFoundError,
    RankingUnavailable,
    ReportStateError,
    TermReportError,
    ValidationError,
)
from termreport.core.models import AssignmentScore, Term, TermReport
from termreport.services.ranking_service import LocalRankingSource, RankingService
from termreport.services.report_service import ReportService
from termreport.services.score_service import ScoreService
from termreport.services.storage import Storage

setup_logging()

app = FastAPI(title="Term Report API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_allowed_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class ScorePayload(BaseModel):
    student_id: str
    class_id: str
    subject_id: str
    assignment_name: str
    score: float
    term: str
    year: Optional[str] = None
    recorded_by: str = ""


class ScoresPayload(BaseModel):
    scores: List[ScorePayload]


class FinalizePayload(BaseModel):
    term: str
    year: Optional[str] = None
    head_remarks: str = ""


class RemarksPayload(BaseModel):
    term: str
    year: Optional[str] = None
    conduct: Optional[str] = None
    talent_and_interest: Optional[str] = None
    class_teacher_remarks: Optional[str] = None


@lru_cache(maxsize=1)
def get_store() -> Storage:
    return Storage.from_settings()


def _http_error(exc: TermReportError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, (LockedTermError, ReportStateError)):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, RankingUnavailable):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif isinstance(exc, ConfigError):
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(exc))


def _term(term: str, year: Optional[str]) -> Term:
    """Accept either a term name plus year or a full label such as "First Term 2023/2024"."""
    if year:
        return Term(name=term, year=year)
    try:
        return Term.parse(term)
    except ValueError as exc:
        raise ValidationError(str(exc), field="term") from exc


def _report_to_dict(report: TermReport) -> Dict:
    data = asdict(report)
    data["status"] = report.status.value
    data["term"] = report.term.name
    data["year"] = report.term.year
    data["attendance"]["percentage"] = report.attendance.percentage
    return data


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.put("/scores")
def put_scores(payload: ScoresPayload, store: Storage = Depends(get_store)) -> Dict:
    recorded_at = datetime.now(timezone.utc)
    try:
        scores = [
            AssignmentScore(
                student_id=item.student_id,
                class_id=item.class_id,
                subject_id=item.subject_id,
                assignment_name=item.assignment_name,
                score=item.score,
                term=_term(item.term, item.year),
                recorded_by=item.recorded_by,
                recorded_at=recorded_at,
            )
            for item in payload.scores
        ]
        ScoreService(store).put_scores(scores)
        return {"status": "saved", "count": len(scores)}
    except TermReportError as exc:
        raise _http_error(exc) from exc


@app.post("/classes/{class_id}/reports")
def generate_reports(
    class_id: str,
    term: str,
    year: Optional[str] = None,
    store: Storage = Depends(get_store),
) -> List[Dict]:
    try:
        reports = ReportService.from_settings(store).generate_reports(class_id, _term(term, year))
        return [_report_to_dict(report) for report in reports]
    except TermReportError as exc:
        raise _http_error(exc) from exc


@app.patch("/reports/{student_id}/remarks")
def update_remarks(student_id: str, payload: RemarksPayload, store: Storage = Depends(get_store)) -> Dict:
    try:
        report = ReportService.from_settings(store).update_remarks(
            student_id,
            _term(payload.term, payload.year),
            conduct=payload.conduct,
            talent_and_interest=payload.talent_and_interest,
            class_teacher_remarks=payload.class_teacher_remarks,
        )
        return _report_to_dict(report)
    except TermReportError as exc:
        raise _http_error(exc) from exc


@app.post("/reports/{student_id}/finalize")
def finalize_report(student_id: str, payload: FinalizePayload, store: Storage = Depends(get_store)) -> Dict:
    try:
        report = ReportService.from_settings(store).finalize(
            student_id,
            _term(payload.term, payload.year),
            payload.head_remarks,
        )
        return _report_to_dict(report)
    except TermReportError as exc:
        raise _http_error(exc) from exc


@app.get("/rankings/{scope}")
def rankings(
    scope: str,
    term: str,
    year: Optional[str] = None,
    scope_id: Optional[str] = None,
    store: Storage = Depends(get_store),
) -> List[Dict]:
    # This endpoint is the aggregation service itself, so it always computes locally.
    try:
        resolved = _term(term, year)
        service = RankingService(LocalRankingSource(store, AggregationRule.from_settings()))
        return [asdict(entry) for entry in service.rank(scope, scope_id, resolved.year, resolved.name)]
    except TermReportError as exc:
        raise _http_error(exc) from exc
