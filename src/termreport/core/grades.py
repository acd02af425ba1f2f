import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Sequence, Tuple, Union

from termreport.core.errors import ConfigError, ValidationError


@dataclass(frozen=True)
class GradeBand:
    min_score: float
    grade: str
    remarks: str = ""


DEFAULT_GRADE_BANDS: List[Tuple[float, str, str]] = [
    (90, "A+", "Excellent"),
    (80, "A", "Very Good"),
    (75, "B+", "Good"),
    (70, "B", "Credit"),
    (65, "C+", "Credit"),
    (60, "C", "Pass"),
    (55, "D+", "Pass"),
    (50, "D", "Pass"),
    (0, "F", "Fail"),
]

BandInput = Union[GradeBand, Sequence[Any], Dict[str, Any]]


def _to_band(raw: BandInput) -> GradeBand:
    if isinstance(raw, GradeBand):
        return raw
    if isinstance(raw, dict):
        try:
            return GradeBand(float(raw["min_score"]), str(raw["grade"]), str(raw.get("remarks", "")))
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid grade boundary: {raw!r}") from exc
    try:
        min_score, grade, *rest = raw
        return GradeBand(float(min_score), str(grade), str(rest[0]) if rest else "")
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid grade boundary: {raw!r}") from exc


class GradingScheme:
    """Ordered grade boundaries partitioning [0, 100].

    Boundaries may be given highest-first or lowest-first but must be strictly
    monotonic, lie inside [0, 100], and start at 0 so every total maps to
    exactly one grade.
    """

    def __init__(self, bands: Iterable[BandInput]) -> None:
        parsed = [_to_band(b) for b in bands]
        if not parsed:
            raise ConfigError("Grading scheme has no boundaries")

        mins = [b.min_score for b in parsed]
        descending = all(a > b for a, b in zip(mins, mins[1:]))
        ascending = all(a < b for a, b in zip(mins, mins[1:]))
        if not (descending or ascending):
            raise ConfigError(f"Grade boundaries are not monotonic: {mins}")
        if ascending and len(parsed) > 1:
            parsed.reverse()

        for band in parsed:
            if band.min_score < 0 or band.min_score > 100:
                raise ConfigError(f"Grade '{band.grade}' threshold {band.min_score:g} is outside 0-100")
            if not band.grade.strip():
                raise ConfigError("Grade boundaries need a non-empty label")
        if parsed[-1].min_score != 0:
            raise ConfigError(
                f"Grade boundaries leave a gap: lowest threshold is {parsed[-1].min_score:g}, expected 0"
            )

        self.bands: Tuple[GradeBand, ...] = tuple(parsed)

    @classmethod
    def default(cls) -> "GradingScheme":
        return cls(DEFAULT_GRADE_BANDS)

    @classmethod
    def from_json(cls, text: str) -> "GradingScheme":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Grading scheme is not valid JSON: {exc}") from exc
        if not isinstance(data, list):
            raise ConfigError("Grading scheme JSON must be a list of boundaries")
        if data and isinstance(data[0], dict) and "range" in data[0]:
            return cls.from_ranges(data)
        return cls(data)

    @classmethod
    def from_ranges(cls, rows: Iterable[Dict[str, str]]) -> "GradingScheme":
        """Build a scheme from rows like {"grade": "A", "range": "80-89", "remarks": "Very Good"}.

        Adjacent integer ranges must touch exactly and the top range must end at 100.
        """
        spans: List[Tuple[int, int, str, str]] = []
        for row in rows:
            text = str(row.get("range", "")).strip()
            low, sep, high = text.partition("-")
            try:
                lo, hi = int(low), int(high)
            except ValueError as exc:
                raise ConfigError(f"Invalid grade range {text!r} for '{row.get('grade', '')}'") from exc
            if not sep or lo > hi:
                raise ConfigError(f"Invalid grade range {text!r} for '{row.get('grade', '')}'")
            spans.append((lo, hi, str(row.get("grade", "")), str(row.get("remarks", ""))))

        spans.sort(key=lambda s: s[0], reverse=True)
        if not spans:
            raise ConfigError("Grading scheme has no boundaries")
        if spans[0][1] != 100:
            raise ConfigError(f"Top grade range ends at {spans[0][1]}, expected 100")
        for upper, lower in zip(spans, spans[1:]):
            if lower[1] >= upper[0]:
                raise ConfigError(f"Grade ranges '{lower[2]}' and '{upper[2]}' overlap")
            if lower[1] + 1 != upper[0]:
                raise ConfigError(f"Grade ranges leave a gap between {lower[1]} and {upper[0]}")

        return cls([GradeBand(lo, grade, remarks) for lo, _, grade, remarks in spans])

    def band_for(self, total_score: float) -> GradeBand:
        if total_score < 0 or total_score > 100:
            raise ValidationError(f"Total score {total_score:g} is outside 0-100", field="total_score")
        for band in self.bands:
            if total_score >= band.min_score:
                return band
        # Unreachable: the lowest band starts at 0.
        return self.bands[-1]

    def resolve(self, total_score: float) -> str:
        return self.band_for(total_score).grade


def load_grading_scheme(text: str = "") -> GradingScheme:
    if not text.strip():
        return GradingScheme.default()
    return GradingScheme.from_json(text)
