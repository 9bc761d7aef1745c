"""Grade scoring: weighted totals, percentage, letter grade and GPA.

Derived grade fields are always produced by re-scoring the whole entry
sequence; nothing here patches a previous result.
"""
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from pydantic import BaseModel

from .errors import ValidationError
from .models import iso_now

# Inclusive lower bounds, highest first.
LETTER_THRESHOLDS: List[Tuple[float, str]] = [
    (97, "A+"),
    (93, "A"),
    (90, "A-"),
    (87, "B+"),
    (83, "B"),
    (80, "B-"),
    (77, "C+"),
    (73, "C"),
    (70, "C-"),
    (67, "D+"),
    (63, "D"),
    (60, "D-"),
]
FAILING_LETTER = "F"

GPA_POINTS: Dict[str, float] = {
    "A+": 4.0,
    "A": 4.0,
    "A-": 3.7,
    "B+": 3.3,
    "B": 3.0,
    "B-": 2.7,
    "C+": 2.3,
    "C": 2.0,
    "C-": 1.7,
    "D+": 1.3,
    "D": 1.0,
    "D-": 0.7,
    "F": 0.0,
}

STATUS_ORDER = {"draft": 0, "published": 1, "final": 2}


class GradeScore(BaseModel):
    total_score: float = 0
    max_possible_score: float = 0
    percentage: float = 0
    letter_grade: str = FAILING_LETTER
    gpa: float = 0.0


class TermAverage(BaseModel):
    total_gpa: float = 0
    count: int = 0
    average_gpa: float = 0


class GradeStatistics(BaseModel):
    total_subjects: int = 0
    average_gpa: float = 0
    average_percentage: float = 0
    letter_grade_distribution: Dict[str, int] = {}
    subject_grades: List[Dict[str, Any]] = []
    term_averages: Dict[str, TermAverage] = {}


def letter_grade_for(percentage: float) -> str:
    for threshold, letter in LETTER_THRESHOLDS:
        if percentage >= threshold:
            return letter
    return FAILING_LETTER


def gpa_for(letter: str) -> float:
    return GPA_POINTS.get(letter, 0.0)


def _field(entry: Any, name: str) -> Any:
    if isinstance(entry, Mapping):
        return entry.get(name)
    return getattr(entry, name, None)


def _entry_values(entry: Any, position: int) -> Tuple[float, float, float]:
    score = _field(entry, "score")
    max_score = _field(entry, "max_score")
    weight = _field(entry, "weight")
    if weight is None:
        weight = 1
    try:
        score, max_score, weight = float(score), float(max_score), float(weight)
    except (TypeError, ValueError):
        raise ValidationError(f"Score entry {position} needs numeric score and max_score")
    if score < 0:
        raise ValidationError(f"Score entry {position} has a negative score")
    if max_score < 1:
        raise ValidationError(f"Score entry {position} needs max_score of at least 1")
    if score > max_score:
        raise ValidationError(f"Score entry {position} scores above its max_score")
    if weight < 0:
        raise ValidationError(f"Score entry {position} has a negative weight")
    return score, max_score, weight


def score_grade(entries: Iterable[Any]) -> GradeScore:
    total_score = 0.0
    max_possible_score = 0.0
    for position, entry in enumerate(entries, start=1):
        score, max_score, weight = _entry_values(entry, position)
        total_score += score * weight
        max_possible_score += max_score * weight
    percentage = (total_score / max_possible_score) * 100 if max_possible_score > 0 else 0.0
    letter = letter_grade_for(percentage)
    return GradeScore(
        total_score=total_score,
        max_possible_score=max_possible_score,
        percentage=percentage,
        letter_grade=letter,
        gpa=gpa_for(letter),
    )


def recompute(grade: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of a grade document with derived fields rebuilt from its entries."""
    entries = grade.get("grades") or []
    return {**grade, **score_grade(entries).model_dump()}


def apply_status(grade: Dict[str, Any], status: str, now: Optional[str] = None) -> Dict[str, Any]:
    current = grade.get("status") or "draft"
    if status not in STATUS_ORDER:
        raise ValidationError(f"Unknown grade status '{status}'")
    if STATUS_ORDER[status] < STATUS_ORDER[current]:
        raise ValidationError(f"Cannot move a {current} grade back to {status}")
    updated = {**grade, "status": status}
    if status != current and status in ("published", "final") and not grade.get("published_at"):
        updated["published_at"] = now or iso_now()
    return updated


def grade_statistics(grades: Iterable[Mapping[str, Any]]) -> GradeStatistics:
    grades = list(grades)
    stats = GradeStatistics(total_subjects=len(grades))
    if not grades:
        return stats

    total_gpa = 0.0
    total_percentage = 0.0
    distribution: Dict[str, int] = {}
    term_averages: Dict[str, TermAverage] = {}
    for grade in grades:
        gpa = grade.get("gpa") or 0.0
        percentage = grade.get("percentage") or 0.0
        letter = grade.get("letter_grade") or FAILING_LETTER
        total_gpa += gpa
        total_percentage += percentage
        distribution[letter] = distribution.get(letter, 0) + 1
        stats.subject_grades.append({
            "subject": grade.get("subject") or grade.get("subject_id"),
            "gpa": gpa,
            "percentage": percentage,
            "letter_grade": letter,
            "term": grade.get("term"),
            "academic_year": grade.get("academic_year"),
        })
        term = term_averages.setdefault(grade.get("term") or "unknown", TermAverage())
        term.total_gpa += gpa
        term.count += 1

    for term in term_averages.values():
        term.average_gpa = term.total_gpa / term.count
    stats.average_gpa = total_gpa / len(grades)
    stats.average_percentage = total_percentage / len(grades)
    stats.letter_grade_distribution = distribution
    stats.term_averages = term_averages
    return stats


def average_gpa(grades: Iterable[Mapping[str, Any]]) -> float:
    values = [grade.get("gpa") or 0.0 for grade in grades]
    return sum(values) / len(values) if values else 0.0
