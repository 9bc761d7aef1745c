import pytest

from school_api.errors import ValidationError
from school_api.grading import (
    apply_status,
    gpa_for,
    grade_statistics,
    letter_grade_for,
    recompute,
    score_grade,
)
from school_api.models import ScoreEntry


def entry(score, max_score=100, weight=1, kind="exam"):
    return {"kind": kind, "label": f"{kind} {score}", "score": score, "max_score": max_score, "weight": weight}


def test_weighted_score():
    result = score_grade([entry(95, weight=1), entry(88, weight=2)])

    assert result.total_score == 271
    assert result.max_possible_score == 300
    assert result.percentage == pytest.approx(90.333, abs=0.01)
    assert result.letter_grade == "A-"
    assert result.gpa == 3.7


def test_accepts_score_entry_models():
    entries = [ScoreEntry(kind="quiz", label="Quiz 1", score=8, max_score=10)]

    result = score_grade(entries)

    assert result.percentage == pytest.approx(80.0)
    assert result.letter_grade == "B-"


def test_missing_weight_counts_as_one():
    result = score_grade([{"score": 50, "max_score": 100, "weight": None}, {"score": 100, "max_score": 100}])

    assert result.total_score == 150
    assert result.max_possible_score == 200


@pytest.mark.parametrize(
    "percentage, letter",
    [
        (100, "A+"),
        (97, "A+"),
        (96.99, "A"),
        (93, "A"),
        (90, "A-"),
        (89.99, "B+"),
        (83, "B"),
        (80, "B-"),
        (77, "C+"),
        (73, "C"),
        (70, "C-"),
        (67, "D+"),
        (63, "D"),
        (60, "D-"),
        (59.99, "F"),
        (0, "F"),
    ],
)
def test_letter_thresholds_are_inclusive_lower_bounds(percentage, letter):
    assert letter_grade_for(percentage) == letter


def test_gpa_table():
    assert gpa_for("A+") == gpa_for("A") == 4.0
    assert gpa_for("B") == 3.0
    assert gpa_for("D-") == 0.7
    assert gpa_for("F") == 0.0


def test_empty_entries_score_as_failing_zero():
    result = score_grade([])

    assert result.total_score == 0
    assert result.max_possible_score == 0
    assert result.percentage == 0
    assert result.letter_grade == "F"
    assert result.gpa == 0.0


def test_zero_weights_do_not_divide_by_zero():
    result = score_grade([entry(90, weight=0)])

    assert result.percentage == 0
    assert result.letter_grade == "F"


@pytest.mark.parametrize(
    "bad_entry",
    [
        entry(101),
        entry(-1),
        entry(5, max_score=0),
        entry(50, weight=-1),
        {"score": "lots", "max_score": 100},
    ],
)
def test_invalid_entries_are_rejected(bad_entry):
    with pytest.raises(ValidationError):
        score_grade([entry(80), bad_entry])


def test_recompute_replaces_stale_derived_fields():
    grade = {
        "id": "g1",
        "grades": [entry(95), entry(88, weight=2)],
        "percentage": 12.0,
        "letter_grade": "F",
        "gpa": 0.0,
    }

    fresh = recompute(grade)

    assert fresh["letter_grade"] == "A-"
    assert fresh["total_score"] == 271
    assert grade["letter_grade"] == "F"


def test_recompute_is_idempotent():
    grade = {"grades": [entry(71), entry(64, weight=3)]}

    once = recompute(grade)

    assert recompute(once) == once


def test_recompute_follows_edited_entries():
    grade = recompute({"grades": [entry(95)]})
    grade["grades"].append(entry(40))

    assert recompute(grade)["percentage"] == pytest.approx(67.5)
    assert recompute(grade)["letter_grade"] == "D+"


def test_publish_stamps_published_at():
    grade = {"status": "draft"}

    published = apply_status(grade, "published", now="2025-01-10T00:00:00+00:00")

    assert published["status"] == "published"
    assert published["published_at"] == "2025-01-10T00:00:00+00:00"


def test_finalising_keeps_first_publication_time():
    grade = {"status": "published", "published_at": "2025-01-10T00:00:00+00:00"}

    final = apply_status(grade, "final", now="2025-02-01T00:00:00+00:00")

    assert final["status"] == "final"
    assert final["published_at"] == "2025-01-10T00:00:00+00:00"


@pytest.mark.parametrize("current, target", [("published", "draft"), ("final", "published"), ("final", "draft")])
def test_status_cannot_move_backwards(current, target):
    with pytest.raises(ValidationError):
        apply_status({"status": current}, target)


def test_unknown_status_is_rejected():
    with pytest.raises(ValidationError):
        apply_status({"status": "draft"}, "archived")


def test_grade_statistics():
    grades = [
        {"gpa": 4.0, "percentage": 95, "letter_grade": "A", "term": "first", "subject": {"name": "Mathematics"}},
        {"gpa": 3.0, "percentage": 84, "letter_grade": "B", "term": "first", "subject_id": "science"},
        {"gpa": 2.0, "percentage": 74, "letter_grade": "C", "term": "second", "subject_id": "art"},
    ]

    stats = grade_statistics(grades)

    assert stats.total_subjects == 3
    assert stats.average_gpa == pytest.approx(3.0)
    assert stats.average_percentage == pytest.approx(84.333, abs=0.01)
    assert stats.letter_grade_distribution == {"A": 1, "B": 1, "C": 1}
    assert stats.term_averages["first"].average_gpa == pytest.approx(3.5)
    assert stats.term_averages["second"].count == 1
    assert stats.subject_grades[0]["subject"] == {"name": "Mathematics"}
    assert stats.subject_grades[1]["subject"] == "science"


def test_grade_statistics_of_nothing():
    stats = grade_statistics([])

    assert stats.total_subjects == 0
    assert stats.average_gpa == 0
    assert stats.letter_grade_distribution == {}


@pytest.mark.parametrize(
    "entries",
    [
        [entry(0)],
        [entry(100)],
        [entry(3, max_score=5, weight=0.5), entry(20, max_score=20, weight=3)],
        [entry(1, max_score=1, weight=10), entry(0, max_score=50)],
    ],
)
def test_percentage_stays_in_range(entries):
    result = score_grade(entries)

    assert 0 <= result.percentage <= 100
    assert result.letter_grade == letter_grade_for(result.percentage)
    assert result.gpa == gpa_for(result.letter_grade)
