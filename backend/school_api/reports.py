"""Report composition over already-fetched grade and attendance records.

The ``build_*`` functions are pure: they take entity snapshots and record
lists and return JSON-ready dicts. ``compose_report`` does the fetching
through a ``Repository`` and then hands over to them.
"""
from collections import defaultdict
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence

from pydantic import BaseModel

from .access import AccessContext, ensure_can_view_student
from .attendance import aggregate_attendance, summarize_by_student
from .grading import FAILING_LETTER, grade_statistics
from .models import iso_now
from .repository import (
    CLASS_JOIN,
    CLASS_STUDENTS_JOIN,
    CLASS_SUMMARY,
    CLASS_TEACHER_JOIN,
    STUDENT_WITH_USER,
    SUBJECT_JOIN,
    SUBJECT_SUMMARY,
    TEACHER_WITH_USER,
    USER_CONTACT,
    Repository,
)

ALL = "All"
GRADE_SORT = [("academic_year", -1), ("term", -1)]
DATE_SORT = [("date", -1)]


class ReportScope(BaseModel):
    kind: Literal["student", "class", "teacher"]
    id: str


class ReportFilter(BaseModel):
    academic_year: Optional[str] = None
    term: Optional[str] = None

    def grade_query(self) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if self.academic_year:
            query["academic_year"] = self.academic_year
        if self.term:
            query["term"] = self.term
        return query

    def attendance_query(self) -> Dict[str, Any]:
        # Terms narrow grades only; attendance is filtered by year.
        return {"academic_year": self.academic_year} if self.academic_year else {}


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _student_of(record: Mapping[str, Any]) -> Optional[str]:
    if record.get("student_id"):
        return record["student_id"]
    student = record.get("student")
    return student.get("id") if isinstance(student, Mapping) else None


def _partition(records: Sequence[Mapping[str, Any]]) -> Dict[str, List[Mapping[str, Any]]]:
    groups: Dict[str, List[Mapping[str, Any]]] = defaultdict(list)
    for record in records:
        groups[_student_of(record)].append(record)
    return groups


def _envelope(report_filter: ReportFilter, grades, attendance, now: Optional[str]) -> Dict[str, Any]:
    return {
        "academic_year": report_filter.academic_year or ALL,
        "term": report_filter.term or ALL,
        "grades": list(grades),
        "attendance": list(attendance),
        "generated_at": now or iso_now(),
    }


def build_student_report(
    student: Mapping[str, Any],
    grades: Sequence[Mapping[str, Any]],
    attendance: Sequence[Mapping[str, Any]],
    report_filter: ReportFilter,
    now: Optional[str] = None,
) -> Dict[str, Any]:
    report = {"student": dict(student), **_envelope(report_filter, grades, attendance, now)}
    report["statistics"] = {
        "attendance": aggregate_attendance(attendance).model_dump(),
        "grades": grade_statistics(grades).model_dump(),
    }
    return report


def build_class_report(
    class_doc: Mapping[str, Any],
    grades: Sequence[Mapping[str, Any]],
    attendance: Sequence[Mapping[str, Any]],
    report_filter: ReportFilter,
    now: Optional[str] = None,
) -> Dict[str, Any]:
    roster = list(class_doc.get("student_ids") or [])
    grades_by_student = _partition(grades)
    attendance_by_student = _partition(attendance)

    student_stats: Dict[str, Dict[str, Any]] = {}
    for student_id in roster:
        student_grades = grades_by_student.get(student_id, [])
        student_attendance = attendance_by_student.get(student_id, [])
        student_stats[student_id] = {
            "average_gpa": grade_statistics(student_grades).average_gpa,
            "attendance_percentage": aggregate_attendance(student_attendance).attendance_percentage,
            "total_grades": len(student_grades),
            "total_attendance": len(student_attendance),
        }

    report = {"class": dict(class_doc), **_envelope(report_filter, grades, attendance, now)}
    report["statistics"] = {
        "total_students": len(roster),
        "class_average_gpa": _mean([s["average_gpa"] for s in student_stats.values()]),
        "class_average_attendance": _mean([s["attendance_percentage"] for s in student_stats.values()]),
        "student_stats": student_stats,
        "attendance": aggregate_attendance(attendance).model_dump(),
        "grades": grade_statistics(grades).model_dump(),
    }
    return report


def build_teacher_report(
    teacher: Mapping[str, Any],
    subjects: Sequence[Mapping[str, Any]],
    grades: Sequence[Mapping[str, Any]],
    attendance: Sequence[Mapping[str, Any]],
    report_filter: ReportFilter,
    now: Optional[str] = None,
) -> Dict[str, Any]:
    subject_stats: Dict[str, Dict[str, Any]] = {}
    for subject in subjects:
        subject_grades = [g for g in grades if g.get("subject_id") == subject["id"]]
        subject_attendance = [a for a in attendance if a.get("subject_id") == subject["id"]]
        subject_stats[subject["id"]] = {
            "subject": dict(subject),
            "total_grades": len(subject_grades),
            "average_grade": _mean([g.get("percentage") or 0.0 for g in subject_grades]),
            "total_attendance": len(subject_attendance),
        }

    report = {"teacher": dict(teacher), **_envelope(report_filter, grades, attendance, now)}
    report["statistics"] = {
        "total_grades": len(grades),
        "total_attendance_records": len(attendance),
        "subject_stats": subject_stats,
        "attendance": aggregate_attendance(attendance).model_dump(),
        "grades": grade_statistics(grades).model_dump(),
    }
    return report


def build_attendance_summary(
    records: Sequence[Mapping[str, Any]],
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    academic_year: Optional[str] = None,
    now: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "total_records": len(records),
        "date_range": {"start_date": start_date, "end_date": end_date},
        "academic_year": academic_year or ALL,
        "student_attendance": summarize_by_student(records),
        "generated_at": now or iso_now(),
    }


def build_dashboard(
    overview: Mapping[str, int],
    recent_students: Sequence[Mapping[str, Any]],
    recent_teachers: Sequence[Mapping[str, Any]],
    classes: Sequence[Mapping[str, Any]],
    grades: Sequence[Mapping[str, Any]],
) -> Dict[str, Any]:
    class_counts: Dict[str, int] = {}
    for class_doc in classes:
        grade = str(class_doc.get("grade"))
        class_counts[grade] = class_counts.get(grade, 0) + 1
    letter_counts: Dict[str, int] = {}
    for grade in grades:
        letter = grade.get("letter_grade") or FAILING_LETTER
        letter_counts[letter] = letter_counts.get(letter, 0) + 1
    return {
        "overview": dict(overview),
        "recent": {"students": list(recent_students), "teachers": list(recent_teachers)},
        "distributions": {
            "classes": [{"grade": g, "count": c} for g, c in sorted(class_counts.items())],
            "grades": [{"letter_grade": l, "count": c} for l, c in sorted(letter_counts.items())],
        },
    }


async def _student_report(repository: Repository, student_id: str, report_filter: ReportFilter, access: AccessContext):
    student = await repository.require("student", student_id)
    ensure_can_view_student(access, student)
    student = await repository.populate_one(student, "user_id", "user", "user", USER_CONTACT + ("date_of_birth",))
    student = await repository.populate_one(student, "current_class_id", "current_class", "class", CLASS_SUMMARY + ("class_teacher_id",))
    student = await repository.populate_one(student, "parent_id", "parent", "user", USER_CONTACT)

    grades = await repository.fetch("grade", {"student_id": student_id, **report_filter.grade_query()}, sort=GRADE_SORT)
    grades = await repository.join_all(grades, SUBJECT_JOIN, TEACHER_WITH_USER)
    attendance = await repository.fetch(
        "attendance", {"student_id": student_id, **report_filter.attendance_query()}, sort=DATE_SORT
    )
    attendance = await repository.join_all(attendance, SUBJECT_JOIN, CLASS_JOIN)
    return build_student_report(student, grades, attendance, report_filter)


async def _class_report(repository: Repository, class_id: str, report_filter: ReportFilter):
    class_doc = await repository.require("class", class_id)
    class_doc = await repository.populate_one(class_doc, *CLASS_TEACHER_JOIN)
    class_doc = await repository.populate_one(class_doc, *CLASS_STUDENTS_JOIN)

    grades = await repository.fetch("grade", {"class_id": class_id, **report_filter.grade_query()}, sort=GRADE_SORT)
    grades = await repository.join_all(grades, STUDENT_WITH_USER, SUBJECT_JOIN)
    attendance = await repository.fetch(
        "attendance", {"class_id": class_id, **report_filter.attendance_query()}, sort=DATE_SORT
    )
    attendance = await repository.join_all(attendance, STUDENT_WITH_USER, SUBJECT_JOIN)
    return build_class_report(class_doc, grades, attendance, report_filter)


async def _teacher_report(repository: Repository, teacher_id: str, report_filter: ReportFilter):
    teacher = await repository.require("teacher", teacher_id)
    teacher = await repository.populate_one(teacher, "user_id", "user", "user", USER_CONTACT)
    teacher = await repository.populate_one(teacher, "subject_ids", "subjects", "subject", SUBJECT_SUMMARY)
    teacher = await repository.populate_one(teacher, "class_ids", "classes", "class", CLASS_SUMMARY)

    grades = await repository.fetch("grade", {"teacher_id": teacher_id, **report_filter.grade_query()}, sort=GRADE_SORT)
    grades = await repository.join_all(grades, STUDENT_WITH_USER, SUBJECT_JOIN, CLASS_JOIN)
    attendance = await repository.fetch(
        "attendance", {"teacher_id": teacher_id, **report_filter.attendance_query()}, sort=DATE_SORT
    )
    attendance = await repository.join_all(attendance, STUDENT_WITH_USER, CLASS_JOIN, SUBJECT_JOIN)
    return build_teacher_report(teacher, teacher["subjects"], grades, attendance, report_filter)


async def compose_report(
    repository: Repository,
    scope: ReportScope,
    report_filter: Optional[ReportFilter],
    access: AccessContext,
) -> Dict[str, Any]:
    """Gather one scope's records and assemble its report.

    Raises ``NotFound`` when the scoped entity is missing and
    ``PermissionDenied`` when a parent asks for a student not linked to them.
    """
    report_filter = report_filter or ReportFilter()
    if scope.kind == "student":
        return await _student_report(repository, scope.id, report_filter, access)
    if scope.kind == "class":
        return await _class_report(repository, scope.id, report_filter)
    return await _teacher_report(repository, scope.id, report_filter)
