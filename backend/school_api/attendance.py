from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping

from pydantic import BaseModel

from .errors import ValidationError

STATUSES = ("present", "absent", "late", "excused")
ATTENDED_STATUSES = frozenset({"present", "late"})
GENERAL_SUBJECT = "General"


class AttendanceBreakdown(BaseModel):
    total: int = 0
    present: int = 0
    absent: int = 0
    late: int = 0
    excused: int = 0
    percentage: float = 0

    def add(self, status: str) -> None:
        self.total += 1
        setattr(self, status, getattr(self, status) + 1)

    def finish(self) -> None:
        self.percentage = attended_percentage(self.present + self.late, self.total)


class AttendanceStatistics(BaseModel):
    total_days: int = 0
    present: int = 0
    absent: int = 0
    late: int = 0
    excused: int = 0
    attendance_percentage: float = 0
    subject_attendance: Dict[str, AttendanceBreakdown] = {}
    monthly_attendance: Dict[str, AttendanceBreakdown] = {}


def attended_percentage(attended: int, total: int) -> float:
    return (attended / total) * 100 if total else 0.0


def record_status(record: Mapping[str, Any]) -> str:
    status = record.get("status")
    if status not in STATUSES:
        raise ValidationError(f"Unknown attendance status '{status}'")
    return status


def subject_key(record: Mapping[str, Any]) -> str:
    subject = record.get("subject")
    if isinstance(subject, Mapping) and subject.get("name"):
        return str(subject["name"])
    return GENERAL_SUBJECT


def month_key(record: Mapping[str, Any]) -> str:
    value = record.get("date")
    if isinstance(value, (datetime, date)):
        return value.strftime("%Y-%m")
    if isinstance(value, str) and len(value) >= 7:
        return value[:7]
    raise ValidationError(f"Attendance record has no usable date: {value!r}")


def is_attended(record: Mapping[str, Any]) -> bool:
    return record_status(record) in ATTENDED_STATUSES


def aggregate_attendance(records: Iterable[Mapping[str, Any]]) -> AttendanceStatistics:
    totals = AttendanceBreakdown()
    by_subject: Dict[str, AttendanceBreakdown] = {}
    by_month: Dict[str, AttendanceBreakdown] = {}
    for record in records:
        status = record_status(record)
        totals.add(status)
        by_subject.setdefault(subject_key(record), AttendanceBreakdown()).add(status)
        by_month.setdefault(month_key(record), AttendanceBreakdown()).add(status)

    totals.finish()
    for group in list(by_subject.values()) + list(by_month.values()):
        group.finish()
    return AttendanceStatistics(
        total_days=totals.total,
        present=totals.present,
        absent=totals.absent,
        late=totals.late,
        excused=totals.excused,
        attendance_percentage=totals.percentage,
        subject_attendance=by_subject,
        monthly_attendance=dict(sorted(by_month.items())),
    )


def _student_key(record: Mapping[str, Any]) -> str:
    student = record.get("student")
    if isinstance(student, Mapping) and student.get("id"):
        return str(student["id"])
    return str(record.get("student_id"))


def summarize_by_student(records: Iterable[Mapping[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """Per-student counts and percentage, keeping each student's own records."""
    summary: Dict[str, Dict[str, Any]] = {}
    breakdowns: Dict[str, AttendanceBreakdown] = {}
    for record in records:
        key = _student_key(record)
        if key not in summary:
            summary[key] = {"student": record.get("student") or {"id": key}, "records": []}
            breakdowns[key] = AttendanceBreakdown()
        breakdowns[key].add(record_status(record))
        summary[key]["records"].append(record)

    for key, breakdown in breakdowns.items():
        breakdown.finish()
        summary[key].update({
            "total_days": breakdown.total,
            "present": breakdown.present,
            "absent": breakdown.absent,
            "late": breakdown.late,
            "excused": breakdown.excused,
            "attendance_percentage": breakdown.percentage,
        })
    return summary


def attendance_percentage_of(records: List[Mapping[str, Any]]) -> float:
    attended = sum(1 for record in records if is_attended(record))
    return attended_percentage(attended, len(records))
