import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status

from ..access import AccessContext
from ..attendance import aggregate_attendance
from ..models import AttendanceCreate, AttendanceRecord, AttendanceUpdate
from ..repository import (
    CLASS_JOIN,
    STUDENT_WITH_USER,
    SUBJECT_JOIN,
    TEACHER_WITH_USER,
    Repository,
    get_repository,
)
from ..security import get_access, require_roles
from .common import (
    Page,
    changes_from,
    date_range,
    page_params,
    paginate,
    resolve_teacher_id,
    viewable_student,
    visible_student_ids,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/attendance", tags=["attendance"])

DATE_SORT = [("date", -1)]
FULL_JOINS = (STUDENT_WITH_USER, CLASS_JOIN, SUBJECT_JOIN, TEACHER_WITH_USER)


def _with_dates(query: Dict[str, Any], start_date: Optional[str], end_date: Optional[str]) -> Dict[str, Any]:
    dates = date_range(start_date, end_date)
    if dates:
        query["date"] = dates
    return query


@router.get("")
async def list_attendance(
    student: Optional[str] = Query(default=None),
    class_id: Optional[str] = Query(default=None, alias="class"),
    subject: Optional[str] = Query(default=None),
    date: Optional[str] = Query(default=None),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    status_filter: Optional[str] = Query(default=None, alias="status"),
    academic_year: Optional[str] = Query(default=None),
    semester: Optional[str] = Query(default=None),
    page: Page = Depends(page_params),
    access: AccessContext = Depends(get_access),
    repository: Repository = Depends(get_repository),
):
    query: Dict[str, Any] = {}
    for field, value in (
        ("student_id", student),
        ("class_id", class_id),
        ("subject_id", subject),
        ("date", date),
        ("status", status_filter),
        ("academic_year", academic_year),
        ("semester", semester),
    ):
        if value:
            query[field] = value
    _with_dates(query, start_date, end_date)
    children = await visible_student_ids(repository, access)
    if children is not None:
        query["student_id"] = {"$in": [c for c in children if not student or c == student]}

    records, pagination = await paginate(
        repository, "attendance", query, DATE_SORT + [("created_at", -1)], page, FULL_JOINS
    )
    return {"attendance": records, "pagination": pagination}


@router.post("", status_code=status.HTTP_201_CREATED)
async def mark_attendance(
    payload: AttendanceCreate,
    current_user: Dict[str, Any] = Depends(require_roles("teacher", "admin")),
    repository: Repository = Depends(get_repository),
):
    """Record a class's attendance for one date and period, replacing any earlier marking."""
    teacher_id = await resolve_teacher_id(repository, current_user, payload.teacher_id)
    await repository.require("class", payload.class_id)
    if payload.subject_id:
        await repository.require("subject", payload.subject_id)

    replaced = await repository.delete_many(
        "attendance", {"class_id": payload.class_id, "date": payload.date, "period": payload.period}
    )
    records: List[Dict[str, Any]] = [
        AttendanceRecord(
            student_id=mark.student_id,
            class_id=payload.class_id,
            subject_id=payload.subject_id,
            teacher_id=teacher_id,
            date=payload.date,
            status=mark.status,
            remarks=mark.remarks,
            period=payload.period,
            academic_year=payload.academic_year,
            semester=payload.semester,
        ).model_dump()
        for mark in payload.attendance
    ]
    await repository.insert_many("attendance", records)
    if replaced:
        logger.info("Replaced %d attendance rows for class %s on %s", replaced, payload.class_id, payload.date)
    return records


@router.get("/class/{class_id}")
async def get_class_attendance(
    class_id: str,
    date: Optional[str] = Query(default=None),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    subject: Optional[str] = Query(default=None),
    period: Optional[int] = Query(default=None),
    current_user: Dict[str, Any] = Depends(require_roles("admin", "teacher")),
    repository: Repository = Depends(get_repository),
):
    query: Dict[str, Any] = {"class_id": class_id}
    if date:
        query["date"] = date
    else:
        _with_dates(query, start_date, end_date)
    if subject:
        query["subject_id"] = subject
    if period:
        query["period"] = period
    records = await repository.fetch("attendance", query, sort=DATE_SORT)
    return await repository.join_all(records, STUDENT_WITH_USER, SUBJECT_JOIN, TEACHER_WITH_USER)


@router.get("/student/{student_id}")
async def get_student_attendance(
    student_id: str,
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    subject: Optional[str] = Query(default=None),
    class_id: Optional[str] = Query(default=None, alias="class"),
    access: AccessContext = Depends(get_access),
    repository: Repository = Depends(get_repository),
):
    await viewable_student(repository, student_id, access)
    query = _with_dates({"student_id": student_id}, start_date, end_date)
    if subject:
        query["subject_id"] = subject
    if class_id:
        query["class_id"] = class_id
    records = await repository.fetch("attendance", query, sort=DATE_SORT)
    return await repository.join_all(records, CLASS_JOIN, SUBJECT_JOIN, TEACHER_WITH_USER)


@router.get("/statistics/{student_id}")
async def get_attendance_statistics(
    student_id: str,
    academic_year: Optional[str] = Query(default=None),
    semester: Optional[str] = Query(default=None),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    access: AccessContext = Depends(get_access),
    repository: Repository = Depends(get_repository),
):
    await viewable_student(repository, student_id, access)
    query = _with_dates({"student_id": student_id}, start_date, end_date)
    if academic_year:
        query["academic_year"] = academic_year
    if semester:
        query["semester"] = semester
    records = await repository.fetch("attendance", query, sort=DATE_SORT)
    records = await repository.join_all(records, SUBJECT_JOIN, CLASS_JOIN)
    return aggregate_attendance(records).model_dump()


@router.put("/{record_id}")
async def update_attendance(
    record_id: str,
    payload: AttendanceUpdate,
    current_user: Dict[str, Any] = Depends(require_roles("teacher", "admin")),
    repository: Repository = Depends(get_repository),
):
    await repository.require("attendance", record_id)
    updated = await repository.update("attendance", record_id, changes_from(payload))
    return (await repository.join_all([updated], *FULL_JOINS))[0]


@router.delete("/{record_id}")
async def delete_attendance(
    record_id: str,
    current_user: Dict[str, Any] = Depends(require_roles("admin")),
    repository: Repository = Depends(get_repository),
):
    await repository.require("attendance", record_id)
    await repository.delete("attendance", record_id)
    return {"message": "Attendance record deleted successfully"}
