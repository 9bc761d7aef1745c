import io
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from ..access import AccessContext
from ..errors import NotFound, PermissionDenied
from ..exports import EXCEL_MEDIA_TYPE, PDF_MEDIA_TYPE, generate_report_excel, generate_report_pdf
from ..reports import (
    ReportFilter,
    ReportScope,
    build_attendance_summary,
    build_dashboard,
    compose_report,
)
from ..repository import (
    CLASS_JOIN,
    STUDENT_WITH_USER,
    SUBJECT_JOIN,
    Repository,
    get_repository,
)
from ..security import get_access, require_roles
from .common import date_range

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reports", tags=["reports"])

REPORT_KINDS = ("student", "class", "teacher")
STAFF_ROLES = ("admin", "teacher")
RECENT_USER = ("user_id", "user", "user", ("first_name", "last_name", "email"), ())


def report_filter(
    academic_year: Optional[str] = Query(default=None),
    term: Optional[str] = Query(default=None),
) -> ReportFilter:
    return ReportFilter(academic_year=academic_year, term=term)


@router.get("/dashboard")
async def get_dashboard(
    current_user: Dict[str, Any] = Depends(require_roles("admin")),
    repository: Repository = Depends(get_repository),
):
    active = {"status": "active"}
    overview = {
        "total_students": await repository.count("student"),
        "total_teachers": await repository.count("teacher"),
        "total_classes": await repository.count("class", active),
        "total_subjects": await repository.count("subject", active),
        "active_students": await repository.count("student", active),
        "active_teachers": await repository.count("teacher", active),
    }
    newest = [("created_at", -1)]
    recent_students = await repository.fetch("student", active, sort=newest, limit=5)
    recent_teachers = await repository.fetch("teacher", active, sort=newest, limit=5)
    classes = await repository.fetch("class", active)
    grades = await repository.fetch("grade")
    return build_dashboard(
        overview,
        await repository.join_all(recent_students, RECENT_USER),
        await repository.join_all(recent_teachers, RECENT_USER),
        classes,
        grades,
    )


@router.get("/student-report/{student_id}")
async def get_student_report(
    student_id: str,
    filters: ReportFilter = Depends(report_filter),
    access: AccessContext = Depends(get_access),
    repository: Repository = Depends(get_repository),
):
    return await compose_report(repository, ReportScope(kind="student", id=student_id), filters, access)


@router.get("/class-report/{class_id}")
async def get_class_report(
    class_id: str,
    filters: ReportFilter = Depends(report_filter),
    current_user: Dict[str, Any] = Depends(require_roles(*STAFF_ROLES)),
    access: AccessContext = Depends(get_access),
    repository: Repository = Depends(get_repository),
):
    return await compose_report(repository, ReportScope(kind="class", id=class_id), filters, access)


@router.get("/teacher-report/{teacher_id}")
async def get_teacher_report(
    teacher_id: str,
    filters: ReportFilter = Depends(report_filter),
    current_user: Dict[str, Any] = Depends(require_roles(*STAFF_ROLES)),
    access: AccessContext = Depends(get_access),
    repository: Repository = Depends(get_repository),
):
    return await compose_report(repository, ReportScope(kind="teacher", id=teacher_id), filters, access)


@router.get("/attendance-summary")
async def get_attendance_summary(
    class_id: Optional[str] = Query(default=None),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    academic_year: Optional[str] = Query(default=None),
    current_user: Dict[str, Any] = Depends(require_roles(*STAFF_ROLES)),
    repository: Repository = Depends(get_repository),
):
    query: Dict[str, Any] = {}
    if class_id:
        query["class_id"] = class_id
    dates = date_range(start_date, end_date)
    if dates:
        query["date"] = dates
    if academic_year:
        query["academic_year"] = academic_year
    records = await repository.fetch("attendance", query, sort=[("date", -1)])
    records = await repository.join_all(records, STUDENT_WITH_USER, CLASS_JOIN, SUBJECT_JOIN)
    return build_attendance_summary(records, start_date, end_date, academic_year)


@router.get("/{kind}-report/{report_id}/export")
async def export_report(
    kind: str,
    report_id: str,
    format: str = Query("pdf"),
    filters: ReportFilter = Depends(report_filter),
    access: AccessContext = Depends(get_access),
    repository: Repository = Depends(get_repository),
):
    if kind not in REPORT_KINDS:
        raise NotFound("Report not found")
    if kind != "student" and access.role not in STAFF_ROLES:
        raise PermissionDenied("Access denied")
    report = await compose_report(repository, ReportScope(kind=kind, id=report_id), filters, access)
    if format == "excel":
        content = generate_report_excel(report, kind)
        filename = f"{kind}-report-{report_id}.xlsx"
        media_type = EXCEL_MEDIA_TYPE
    else:
        content = generate_report_pdf(report, kind)
        filename = f"{kind}-report-{report_id}.pdf"
        media_type = PDF_MEDIA_TYPE
    logger.info("Exported %s report %s as %s", kind, report_id, format)
    headers = {"Content-Disposition": f"attachment; filename={filename}"}
    return StreamingResponse(io.BytesIO(content), media_type=media_type, headers=headers)
