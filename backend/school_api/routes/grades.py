import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status

from ..access import AccessContext
from ..errors import PermissionDenied
from ..grading import apply_status, grade_statistics, recompute
from ..models import GradeCreate, GradeRecord, GradeUpdate
from ..repository import (
    CLASS_JOIN,
    STUDENT_WITH_USER,
    SUBJECT_JOIN,
    SUBJECT_SUMMARY,
    TEACHER_WITH_USER,
    Repository,
    get_repository,
)
from ..security import get_access, get_current_user, require_roles
from .common import (
    Page,
    page_params,
    paginate,
    resolve_teacher_id,
    teacher_for_user,
    viewable_student,
    visible_student_ids,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/grades", tags=["grades"])

GRADE_SORT = [("academic_year", -1), ("term", -1)]
FULL_JOINS = (STUDENT_WITH_USER, SUBJECT_JOIN, TEACHER_WITH_USER, CLASS_JOIN)


def _student_name_key(grade: Dict[str, Any]):
    user = (grade.get("student") or {}).get("user") or {}
    return (user.get("first_name") or "", user.get("last_name") or "")


@router.get("")
async def list_grades(
    student: Optional[str] = Query(default=None),
    subject: Optional[str] = Query(default=None),
    class_id: Optional[str] = Query(default=None, alias="class"),
    academic_year: Optional[str] = Query(default=None),
    term: Optional[str] = Query(default=None),
    status_filter: Optional[str] = Query(default=None, alias="status"),
    page: Page = Depends(page_params),
    current_user: Dict[str, Any] = Depends(get_current_user),
    access: AccessContext = Depends(get_access),
    repository: Repository = Depends(get_repository),
):
    query: Dict[str, Any] = {}
    for field, value in (
        ("student_id", student),
        ("subject_id", subject),
        ("class_id", class_id),
        ("academic_year", academic_year),
        ("term", term),
        ("status", status_filter),
    ):
        if value:
            query[field] = value

    # Teachers only see grades for subjects they teach.
    if current_user.get("role") == "teacher":
        teacher = await teacher_for_user(repository, current_user)
        if teacher:
            taught = teacher.get("subject_ids") or []
            query["subject_id"] = {"$in": [s for s in taught if not subject or s == subject]}
    children = await visible_student_ids(repository, access)
    if children is not None:
        query["student_id"] = {"$in": [c for c in children if not student or c == student]}

    grades, pagination = await paginate(
        repository, "grade", query, GRADE_SORT + [("created_at", -1)], page, FULL_JOINS
    )
    return {"grades": grades, "pagination": pagination}


@router.get("/student/{student_id}")
async def get_grades_for_student(
    student_id: str,
    academic_year: Optional[str] = Query(default=None),
    term: Optional[str] = Query(default=None),
    subject: Optional[str] = Query(default=None),
    access: AccessContext = Depends(get_access),
    repository: Repository = Depends(get_repository),
):
    await viewable_student(repository, student_id, access)
    query: Dict[str, Any] = {"student_id": student_id}
    if academic_year:
        query["academic_year"] = academic_year
    if term:
        query["term"] = term
    if subject:
        query["subject_id"] = subject
    grades = await repository.fetch("grade", query, sort=GRADE_SORT)
    return await repository.join_all(grades, SUBJECT_JOIN, TEACHER_WITH_USER, CLASS_JOIN)


@router.get("/class/{class_id}")
async def get_grades_for_class(
    class_id: str,
    subject: Optional[str] = Query(default=None),
    academic_year: Optional[str] = Query(default=None),
    term: Optional[str] = Query(default=None),
    current_user: Dict[str, Any] = Depends(require_roles("admin", "teacher")),
    repository: Repository = Depends(get_repository),
):
    query: Dict[str, Any] = {"class_id": class_id}
    if subject:
        query["subject_id"] = subject
    if academic_year:
        query["academic_year"] = academic_year
    if term:
        query["term"] = term
    grades = await repository.fetch("grade", query)
    grades = await repository.join_all(grades, STUDENT_WITH_USER, SUBJECT_JOIN, TEACHER_WITH_USER)
    return sorted(grades, key=_student_name_key)


@router.get("/statistics/{student_id}")
async def get_grade_statistics(
    student_id: str,
    academic_year: Optional[str] = Query(default=None),
    access: AccessContext = Depends(get_access),
    repository: Repository = Depends(get_repository),
):
    await viewable_student(repository, student_id, access)
    query: Dict[str, Any] = {"student_id": student_id}
    if academic_year:
        query["academic_year"] = academic_year
    grades = await repository.fetch("grade", query, sort=GRADE_SORT)
    grades = await repository.join_all(grades, ("subject_id", "subject", "subject", SUBJECT_SUMMARY, ()))
    return grade_statistics(grades).model_dump()


@router.get("/{grade_id}")
async def get_grade(
    grade_id: str,
    access: AccessContext = Depends(get_access),
    repository: Repository = Depends(get_repository),
):
    grade = await repository.require("grade", grade_id)
    if access.is_parent:
        await viewable_student(repository, grade["student_id"], access)
    return (await repository.join_all([grade], *FULL_JOINS))[0]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_grade(
    payload: GradeCreate,
    current_user: Dict[str, Any] = Depends(require_roles("teacher", "admin")),
    repository: Repository = Depends(get_repository),
):
    teacher_id = await resolve_teacher_id(repository, current_user, payload.teacher_id)
    await repository.require("student", payload.student_id)
    await repository.require("subject", payload.subject_id)
    await repository.require("class", payload.class_id)
    record = GradeRecord(**payload.model_dump(exclude={"teacher_id"}), teacher_id=teacher_id)
    doc = recompute(record.model_dump())
    await repository.insert("grade", doc)
    logger.info(
        "Recorded %s grade for student %s in subject %s: %s",
        doc["term"], doc["student_id"], doc["subject_id"], doc["letter_grade"],
    )
    return doc


@router.put("/{grade_id}")
async def update_grade(
    grade_id: str,
    payload: GradeUpdate,
    current_user: Dict[str, Any] = Depends(require_roles("teacher", "admin")),
    repository: Repository = Depends(get_repository),
):
    grade = await repository.require("grade", grade_id)
    if current_user.get("role") == "teacher":
        teacher = await teacher_for_user(repository, current_user) or {}
        owns = grade.get("teacher_id") == teacher.get("id") or grade.get("subject_id") in (teacher.get("subject_ids") or [])
        if not teacher or not owns:
            raise PermissionDenied("Access denied")

    updated = dict(grade)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("grades") is not None:
        updated["grades"] = changes["grades"]
        updated = recompute(updated)
    if "comments" in changes:
        updated["comments"] = changes["comments"]
    if changes.get("status"):
        updated = apply_status(updated, changes["status"])

    fields = {key: value for key, value in updated.items() if key not in ("id", "created_at", "updated_at")}
    saved = await repository.update("grade", grade_id, fields)
    return (await repository.join_all([saved], *FULL_JOINS))[0]


@router.delete("/{grade_id}")
async def delete_grade(
    grade_id: str,
    current_user: Dict[str, Any] = Depends(require_roles("admin")),
    repository: Repository = Depends(get_repository),
):
    await repository.require("grade", grade_id)
    await repository.delete("grade", grade_id)
    return {"message": "Grade deleted successfully"}
