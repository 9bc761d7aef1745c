import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status

from ..access import AccessContext
from ..models import StudentCreate, StudentRecord, StudentUpdate
from ..repository import (
    CLASS_JOIN,
    CLASS_SUMMARY,
    SUBJECT_JOIN,
    TEACHER_WITH_USER,
    USER_CONTACT,
    Repository,
    get_repository,
)
from ..security import get_access, require_roles
from .common import (
    CURRENT_CLASS_JOIN,
    PARENT_JOIN,
    STUDENT_USER,
    Page,
    changes_from,
    create_linked_user,
    current_year,
    date_range,
    next_number,
    page_params,
    paginate,
    search_filter,
    viewable_student,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/students", tags=["students"])


@router.get("")
async def list_students(
    class_id: Optional[str] = Query(default=None, alias="class"),
    status_filter: Optional[str] = Query(default=None, alias="status"),
    search: Optional[str] = Query(default=None),
    page: Page = Depends(page_params),
    current_user: Dict[str, Any] = Depends(require_roles("admin", "teacher")),
    repository: Repository = Depends(get_repository),
):
    query: Dict[str, Any] = search_filter(search, "student_number")
    if class_id:
        query["current_class_id"] = class_id
    if status_filter:
        query["status"] = status_filter
    students, pagination = await paginate(
        repository, "student", query, [("created_at", -1)], page, (STUDENT_USER, CURRENT_CLASS_JOIN, PARENT_JOIN)
    )
    return {"students": students, "pagination": pagination}


@router.get("/{student_id}")
async def get_student(
    student_id: str,
    access: AccessContext = Depends(get_access),
    repository: Repository = Depends(get_repository),
):
    student = await viewable_student(repository, student_id, access)
    student = await repository.populate_one(
        student, "user_id", "user", "user", USER_CONTACT + ("date_of_birth", "address", "profile_picture")
    )
    student = await repository.populate_one(
        student,
        "current_class_id",
        "current_class",
        "class",
        CLASS_SUMMARY + ("class_teacher_id",),
        [("class_teacher_id", "class_teacher", "teacher", ("user_id",), [("user_id", "user", "user", ("first_name", "last_name"), ())])],
    )
    return await repository.populate_one(student, *PARENT_JOIN)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_student(
    payload: StudentCreate,
    current_user: Dict[str, Any] = Depends(require_roles("admin")),
    repository: Repository = Depends(get_repository),
):
    await repository.require("class", payload.current_class_id)
    if payload.parent_id:
        await repository.require("user", payload.parent_id)
    user = await create_linked_user(repository, payload, "student")
    student_number = await next_number(repository, "student", "student_number", f"STU{current_year()}", 4)
    data = payload.model_dump(exclude={"first_name", "last_name", "email", "phone", "date_of_birth"})
    student = StudentRecord(**data, user_id=user["id"], student_number=student_number)
    doc = student.model_dump()
    await repository.insert("student", doc)
    await repository.add_to_set("class", payload.current_class_id, "student_ids", student.id)
    logger.info("Created student %s in class %s", student_number, payload.current_class_id)
    return doc


@router.put("/{student_id}")
async def update_student(
    student_id: str,
    payload: StudentUpdate,
    current_user: Dict[str, Any] = Depends(require_roles("admin")),
    repository: Repository = Depends(get_repository),
):
    student = await repository.require("student", student_id)
    changes = changes_from(payload)
    new_class = changes.get("current_class_id")
    if new_class and new_class != student.get("current_class_id"):
        await repository.require("class", new_class)
        await repository.pull("class", {"id": student.get("current_class_id")}, "student_ids", student_id)
        await repository.add_to_set("class", new_class, "student_ids", student_id)
    updated = await repository.update("student", student_id, changes)
    return await repository.populate_one(updated, "user_id", "user", "user", USER_CONTACT)


@router.delete("/{student_id}")
async def delete_student(
    student_id: str,
    current_user: Dict[str, Any] = Depends(require_roles("admin")),
    repository: Repository = Depends(get_repository),
):
    student = await repository.require("student", student_id)
    await repository.pull("class", {"student_ids": student_id}, "student_ids", student_id)
    await repository.delete("user", student["user_id"])
    await repository.delete("student", student_id)
    logger.info("Deleted student %s", student.get("student_number"))
    return {"message": "Student deleted successfully"}


@router.get("/{student_id}/grades")
async def get_student_grades(
    student_id: str,
    access: AccessContext = Depends(get_access),
    repository: Repository = Depends(get_repository),
):
    await viewable_student(repository, student_id, access)
    grades = await repository.fetch("grade", {"student_id": student_id}, sort=[("academic_year", -1), ("term", -1)])
    return await repository.join_all(grades, SUBJECT_JOIN, TEACHER_WITH_USER)


@router.get("/{student_id}/attendance")
async def get_student_attendance(
    student_id: str,
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    subject: Optional[str] = Query(default=None),
    access: AccessContext = Depends(get_access),
    repository: Repository = Depends(get_repository),
):
    await viewable_student(repository, student_id, access)
    query: Dict[str, Any] = {"student_id": student_id}
    dates = date_range(start_date, end_date)
    if dates:
        query["date"] = dates
    if subject:
        query["subject_id"] = subject
    records = await repository.fetch("attendance", query, sort=[("date", -1)])
    return await repository.join_all(records, SUBJECT_JOIN, CLASS_JOIN)
