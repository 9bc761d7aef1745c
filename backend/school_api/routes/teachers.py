import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status

from ..models import TeacherCreate, TeacherRecord, TeacherUpdate
from ..repository import (
    CLASS_STUDENTS_JOIN,
    CLASS_SUMMARY,
    CLASS_TEACHER_JOIN,
    SUBJECT_SUMMARY,
    USER_CONTACT,
    Repository,
    get_repository,
)
from ..security import get_current_user, require_roles
from .common import (
    CURRENT_CLASS_JOIN,
    PARENT_JOIN,
    Page,
    changes_from,
    create_linked_user,
    current_year,
    next_number,
    page_params,
    paginate,
    search_filter,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/teachers", tags=["teachers"])

TEACHER_USER = ("user_id", "user", "user", USER_CONTACT + ("profile_picture",), ())
TEACHER_SUBJECTS = ("subject_ids", "subjects", "subject", SUBJECT_SUMMARY, ())
TEACHER_CLASSES = ("class_ids", "classes", "class", CLASS_SUMMARY, ())


def _teaching_filter(teacher_id: str) -> Dict[str, Any]:
    return {"$or": [{"class_teacher_id": teacher_id}, {"subjects.teacher_id": teacher_id}]}


@router.get("")
async def list_teachers(
    department: Optional[str] = Query(default=None),
    status_filter: Optional[str] = Query(default=None, alias="status"),
    search: Optional[str] = Query(default=None),
    page: Page = Depends(page_params),
    current_user: Dict[str, Any] = Depends(require_roles("admin")),
    repository: Repository = Depends(get_repository),
):
    query: Dict[str, Any] = search_filter(search, "teacher_number")
    if department:
        query["department"] = department
    if status_filter:
        query["status"] = status_filter
    teachers, pagination = await paginate(
        repository, "teacher", query, [("created_at", -1)], page, (TEACHER_USER, TEACHER_SUBJECTS, TEACHER_CLASSES)
    )
    return {"teachers": teachers, "pagination": pagination}


@router.get("/{teacher_id}")
async def get_teacher(
    teacher_id: str,
    current_user: Dict[str, Any] = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
):
    teacher = await repository.require("teacher", teacher_id)
    teacher = await repository.populate_one(
        teacher, "user_id", "user", "user", USER_CONTACT + ("date_of_birth", "address", "profile_picture")
    )
    teacher = await repository.populate_one(teacher, "subject_ids", "subjects", "subject", SUBJECT_SUMMARY + ("department",))
    return await repository.populate_one(teacher, *TEACHER_CLASSES)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_teacher(
    payload: TeacherCreate,
    current_user: Dict[str, Any] = Depends(require_roles("admin")),
    repository: Repository = Depends(get_repository),
):
    for subject_id in payload.subject_ids:
        await repository.require("subject", subject_id)
    user = await create_linked_user(repository, payload, "teacher")
    teacher_number = await next_number(repository, "teacher", "teacher_number", f"TCH{current_year()}", 4)
    employee_id = await next_number(repository, "teacher", "employee_id", "EMP", 6)
    data = payload.model_dump(exclude={"first_name", "last_name", "email", "phone", "date_of_birth"})
    teacher = TeacherRecord(**data, user_id=user["id"], teacher_number=teacher_number, employee_id=employee_id)
    doc = teacher.model_dump()
    await repository.insert("teacher", doc)
    logger.info("Created teacher %s (%s)", teacher_number, employee_id)
    return doc


@router.put("/{teacher_id}")
async def update_teacher(
    teacher_id: str,
    payload: TeacherUpdate,
    current_user: Dict[str, Any] = Depends(require_roles("admin")),
    repository: Repository = Depends(get_repository),
):
    await repository.require("teacher", teacher_id)
    updated = await repository.update("teacher", teacher_id, changes_from(payload))
    return await repository.populate_one(updated, "user_id", "user", "user", USER_CONTACT)


@router.delete("/{teacher_id}")
async def delete_teacher(
    teacher_id: str,
    current_user: Dict[str, Any] = Depends(require_roles("admin")),
    repository: Repository = Depends(get_repository),
):
    teacher = await repository.require("teacher", teacher_id)
    await repository.update_many("class", {"class_teacher_id": teacher_id}, {"class_teacher_id": None})
    await repository.delete("user", teacher["user_id"])
    await repository.delete("teacher", teacher_id)
    logger.info("Deleted teacher %s", teacher.get("teacher_number"))
    return {"message": "Teacher deleted successfully"}


@router.get("/{teacher_id}/classes")
async def get_teacher_classes(
    teacher_id: str,
    current_user: Dict[str, Any] = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
):
    await repository.require("teacher", teacher_id)
    classes = await repository.fetch("class", _teaching_filter(teacher_id), sort=[("grade", 1), ("section", 1)])
    return await repository.join_all(classes, CLASS_TEACHER_JOIN, CLASS_STUDENTS_JOIN)


@router.get("/{teacher_id}/students")
async def get_teacher_students(
    teacher_id: str,
    current_user: Dict[str, Any] = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
):
    await repository.require("teacher", teacher_id)
    classes = await repository.fetch("class", _teaching_filter(teacher_id))
    class_ids = [class_doc["id"] for class_doc in classes]
    students = await repository.fetch("student", {"current_class_id": {"$in": class_ids}})
    return await repository.join_all(
        students, ("user_id", "user", "user", USER_CONTACT, ()), CURRENT_CLASS_JOIN, PARENT_JOIN
    )
