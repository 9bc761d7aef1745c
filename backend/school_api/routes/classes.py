import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status

from ..errors import ValidationError
from ..models import ClassBase, ClassRecord, ClassStudentAdd, ClassUpdate
from ..repository import (
    CLASS_STUDENTS_JOIN,
    CLASS_TEACHER_JOIN,
    SUBJECT_SUMMARY,
    TEACHER_WITH_USER,
    Repository,
    get_repository,
)
from ..security import get_current_user, require_roles
from .common import Page, changes_from, page_params, paginate, search_filter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/classes", tags=["classes"])

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


async def populate_class_subjects(repository: Repository, classes: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Attach ``subject`` and ``teacher`` documents to each entry of ``subjects``."""
    for class_doc in classes:
        entries = [dict(entry) for entry in class_doc.get("subjects") or []]
        entries = await repository.populate(entries, "subject_id", "subject", "subject", SUBJECT_SUMMARY)
        entries = await repository.populate(entries, *TEACHER_WITH_USER)
        class_doc["subjects"] = entries
    return classes


def build_schedule(class_doc: Dict[str, Any]) -> Dict[str, List[Dict[str, Any]]]:
    schedule: Dict[str, List[Dict[str, Any]]] = {day: [] for day in WEEKDAYS}
    for entry in class_doc.get("subjects") or []:
        slot = entry.get("schedule")
        if not slot:
            continue
        schedule[slot["day"]].append({
            "subject": entry.get("subject"),
            "teacher": entry.get("teacher"),
            "start_time": slot.get("start_time"),
            "end_time": slot.get("end_time"),
            "room": slot.get("room"),
        })
    for slots in schedule.values():
        slots.sort(key=lambda slot: slot["start_time"] or "")
    return schedule


@router.get("")
async def list_classes(
    grade: Optional[str] = Query(default=None),
    academic_year: Optional[str] = Query(default=None),
    status_filter: Optional[str] = Query(default=None, alias="status"),
    search: Optional[str] = Query(default=None),
    page: Page = Depends(page_params),
    current_user: Dict[str, Any] = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
):
    query: Dict[str, Any] = search_filter(search, "name", "section")
    if grade:
        query["grade"] = grade
    if academic_year:
        query["academic_year"] = academic_year
    if status_filter:
        query["status"] = status_filter
    classes, pagination = await paginate(
        repository, "class", query, [("grade", 1), ("section", 1)], page, (CLASS_TEACHER_JOIN,)
    )
    classes = await populate_class_subjects(repository, classes)
    return {"classes": classes, "pagination": pagination}


@router.get("/{class_id}")
async def get_class(
    class_id: str,
    current_user: Dict[str, Any] = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
):
    class_doc = await repository.require("class", class_id)
    class_doc = await repository.populate_one(class_doc, *CLASS_TEACHER_JOIN)
    class_doc = await repository.populate_one(class_doc, *CLASS_STUDENTS_JOIN)
    return (await populate_class_subjects(repository, [class_doc]))[0]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_class(
    payload: ClassBase,
    current_user: Dict[str, Any] = Depends(require_roles("admin")),
    repository: Repository = Depends(get_repository),
):
    if payload.class_teacher_id:
        await repository.require("teacher", payload.class_teacher_id)
    class_record = ClassRecord(**payload.model_dump())
    doc = class_record.model_dump()
    await repository.insert("class", doc)
    if payload.class_teacher_id:
        await repository.add_to_set("teacher", payload.class_teacher_id, "class_ids", class_record.id)
    logger.info("Created class %s (%s)", class_record.name, class_record.academic_year)
    return doc


@router.put("/{class_id}")
async def update_class(
    class_id: str,
    payload: ClassUpdate,
    current_user: Dict[str, Any] = Depends(require_roles("admin")),
    repository: Repository = Depends(get_repository),
):
    await repository.require("class", class_id)
    changes = changes_from(payload)
    if changes.get("max_students") is not None and changes["max_students"] < 1:
        raise ValidationError("Class capacity must be at least 1")
    if changes.get("class_teacher_id"):
        await repository.require("teacher", changes["class_teacher_id"])
        await repository.add_to_set("teacher", changes["class_teacher_id"], "class_ids", class_id)
    updated = await repository.update("class", class_id, changes)
    return await repository.populate_one(updated, *CLASS_TEACHER_JOIN)


@router.delete("/{class_id}")
async def delete_class(
    class_id: str,
    current_user: Dict[str, Any] = Depends(require_roles("admin")),
    repository: Repository = Depends(get_repository),
):
    await repository.require("class", class_id)
    await repository.pull("teacher", {"class_ids": class_id}, "class_ids", class_id)
    await repository.update_many("student", {"current_class_id": class_id}, {"current_class_id": None})
    await repository.delete("class", class_id)
    return {"message": "Class deleted successfully"}


@router.post("/{class_id}/students")
async def add_student_to_class(
    class_id: str,
    payload: ClassStudentAdd,
    current_user: Dict[str, Any] = Depends(require_roles("admin")),
    repository: Repository = Depends(get_repository),
):
    student = await repository.require("student", payload.student_id)
    class_doc = await repository.require("class", class_id)
    roster = class_doc.get("student_ids") or []
    if payload.student_id not in roster and len(roster) >= class_doc.get("max_students", 40):
        raise ValidationError("Class is full")
    previous = student.get("current_class_id")
    if previous and previous != class_id:
        await repository.pull("class", {"id": previous}, "student_ids", payload.student_id)
    await repository.add_to_set("class", class_id, "student_ids", payload.student_id)
    await repository.update("student", payload.student_id, {"current_class_id": class_id})
    return {"message": "Student added to class successfully"}


@router.delete("/{class_id}/students/{student_id}")
async def remove_student_from_class(
    class_id: str,
    student_id: str,
    current_user: Dict[str, Any] = Depends(require_roles("admin")),
    repository: Repository = Depends(get_repository),
):
    await repository.require("class", class_id)
    await repository.pull("class", {"id": class_id}, "student_ids", student_id)
    student = await repository.find_by_id("student", student_id)
    if student and student.get("current_class_id") == class_id:
        await repository.update("student", student_id, {"current_class_id": None})
    return {"message": "Student removed from class successfully"}


@router.get("/{class_id}/schedule")
async def get_class_schedule(
    class_id: str,
    current_user: Dict[str, Any] = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
):
    class_doc = await repository.require("class", class_id)
    class_doc = (await populate_class_subjects(repository, [class_doc]))[0]
    return build_schedule(class_doc)
