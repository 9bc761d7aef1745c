from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status

from ..errors import ValidationError
from ..models import SubjectBase, SubjectRecord, SubjectUpdate
from ..repository import SUBJECT_SUMMARY, Repository, get_repository
from ..security import get_current_user, require_roles
from .common import Page, changes_from, page_params, paginate, search_filter

router = APIRouter(prefix="/api/subjects", tags=["subjects"])

PREREQUISITES_JOIN = ("prerequisite_ids", "prerequisites", "subject", SUBJECT_SUMMARY, ())


async def _ensure_code_free(repository: Repository, code: str, subject_id: Optional[str] = None) -> None:
    existing = await repository.find_one("subject", {"code": code})
    if existing and existing["id"] != subject_id:
        raise ValidationError("Subject code already exists")


@router.get("")
async def list_subjects(
    department: Optional[str] = Query(default=None),
    grade: Optional[str] = Query(default=None),
    status_filter: Optional[str] = Query(default=None, alias="status"),
    search: Optional[str] = Query(default=None),
    page: Page = Depends(page_params),
    current_user: Dict[str, Any] = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
):
    query: Dict[str, Any] = search_filter(search, "name", "code")
    if department:
        query["department"] = department
    if grade:
        query["grade"] = grade
    if status_filter:
        query["status"] = status_filter
    subjects, pagination = await paginate(repository, "subject", query, [("name", 1)], page, (PREREQUISITES_JOIN,))
    return {"subjects": subjects, "pagination": pagination}


@router.get("/grade/{grade}")
async def get_subjects_by_grade(
    grade: str,
    current_user: Dict[str, Any] = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
):
    subjects = await repository.fetch("subject", {"grade": grade, "status": "active"}, sort=[("name", 1)])
    return await repository.join_all(subjects, PREREQUISITES_JOIN)


@router.get("/department/{department}")
async def get_subjects_by_department(
    department: str,
    current_user: Dict[str, Any] = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
):
    subjects = await repository.fetch(
        "subject", {"department": department, "status": "active"}, sort=[("grade", 1), ("name", 1)]
    )
    return await repository.join_all(subjects, PREREQUISITES_JOIN)


@router.get("/{subject_id}")
async def get_subject(
    subject_id: str,
    current_user: Dict[str, Any] = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
):
    subject = await repository.require("subject", subject_id)
    return await repository.populate_one(
        subject, "prerequisite_ids", "prerequisites", "subject", SUBJECT_SUMMARY + ("description",)
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_subject(
    payload: SubjectBase,
    current_user: Dict[str, Any] = Depends(require_roles("admin")),
    repository: Repository = Depends(get_repository),
):
    await _ensure_code_free(repository, payload.code)
    for prerequisite_id in payload.prerequisite_ids:
        await repository.require("subject", prerequisite_id)
    subject = SubjectRecord(**payload.model_dump())
    doc = subject.model_dump()
    await repository.insert("subject", doc)
    return doc


@router.put("/{subject_id}")
async def update_subject(
    subject_id: str,
    payload: SubjectUpdate,
    current_user: Dict[str, Any] = Depends(require_roles("admin")),
    repository: Repository = Depends(get_repository),
):
    await repository.require("subject", subject_id)
    changes = changes_from(payload)
    if changes.get("code"):
        changes["code"] = changes["code"].strip().upper()
        await _ensure_code_free(repository, changes["code"], subject_id)
    if subject_id in (changes.get("prerequisite_ids") or []):
        raise ValidationError("A subject cannot be its own prerequisite")
    return await repository.update("subject", subject_id, changes)


@router.delete("/{subject_id}")
async def delete_subject(
    subject_id: str,
    current_user: Dict[str, Any] = Depends(require_roles("admin")),
    repository: Repository = Depends(get_repository),
):
    await repository.require("subject", subject_id)
    await repository.delete("subject", subject_id)
    return {"message": "Subject deleted successfully"}
