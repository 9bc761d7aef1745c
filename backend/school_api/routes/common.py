import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from fastapi import Query
from pydantic import BaseModel

from .. import config
from ..access import AccessContext, ensure_can_view_student
from ..errors import NotFound, ValidationError
from ..models import UserRecord
from ..repository import CLASS_SUMMARY, USER_CONTACT, Join, Repository, Sort
from ..security import get_password_hash

STUDENT_USER = ("user_id", "user", "user", USER_CONTACT + ("profile_picture",), ())
PARENT_JOIN = ("parent_id", "parent", "user", USER_CONTACT, ())
CURRENT_CLASS_JOIN = ("current_class_id", "current_class", "class", CLASS_SUMMARY, ())


class Page(BaseModel):
    page: int
    limit: int

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


def page_params(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
) -> Page:
    return Page(page=page, limit=limit)


async def paginate(
    repository: Repository,
    kind: str,
    query: Dict[str, Any],
    sort: Sort,
    page: Page,
    joins: Sequence[Join] = (),
) -> Tuple[List[Dict[str, Any]], Dict[str, int]]:
    items = await repository.fetch(kind, query, sort=sort, skip=page.skip, limit=page.limit)
    items = await repository.join_all(items, *joins)
    total = await repository.count(kind, query)
    return items, {"current": page.page, "pages": math.ceil(total / page.limit), "total": total}


def changes_from(payload: BaseModel) -> Dict[str, Any]:
    return payload.model_dump(exclude_unset=True)


def date_range(start_date: Optional[str], end_date: Optional[str]) -> Optional[Dict[str, str]]:
    if start_date and end_date:
        return {"$gte": start_date, "$lte": end_date}
    return None


def search_filter(search: Optional[str], *fields: str) -> Dict[str, Any]:
    if not search:
        return {}
    return {"$or": [{field: {"$regex": re.escape(search), "$options": "i"}} for field in fields]}


async def next_number(repository: Repository, kind: str, field: str, prefix: str, width: int) -> str:
    """Next free ``<prefix><seq>`` number, counting from the collection size."""
    sequence = await repository.count(kind) + 1
    while True:
        candidate = f"{prefix}{sequence:0{width}d}"
        if not await repository.find_one(kind, {field: candidate}):
            return candidate
        sequence += 1


def current_year() -> int:
    return datetime.now(timezone.utc).year


async def ensure_email_free(repository: Repository, email: str) -> None:
    if await repository.find_one("user", {"email": email.strip().lower()}):
        raise ValidationError("User already exists")


async def create_linked_user(repository: Repository, payload: BaseModel, role: str) -> Dict[str, Any]:
    """Create the login account behind a student or teacher profile."""
    await ensure_email_free(repository, payload.email)
    user = UserRecord(
        first_name=payload.first_name,
        last_name=payload.last_name,
        email=payload.email,
        phone=payload.phone,
        date_of_birth=payload.date_of_birth,
        role=role,
    )
    doc = {**user.model_dump(), "password_hash": get_password_hash(config.DEFAULT_USER_PASSWORD)}
    await repository.insert("user", doc)
    return doc


async def teacher_for_user(repository: Repository, user: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return await repository.find_one("teacher", {"user_id": user["id"]})


async def resolve_teacher_id(repository: Repository, user: Dict[str, Any], requested: Optional[str]) -> str:
    """Teachers act as themselves; admins name the teacher explicitly."""
    if user.get("role") == "teacher":
        teacher = await teacher_for_user(repository, user)
        if not teacher:
            raise NotFound("Teacher not found")
        return teacher["id"]
    if not requested:
        raise ValidationError("Teacher is required")
    await repository.require("teacher", requested)
    return requested


async def visible_student_ids(repository: Repository, access: AccessContext) -> Optional[List[str]]:
    """Student ids a parent may see, or ``None`` when the caller is unrestricted."""
    if not access.is_parent:
        return None
    children = await repository.fetch("student", {"parent_id": access.owner_id})
    return [child["id"] for child in children]


async def viewable_student(repository: Repository, student_id: str, access: AccessContext) -> Dict[str, Any]:
    student = await repository.require("student", student_id)
    ensure_can_view_student(access, student)
    return student
