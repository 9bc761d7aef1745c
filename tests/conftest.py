import copy
import re
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest
from fastapi.testclient import TestClient

from school_api.app import app
from school_api.models import ClassRecord, StudentRecord, SubjectRecord, TeacherRecord, UserRecord, iso_now
from school_api.repository import Repository, get_repository
from school_api.security import get_password_hash, token_for

PASSWORD = "secret123"


def _resolve(value: Any, parts: List[str]) -> List[Any]:
    if not parts:
        return [value]
    if isinstance(value, list):
        found = []
        for item in value:
            found.extend(_resolve(item, parts))
        return found
    if isinstance(value, dict) and parts[0] in value:
        return _resolve(value[parts[0]], parts[1:])
    return []


def _flatten(values: List[Any]) -> List[Any]:
    flat = []
    for value in values:
        flat.extend(value if isinstance(value, list) else [value])
    return flat


def _match_condition(values: List[Any], condition: Any) -> bool:
    if isinstance(condition, dict) and any(key.startswith("$") for key in condition):
        flat = _flatten(values) or [None]
        for op, operand in condition.items():
            if op == "$in":
                if not any(value in operand for value in flat):
                    return False
            elif op == "$gte":
                if not any(value is not None and value >= operand for value in flat):
                    return False
            elif op == "$lte":
                if not any(value is not None and value <= operand for value in flat):
                    return False
            elif op == "$exists":
                if bool(values) != bool(operand):
                    return False
            elif op == "$regex":
                flags = re.IGNORECASE if "i" in condition.get("$options", "") else 0
                if not any(value is not None and re.search(operand, str(value), flags) for value in flat):
                    return False
            elif op == "$options":
                continue
            else:
                raise NotImplementedError(op)
        return True
    if not values:
        return condition is None
    return any(value == condition or (isinstance(value, list) and condition in value) for value in values)


def matches(doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
    for key, condition in (query or {}).items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in condition):
                return False
        elif not _match_condition(_resolve(doc, key.split(".")), condition):
            return False
    return True


def _sort_key(value: Any):
    return (value is not None, value if value is not None else 0)


class InMemoryRepository(Repository):
    """Dict-backed repository understanding the subset of Mongo queries the API issues."""

    def __init__(self):
        self.store: Dict[str, List[Dict[str, Any]]] = {}

    def _docs(self, kind):
        return self.store.setdefault(kind, [])

    def seed(self, kind, doc):
        self._docs(kind).append(copy.deepcopy(doc))
        return doc

    def all(self, kind, query=None):
        return [copy.deepcopy(doc) for doc in self._docs(kind) if matches(doc, query or {})]

    async def find_by_id(self, kind, record_id):
        return await self.find_one(kind, {"id": record_id})

    async def find_one(self, kind, query):
        found = self.all(kind, query)
        return found[0] if found else None

    async def fetch(self, kind, query=None, sort=None, skip=0, limit=0):
        docs = self.all(kind, query)
        for field, direction in reversed(list(sort or [])):
            docs.sort(key=lambda doc: _sort_key(doc.get(field)), reverse=direction < 0)
        docs = docs[skip:]
        return docs[:limit] if limit else docs

    async def count(self, kind, query=None):
        return len(self.all(kind, query))

    async def insert(self, kind, doc):
        self.seed(kind, doc)
        return doc

    async def insert_many(self, kind, docs):
        for doc in docs:
            self.seed(kind, doc)
        return docs

    async def update(self, kind, record_id, changes):
        for doc in self._docs(kind):
            if doc["id"] == record_id:
                doc.update(copy.deepcopy(changes))
                doc["updated_at"] = iso_now()
                return copy.deepcopy(doc)
        return None

    async def update_many(self, kind, query, changes):
        updated = 0
        for doc in self._docs(kind):
            if matches(doc, query):
                doc.update(copy.deepcopy(changes))
                updated += 1
        return updated

    async def delete(self, kind, record_id):
        return await self.delete_many(kind, {"id": record_id}) > 0

    async def delete_many(self, kind, query):
        docs = self._docs(kind)
        keep = [doc for doc in docs if not matches(doc, query)]
        removed = len(docs) - len(keep)
        self.store[kind] = keep
        return removed

    async def add_to_set(self, kind, record_id, field, value):
        for doc in self._docs(kind):
            if doc["id"] == record_id:
                values = doc.setdefault(field, [])
                if value not in values:
                    values.append(value)

    async def pull(self, kind, query, field, value):
        for doc in self._docs(kind):
            if matches(doc, query) and isinstance(doc.get(field), list):
                doc[field] = [item for item in doc[field] if item != value]


def auth_header(user: Dict[str, Any]) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token_for(user)}"}


@pytest.fixture(autouse=True)
def jwt_secret(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", "test-secret")


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def client(repository):
    app.dependency_overrides[get_repository] = lambda: repository
    yield TestClient(app)
    app.dependency_overrides.clear()


def _user(repository, user_id, role, first_name, email, password_hash=None):
    doc = UserRecord(id=user_id, first_name=first_name, last_name="Tester", email=email, role=role).model_dump()
    doc["password_hash"] = password_hash
    return repository.seed("user", doc)


@pytest.fixture
def school(repository):
    """A small seeded school: one class of two students, two subjects, one teacher."""
    password_hash = get_password_hash(PASSWORD)
    admin = _user(repository, "admin-1", "admin", "Ada", "admin@school.test", password_hash)
    parent = _user(repository, "parent-1", "parent", "Pat", "pat@family.test")
    other_parent = _user(repository, "parent-2", "parent", "Olu", "olu@family.test")
    teacher_user = _user(repository, "teacher-user-1", "teacher", "Tess", "tess@school.test")
    _user(repository, "student-user-1", "student", "Sam", "sam@school.test")
    _user(repository, "student-user-2", "student", "Ben", "ben@school.test")

    math = repository.seed("subject", SubjectRecord(
        id="math", name="Mathematics", code="MATH9", department="Mathematics", grade="9"
    ).model_dump())
    science = repository.seed("subject", SubjectRecord(
        id="science", name="Science", code="SCI9", department="Science", grade="9"
    ).model_dump())
    teacher = repository.seed("teacher", TeacherRecord(
        id="teacher-1",
        user_id=teacher_user["id"],
        teacher_number="TCH20240001",
        employee_id="EMP000001",
        hire_date="2020-09-01",
        department="Mathematics",
        subject_ids=["math"],
        class_ids=["class-9a"],
    ).model_dump())
    class_doc = repository.seed("class", ClassRecord(
        id="class-9a",
        name="9A",
        grade="9",
        section="A",
        academic_year="2024-2025",
        class_teacher_id="teacher-1",
        max_students=3,
        student_ids=["student-1", "student-2"],
        subjects=[
            {"subject_id": "math", "teacher_id": "teacher-1", "schedule": {"day": "monday", "start_time": "10:00"}},
            {"subject_id": "science", "schedule": {"day": "monday", "start_time": "08:00", "room": "Lab"}},
        ],
    ).model_dump())
    student = repository.seed("student", StudentRecord(
        id="student-1",
        user_id="student-user-1",
        student_number="STU20240001",
        admission_date="2024-09-01",
        current_class_id="class-9a",
        parent_id="parent-1",
    ).model_dump())
    other_student = repository.seed("student", StudentRecord(
        id="student-2",
        user_id="student-user-2",
        student_number="STU20240002",
        admission_date="2024-09-01",
        current_class_id="class-9a",
        parent_id="parent-2",
    ).model_dump())
    return SimpleNamespace(
        admin=admin,
        parent=parent,
        other_parent=other_parent,
        teacher_user=teacher_user,
        teacher=teacher,
        math=math,
        science=science,
        class_doc=class_doc,
        student=student,
        other_student=other_student,
    )
