"""Persistence collaborator.

Route handlers and the report composer talk to a ``Repository``; the
scoring and aggregation code never sees the database. Cross-collection
references are resolved here with ``populate``.
"""
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from pymongo import ReturnDocument

from .database import get_db
from .errors import NotFound
from .models import iso_now

COLLECTIONS = {
    "user": "users",
    "student": "students",
    "teacher": "teachers",
    "class": "classes",
    "subject": "subjects",
    "grade": "grades",
    "attendance": "attendances",
}

LABELS = {
    "user": "User",
    "student": "Student",
    "teacher": "Teacher",
    "class": "Class",
    "subject": "Subject",
    "grade": "Grade",
    "attendance": "Attendance record",
}

Sort = Sequence[Tuple[str, int]]
# (id field, target field, kind, projected fields, nested joins)
Join = Tuple[str, str, str, Optional[Sequence[str]], Sequence[Any]]

USER_NAME = ("first_name", "last_name")
USER_CONTACT = ("first_name", "last_name", "email", "phone")
CLASS_SUMMARY = ("name", "grade", "section")
SUBJECT_SUMMARY = ("name", "code")

STUDENT_WITH_USER = ("student_id", "student", "student", ("user_id", "student_number"), [("user_id", "user", "user", USER_NAME, ())])
TEACHER_WITH_USER = ("teacher_id", "teacher", "teacher", ("user_id",), [("user_id", "user", "user", USER_NAME, ())])
SUBJECT_JOIN = ("subject_id", "subject", "subject", SUBJECT_SUMMARY, ())
CLASS_JOIN = ("class_id", "class", "class", CLASS_SUMMARY, ())
CLASS_TEACHER_JOIN = ("class_teacher_id", "class_teacher", "teacher", ("user_id",), [("user_id", "user", "user", USER_CONTACT, ())])
CLASS_STUDENTS_JOIN = ("student_ids", "students", "student", ("user_id", "student_number"), [("user_id", "user", "user", USER_CONTACT, ())])


class Repository:
    async def find_by_id(self, kind: str, record_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def find_one(self, kind: str, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def fetch(
        self,
        kind: str,
        query: Optional[Dict[str, Any]] = None,
        sort: Optional[Sort] = None,
        skip: int = 0,
        limit: int = 0,
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def count(self, kind: str, query: Optional[Dict[str, Any]] = None) -> int:
        raise NotImplementedError

    async def insert(self, kind: str, doc: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    async def insert_many(self, kind: str, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def update(self, kind: str, record_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def update_many(self, kind: str, query: Dict[str, Any], changes: Dict[str, Any]) -> int:
        raise NotImplementedError

    async def delete(self, kind: str, record_id: str) -> bool:
        raise NotImplementedError

    async def delete_many(self, kind: str, query: Dict[str, Any]) -> int:
        raise NotImplementedError

    async def add_to_set(self, kind: str, record_id: str, field: str, value: Any) -> None:
        raise NotImplementedError

    async def pull(self, kind: str, query: Dict[str, Any], field: str, value: Any) -> None:
        raise NotImplementedError

    async def require(self, kind: str, record_id: Optional[str]) -> Dict[str, Any]:
        doc = await self.find_by_id(kind, record_id) if record_id else None
        if not doc:
            raise NotFound(f"{LABELS[kind]} not found")
        return doc

    async def populate(
        self,
        docs: Iterable[Dict[str, Any]],
        id_field: str,
        target: str,
        kind: str,
        fields: Optional[Sequence[str]] = None,
        nested: Sequence[Join] = (),
    ) -> List[Dict[str, Any]]:
        """Attach the referenced ``kind`` documents to each doc under ``target``.

        ``id_field`` may hold a single id or a list of ids; the join keeps the
        id field itself. Unknown ids join to ``None`` (or are dropped from lists).
        """
        docs = [dict(doc) for doc in docs]
        wanted = set()
        for doc in docs:
            value = doc.get(id_field)
            if isinstance(value, list):
                wanted.update(value)
            elif value:
                wanted.add(value)
        related: Dict[str, Dict[str, Any]] = {}
        if wanted:
            found = await self.fetch(kind, {"id": {"$in": sorted(wanted)}})
            for join in nested:
                found = await self.populate(found, *join)
            joined = [join[1] for join in nested]
            for item in found:
                related[item["id"]] = _project(item, fields, joined)
        for doc in docs:
            value = doc.get(id_field)
            if isinstance(value, list):
                doc[target] = [related[v] for v in value if v in related]
            else:
                doc[target] = related.get(value) if value else None
        return docs

    async def populate_one(self, doc: Dict[str, Any], *join: Any) -> Dict[str, Any]:
        return (await self.populate([doc], *join))[0]

    async def join_all(self, docs: Iterable[Dict[str, Any]], *joins: Join) -> List[Dict[str, Any]]:
        docs = list(docs)
        for join in joins:
            docs = await self.populate(docs, *join)
        return docs


def _project(doc: Dict[str, Any], fields: Optional[Sequence[str]], joined: Sequence[str] = ()) -> Dict[str, Any]:
    if fields is None:
        return {k: v for k, v in doc.items() if k != "password_hash"}
    projected = {"id": doc["id"]}
    for field in list(fields) + list(joined):
        if field in doc:
            projected[field] = doc[field]
    return projected


class MongoRepository(Repository):
    def __init__(self, db):
        self.db = db

    def _collection(self, kind: str):
        return self.db[COLLECTIONS[kind]]

    async def find_by_id(self, kind, record_id):
        return await self._collection(kind).find_one({"id": record_id}, {"_id": 0})

    async def find_one(self, kind, query):
        return await self._collection(kind).find_one(query, {"_id": 0})

    async def fetch(self, kind, query=None, sort=None, skip=0, limit=0):
        cursor = self._collection(kind).find(query or {}, {"_id": 0})
        if sort:
            cursor = cursor.sort(list(sort))
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return await cursor.to_list(length=None)

    async def count(self, kind, query=None):
        return await self._collection(kind).count_documents(query or {})

    async def insert(self, kind, doc):
        await self._collection(kind).insert_one(dict(doc))
        return doc

    async def insert_many(self, kind, docs):
        if docs:
            await self._collection(kind).insert_many([dict(doc) for doc in docs])
        return docs

    async def update(self, kind, record_id, changes):
        changes = {**changes, "updated_at": iso_now()}
        return await self._collection(kind).find_one_and_update(
            {"id": record_id},
            {"$set": changes},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )

    async def update_many(self, kind, query, changes):
        result = await self._collection(kind).update_many(query, {"$set": {**changes, "updated_at": iso_now()}})
        return result.modified_count

    async def delete(self, kind, record_id):
        result = await self._collection(kind).delete_one({"id": record_id})
        return result.deleted_count > 0

    async def delete_many(self, kind, query):
        result = await self._collection(kind).delete_many(query)
        return result.deleted_count

    async def add_to_set(self, kind, record_id, field, value):
        await self._collection(kind).update_one({"id": record_id}, {"$addToSet": {field: value}})

    async def pull(self, kind, query, field, value):
        await self._collection(kind).update_many(query, {"$pull": {field: value}})


def get_repository() -> Repository:
    return MongoRepository(get_db())
