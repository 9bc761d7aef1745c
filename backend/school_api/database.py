import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from . import config

logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None


def get_client() -> AsyncIOMotorClient:
    global _client
    if _client is None:
        try:
            _client = AsyncIOMotorClient(config.normalize_mongo_url(config.MONGO_URL), serverSelectionTimeoutMS=5000)
        except Exception as e:
            logger.error(f"Failed to create MongoDB client: {e}")
            raise
    return _client


def get_db() -> AsyncIOMotorDatabase:
    return get_client()[config.DB_NAME]


def close_client() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    await db.users.create_index([("id", 1)], unique=True)
    await db.users.create_index([("email", 1)], unique=True)
    await db.students.create_index([("id", 1)], unique=True)
    await db.students.create_index([("student_number", 1)], unique=True)
    await db.students.create_index([("current_class_id", 1)])
    await db.teachers.create_index([("id", 1)], unique=True)
    await db.teachers.create_index([("teacher_number", 1)], unique=True)
    await db.teachers.create_index([("employee_id", 1)], unique=True)
    await db.teachers.create_index([("user_id", 1)])
    await db.classes.create_index([("id", 1)], unique=True)
    await db.classes.create_index([("grade", 1), ("section", 1)])
    await db.subjects.create_index([("id", 1)], unique=True)
    await db.subjects.create_index([("code", 1)], unique=True)
    await db.grades.create_index([("id", 1)], unique=True)
    await db.grades.create_index([("student_id", 1), ("subject_id", 1), ("academic_year", 1), ("term", 1)])
    await db.attendances.create_index([("id", 1)], unique=True)
    await db.attendances.create_index([("student_id", 1), ("date", 1), ("class_id", 1)])
    await db.attendances.create_index([("class_id", 1), ("date", 1)])
