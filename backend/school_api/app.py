import logging

from fastapi import FastAPI, Request
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

from . import __version__, config
from .database import close_client, ensure_indexes, get_client, get_db
from .errors import SchoolError
from .models import UserRecord
from .repository import MongoRepository, Repository
from .routes import routers
from .security import get_password_hash

config.setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="School Management API", version=__version__)


@app.exception_handler(SchoolError)
async def school_error_handler(request: Request, exc: SchoolError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Server error"})


@app.get("/health")
async def health():
    return {"status": "ok"}


async def seed_default_admin(repository: Repository) -> bool:
    """Create the first admin account when the user collection is empty."""
    if await repository.count("user") > 0:
        return False
    admin = UserRecord(
        first_name="System",
        last_name="Administrator",
        email=config.DEFAULT_ADMIN_EMAIL,
        role="admin",
    )
    await repository.insert(
        "user", {**admin.model_dump(), "password_hash": get_password_hash(config.DEFAULT_ADMIN_PASSWORD)}
    )
    logger.info("Seeded default admin %s", admin.email)
    return True


@app.on_event("startup")
async def seed_defaults():
    try:
        await get_client().admin.command("ping")
        logger.info("MongoDB connection successful")
    except Exception as e:
        logger.error(f"MongoDB connection failed: {e}")
        logger.error("Please check your MONGO_URL in .env file and ensure MongoDB is accessible")
        return

    try:
        db = get_db()
        await ensure_indexes(db)
        await seed_default_admin(MongoRepository(db))
    except Exception as e:
        logger.error(f"Error during database seeding: {e}")
        logger.warning("Continuing without seeding defaults. Some features may not work correctly.")


for router in routers:
    app.include_router(router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=config.get_cors_origins(),
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(GZipMiddleware, minimum_size=1024)


@app.on_event("shutdown")
async def shutdown_db_client():
    close_client()
