from contextlib import asynccontextmanager
from typing import Any, Dict, List

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as SchemaValidationError
from pymongo.database import Database
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import admin
import auth
import comments
import notifications
import posts
import realtime
from auth import hash_password
from config import settings
from database import create_document, ensure_indexes, get_db, post_collection
from errors import CampusConnectError, NotFoundError
from logging_config import logger
from realtime import ConnectionRegistry
from schemas import Category, Post, Role, Section, User


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("=" * 60)
    logger.info(f"Starting {settings.APP_NAME} ({settings.ENVIRONMENT})")
    logger.info("=" * 60)
    try:
        ensure_indexes(get_db())
    except PyMongoError as e:
        logger.error(f"[Startup] Could not ensure indexes: {e}")
    yield
    logger.info(f"Shutting down {settings.APP_NAME}")


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
app.state.connections = ConnectionRegistry()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error envelope

def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


def _first_error(errors: List[Dict[str, Any]]) -> str:
    if not errors:
        return "Invalid request"
    err = errors[0]
    loc = ".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path"))
    return f"{loc}: {err.get('msg')}" if loc else str(err.get("msg"))


@app.exception_handler(CampusConnectError)
async def campusconnect_error_handler(request: Request, exc: CampusConnectError):
    logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return _error(400, _first_error(exc.errors()))


@app.exception_handler(SchemaValidationError)
async def schema_validation_handler(request: Request, exc: SchemaValidationError):
    return _error(400, _first_error(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=exc)
    return _error(500, "Internal server error")


app.include_router(auth.router)
app.include_router(posts.router)
app.include_router(comments.router)
app.include_router(notifications.router)
app.include_router(admin.router)
app.include_router(realtime.router)


@app.get("/")
def root():
    return {
        "message": "Welcome to CampusConnect API",
        "endpoints": {
            "auth": "/api/auth",
            "posts": "/api/posts",
            "comments": "/api/comments",
            "notifications": "/api/notifications",
            "admin": "/api/admin",
            "realtime": "/ws",
        },
    }


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_name": db.name,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["collections"] = db.list_collection_names()
        response["connection_status"] = "Connected"
        response["database"] = "✅ Connected & Working"
    except PyMongoError as e:
        response["database"] = f"⚠️ Error: {str(e)[:100]}"
    return response


# Demo bootstrap for quick testing
DEMO_USERS = [
    {"name": "Admin User", "email": "admin@college.edu", "password": "admin123", "role": Role.ADMIN, "department": "Administration"},
    {"name": "Dr. Sarah Johnson", "email": "sarah.johnson@college.edu", "password": "faculty123", "role": Role.FACULTY, "department": "Computer Science"},
    {"name": "John Doe", "email": "john.doe@college.edu", "password": "student123", "role": Role.STUDENT, "department": "Computer Science", "year": 3},
]


@app.post("/demo/bootstrap")
def bootstrap_demo(db: Database = Depends(get_db)):
    if not settings.ENABLE_DEMO_BOOTSTRAP:
        raise NotFoundError("Route")
    created: List[str] = []
    ids: Dict[Role, Any] = {}
    for u in DEMO_USERS:
        existing = db["user"].find_one({"email": u["email"]})
        if existing:
            ids[u["role"]] = existing["_id"]
            continue
        doc = create_document(db, "user", User(
            name=u["name"],
            email=u["email"],
            password_hash=hash_password(u["password"]),
            role=u["role"],
            department=u["department"],
            year=u.get("year"),
        ))
        ids[u["role"]] = doc["_id"]
        created.append(str(doc["_id"]))
    if post_collection(db).count_documents({}) == 0:
        create_document(db, "post", Post(
            title="Welcome to CampusConnect!",
            content="This is the official forum for announcements, discussions and questions.",
            section=Section.OFFICIAL,
            category=Category.GENERAL,
            author=ids[Role.ADMIN],
            tags=["welcome"],
            is_pinned=True,
        ))
        create_document(db, "post", Post(
            title="Anyone up for a study group before exams?",
            content="Looking for people to revise data structures with.",
            section=Section.STUDENT,
            category=Category.ACADEMICS,
            author=ids[Role.STUDENT],
            tags=["exams", "study"],
        ))
    logger.info(f"[Demo] Bootstrapped {len(created)} accounts")
    credentials = [{"email": u["email"], "password": u["password"], "role": u["role"].value} for u in DEMO_USERS]
    return {"success": True, "created_users": created, "message": "Demo accounts ready", "credentials": credentials}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
