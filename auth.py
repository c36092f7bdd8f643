import hashlib
import secrets
from datetime import timedelta
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, Header
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import settings
from database import as_utc, create_document, get_db, now, to_public
from errors import ForbiddenError, UnauthenticatedError, ValidationError
from logging_config import logger
from schemas import LoginBody, ProfileUpdateBody, RegisterBody, Role, Session, User

router = APIRouter(prefix="/api/auth", tags=["auth"])


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return authorization.split(" ", 1)[1].strip() or None


def create_session(db: Database, user_id: ObjectId) -> str:
    token = secrets.token_urlsafe(32)
    session = Session(
        user_id=user_id,
        token=token,
        expires_at=now() + timedelta(days=settings.SESSION_TTL_DAYS),
    )
    create_document(db, "session", session)
    return token


def resolve_token(db: Database, token: str) -> Dict[str, Any]:
    """Map a session token to its active user, or raise UnauthenticatedError."""
    session = db["session"].find_one({"token": token})
    if not session:
        raise UnauthenticatedError("Invalid session")
    if as_utc(session["expires_at"]) < now():
        db["session"].delete_one({"_id": session["_id"]})
        raise UnauthenticatedError("Session expired")
    user = db["user"].find_one({"_id": session["user_id"]})
    if not user:
        raise UnauthenticatedError("User not found")
    if not user.get("is_active", True):
        raise UnauthenticatedError("Account disabled")
    return to_public(user)


def get_current_user(authorization: Optional[str] = Header(None), db: Database = Depends(get_db)) -> Dict[str, Any]:
    token = _bearer_token(authorization)
    if not token:
        raise UnauthenticatedError("Missing token")
    return resolve_token(db, token)


def get_optional_user(authorization: Optional[str] = Header(None), db: Database = Depends(get_db)) -> Optional[Dict[str, Any]]:
    """Like get_current_user, but an absent or bad credential means an anonymous caller."""
    token = _bearer_token(authorization)
    if not token:
        return None
    try:
        return resolve_token(db, token)
    except UnauthenticatedError:
        return None


def require_role(user: Optional[Dict[str, Any]], allowed: List[str]):
    if not user or user.get("role") not in allowed:
        raise ForbiddenError("Insufficient permissions")


def require_roles(*roles: str):
    """Dependency factory: authenticated caller whose role is one of ``roles``."""
    def dep(current: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        require_role(current, list(roles))
        return current
    return dep


def ensure_owner_or_admin(user: Dict[str, Any], author_id: Optional[ObjectId], action: str):
    if user.get("role") == Role.ADMIN.value:
        return
    if author_id is None or str(author_id) != user.get("id"):
        raise ForbiddenError(f"Not authorized to {action}")


def user_oid(user: Dict[str, Any]) -> ObjectId:
    return ObjectId(user["id"])


def _auth_response(db: Database, user: Dict[str, Any]) -> Dict[str, Any]:
    token = create_session(db, user["_id"])
    return {"success": True, "token": token, "data": to_public(user)}


# Auth routes

@router.post("/register", status_code=201)
def register(body: RegisterBody, current=Depends(get_optional_user), db: Database = Depends(get_db)):
    # Students can self-register. Faculty and Admin accounts are created by an admin
    if body.role != Role.STUDENT:
        if not current or current.get("role") != Role.ADMIN.value:
            raise ForbiddenError(f"Only admin can create {body.role.value} accounts")
    email = str(body.email).lower()
    if db["user"].find_one({"email": email}):
        raise ValidationError("Email already registered")
    user = User(
        name=body.name,
        email=email,
        password_hash=hash_password(body.password),
        role=body.role,
        department=body.department,
        year=body.year,
    )
    try:
        doc = create_document(db, "user", user)
    except DuplicateKeyError:
        raise ValidationError("Email already registered")
    logger.info(f"[Auth] Registered {doc['role']} account {doc['_id']}")
    return _auth_response(db, doc)


@router.post("/login")
def login(body: LoginBody, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": str(body.email).lower()})
    if not user or user.get("password_hash") != hash_password(body.password):
        logger.info("[Auth] Failed login attempt")
        raise UnauthenticatedError("Invalid credentials")
    if not user.get("is_active", True):
        raise ForbiddenError("Account disabled")
    return _auth_response(db, user)


@router.get("/me")
def me(current=Depends(get_current_user)):
    return {"success": True, "data": current}


@router.put("/profile")
def update_profile(body: ProfileUpdateBody, current=Depends(get_current_user), db: Database = Depends(get_db)):
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if "year" in changes and current.get("role") != Role.STUDENT.value:
        changes.pop("year")
    if changes:
        changes["updated_at"] = now()
        db["user"].update_one({"_id": user_oid(current)}, {"$set": changes})
    user = db["user"].find_one({"_id": user_oid(current)})
    return {"success": True, "data": to_public(user)}


@router.post("/logout")
def logout(authorization: Optional[str] = Header(None), current=Depends(get_current_user), db: Database = Depends(get_db)):
    db["session"].delete_one({"token": _bearer_token(authorization)})
    return {"success": True, "message": "Logged out"}
