import re
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pymongo.database import Database

from auth import require_roles
from config import settings
from database import (
    DELETED_USER_ID,
    NEWEST_FIRST,
    comment_collection,
    get_db,
    now,
    paginate,
    parse_object_id,
    populate,
    post_collection,
    to_public,
)
from errors import NotFoundError
from logging_config import logger
from schemas import AdminUserUpdateBody, Role, Section

router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(require_roles(Role.ADMIN.value))],
)


class AdminService:
    """Moderation and dashboard queries. Callers are already checked for the Admin role."""

    def __init__(self, db: Database):
        self.db = db
        self.users = db["user"]
        self.posts = post_collection(db)
        self.comments = comment_collection(db)

    def list_users(self, page: int, limit: int, role: Optional[str] = None, search: Optional[str] = None) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if role:
            query["role"] = role
        if search:
            pattern = {"$regex": re.escape(search), "$options": "i"}
            query["$or"] = [{"name": pattern}, {"email": pattern}]
        items, pagination = paginate(self.users, query, page, limit)
        return {"success": True, "data": [to_public(u) for u in items], "pagination": pagination}

    def list_posts(self, page: int, limit: int, section: Optional[str] = None, include_deleted: bool = False) -> Dict[str, Any]:
        posts = self.posts.with_deleted() if include_deleted else self.posts
        query: Dict[str, Any] = {}
        if section:
            query["section"] = section
        items, pagination = paginate(posts, query, page, limit)
        items = populate(self.db, items, "author", fields=("name", "email", "role", "department"))
        return {"success": True, "data": [to_public(p) for p in items], "pagination": pagination}

    def stats(self) -> Dict[str, Any]:
        users_by_role = {
            row["_id"]: row["count"]
            for row in self.users.aggregate([{"$group": {"_id": "$role", "count": {"$sum": 1}}}])
        }
        posts_by_section = {
            row["_id"]: row["count"]
            for row in self.posts.aggregate([{"$group": {"_id": "$section", "count": {"$sum": 1}}}])
        }
        recent = list(self.posts.find({}).sort(NEWEST_FIRST).limit(5))
        recent = populate(self.db, recent, "author", fields=("name", "email", "role"))
        return {
            "total_users": self.users.count_documents({}),
            "total_posts": self.posts.count_documents({}),
            "total_comments": self.comments.count_documents({}),
            "users_by_role": users_by_role,
            "posts_by_section": posts_by_section,
            "recent_posts": [to_public(p) for p in recent],
        }

    def update_user(self, user_id: str, body: AdminUserUpdateBody, admin: Dict[str, Any]) -> Dict[str, Any]:
        _id = parse_object_id(user_id, "User")
        changes = body.model_dump(exclude_none=True, mode="json")
        user = self.users.find_one({"_id": _id})
        if not user:
            raise NotFoundError("User")
        if changes:
            changes["updated_at"] = now()
            self.users.update_one({"_id": _id}, {"$set": changes})
            if changes.get("is_active") is False:
                self.db["session"].delete_many({"user_id": _id})
            logger.info(f"[Admin] {admin['id']} updated user {_id}: {sorted(changes)}")
        return to_public(self.users.find_one({"_id": _id}))

    def delete_user(self, user_id: str, admin: Dict[str, Any]) -> None:
        """
        Hard-delete an account.

        Posts, comments and verifications by the user are reassigned to the
        deleted-user placeholder so no reference dangles; the user's sessions
        and received notifications go with the account.
        """
        _id = parse_object_id(user_id, "User")
        result = self.users.delete_one({"_id": _id})
        if result.deleted_count == 0:
            raise NotFoundError("User")
        for name in ("post", "comment"):
            self.db[name].update_many({"author": _id}, {"$set": {"author": DELETED_USER_ID}})
            self.db[name].update_many({"verified_by": _id}, {"$set": {"verified_by": DELETED_USER_ID}})
        self.db["session"].delete_many({"user_id": _id})
        self.db["notification"].delete_many({"recipient": _id})
        logger.info(f"[Admin] {admin['id']} deleted user {_id}")


def get_admin_service(db: Database = Depends(get_db)) -> AdminService:
    return AdminService(db)


@router.get("/users")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.LIST_PAGE_LIMIT, ge=1, le=settings.MAX_PAGE_LIMIT),
    role: Optional[Role] = None,
    search: Optional[str] = None,
    service: AdminService = Depends(get_admin_service),
):
    return service.list_users(page, limit, role=role.value if role else None, search=search)


@router.put("/users/{user_id}")
def update_user(
    user_id: str,
    body: AdminUserUpdateBody,
    current=Depends(require_roles(Role.ADMIN.value)),
    service: AdminService = Depends(get_admin_service),
):
    return {"success": True, "data": service.update_user(user_id, body, current)}


@router.delete("/users/{user_id}")
def delete_user(user_id: str, current=Depends(require_roles(Role.ADMIN.value)), service: AdminService = Depends(get_admin_service)):
    service.delete_user(user_id, current)
    return {"success": True, "message": "User deleted successfully"}


@router.get("/stats")
def get_stats(service: AdminService = Depends(get_admin_service)):
    return {"success": True, "data": service.stats()}


@router.get("/posts")
def list_posts(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.LIST_PAGE_LIMIT, ge=1, le=settings.MAX_PAGE_LIMIT),
    section: Optional[Section] = None,
    include_deleted: bool = False,
    service: AdminService = Depends(get_admin_service),
):
    return service.list_posts(page, limit, section=section.value if section else None, include_deleted=include_deleted)
