from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pymongo import DESCENDING
from pymongo.database import Database

from auth import ensure_owner_or_admin, get_current_user, get_optional_user, require_roles, user_oid
from config import settings
from database import (
    NEWEST_FIRST,
    create_document,
    get_db,
    now,
    paginate,
    parse_object_id,
    populate,
    post_collection,
    to_public,
    toggle_upvote,
)
from errors import ForbiddenError, NotFoundError
from logging_config import logger
from notifications import NotificationDispatcher, get_dispatcher
from schemas import (
    ELEVATED_ROLES,
    Category,
    NotificationType,
    Post,
    PostCreateBody,
    PostUpdateBody,
    PostVerifyBody,
    Role,
    Section,
)

router = APIRouter(prefix="/api/posts", tags=["posts"])

PINNED_THEN_NEWEST = [("is_pinned", DESCENDING)] + NEWEST_FIRST


class PostManager:
    def __init__(self, db: Database, dispatcher: NotificationDispatcher):
        self.db = db
        self.posts = post_collection(db)
        self.dispatcher = dispatcher

    def present(self, docs: List[dict]) -> List[dict]:
        docs = populate(self.db, docs, "author")
        docs = populate(self.db, docs, "verified_by", fields=("name", "role"))
        return [to_public(d) for d in docs]

    def _load(self, post_id: str) -> dict:
        post = self.posts.find_one({"_id": parse_object_id(post_id, "Post")})
        if not post:
            raise NotFoundError("Post")
        return post

    def list_posts(self, page: int, limit: int, section: Optional[str] = None, category: Optional[str] = None, tags: Optional[str] = None) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if section:
            query["section"] = section
        if category:
            query["category"] = category
        if tags:
            wanted = [t.strip() for t in tags.split(",") if t.strip()]
            if wanted:
                query["tags"] = {"$in": wanted}
        items, pagination = paginate(self.posts, query, page, limit, sort=PINNED_THEN_NEWEST)
        return {"success": True, "data": self.present(items), "pagination": pagination}

    def get_post(self, post_id: str) -> Dict[str, Any]:
        return self.present([self._load(post_id)])[0]

    def create_post(self, body: PostCreateBody, user: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if body.section == Section.OFFICIAL and (not user or user.get("role") not in ELEVATED_ROLES):
            raise ForbiddenError("Only Admin and Faculty can post in Official section")

        # Without a caller there is nobody to attribute the post to
        is_anonymous = body.section == Section.ANONYMOUS or body.is_anonymous or user is None
        post = Post(
            title=body.title,
            content=body.content,
            section=body.section,
            category=body.category,
            tags=body.tags,
            attachments=body.attachments,
            is_anonymous=is_anonymous,
            author=None if is_anonymous else user_oid(user),
        )
        doc = create_document(self.db, "post", post)
        logger.info(f"[Posts] Created {doc['section']} post {doc['_id']}")
        created = self.present([doc])[0]
        self.dispatcher.announce("new_post", created)
        return created

    def update_post(self, post_id: str, body: PostUpdateBody, user: Dict[str, Any]) -> Dict[str, Any]:
        post = self._load(post_id)
        ensure_owner_or_admin(user, post.get("author"), "update this post")
        changes = body.model_dump(exclude_unset=True, exclude_none=True, mode="json")
        changes["updated_at"] = now()
        doc = self.posts.find_one_and_update({"_id": post["_id"]}, {"$set": changes})
        if not doc:
            raise NotFoundError("Post")
        return self.present([doc])[0]

    def delete_post(self, post_id: str, user: Dict[str, Any]) -> None:
        # Comments stay attached; they become unreachable with the post
        post = self.posts.with_deleted().find_one({"_id": parse_object_id(post_id, "Post")})
        if not post:
            raise NotFoundError("Post")
        ensure_owner_or_admin(user, post.get("author"), "delete this post")
        self.posts.soft_delete(post["_id"])
        logger.info(f"[Posts] Post {post['_id']} deleted by {user['id']}")

    def toggle_upvote(self, post_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
        voter = user_oid(user)
        doc, added = toggle_upvote(self.posts, parse_object_id(post_id, "Post"), voter)
        if doc is None:
            raise NotFoundError("Post")
        if added and doc.get("author") and doc["author"] != voter:
            self.dispatcher.create(
                recipient=doc["author"],
                sender=voter,
                type=NotificationType.UPVOTE,
                post=doc["_id"],
                message=f"{user['name']} upvoted your post",
            )
        return self.present([doc])[0]

    def verify_post(self, post_id: str, body: PostVerifyBody, user: Dict[str, Any]) -> Dict[str, Any]:
        post = self._load(post_id)
        doc = self.posts.find_one_and_update(
            {"_id": post["_id"]},
            {"$set": {
                "is_verified": body.is_verified,
                "is_misinformation": body.is_misinformation,
                "verified_by": user_oid(user),
                "updated_at": now(),
            }},
        )
        if not doc:
            raise NotFoundError("Post")
        if body.is_verified and not post.get("is_verified") and doc.get("author"):
            self.dispatcher.create(
                recipient=doc["author"],
                sender=user_oid(user),
                type=NotificationType.VERIFIED,
                post=doc["_id"],
                message=f"Your post has been verified by {user['name']}",
            )
        logger.info(f"[Posts] Post {doc['_id']} verification set to {body.is_verified} by {user['id']}")
        return self.present([doc])[0]

    def toggle_pin(self, post_id: str) -> Dict[str, Any]:
        post = self._load(post_id)
        doc = self.posts.find_one_and_update(
            {"_id": post["_id"]},
            {"$set": {"is_pinned": not post.get("is_pinned", False), "updated_at": now()}},
        )
        if not doc:
            raise NotFoundError("Post")
        return self.present([doc])[0]


def get_post_manager(db: Database = Depends(get_db), dispatcher: NotificationDispatcher = Depends(get_dispatcher)) -> PostManager:
    return PostManager(db, dispatcher)


@router.get("")
def list_posts(
    section: Optional[Section] = None,
    category: Optional[Category] = None,
    tags: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_LIMIT, ge=1, le=settings.MAX_PAGE_LIMIT),
    manager: PostManager = Depends(get_post_manager),
):
    return manager.list_posts(page, limit, section=section.value if section else None, category=category.value if category else None, tags=tags)


@router.get("/{post_id}")
def get_post(post_id: str, manager: PostManager = Depends(get_post_manager)):
    return {"success": True, "data": manager.get_post(post_id)}


@router.post("", status_code=201)
def create_post(body: PostCreateBody, current=Depends(get_optional_user), manager: PostManager = Depends(get_post_manager)):
    return {"success": True, "data": manager.create_post(body, current)}


@router.put("/{post_id}")
def update_post(post_id: str, body: PostUpdateBody, current=Depends(get_current_user), manager: PostManager = Depends(get_post_manager)):
    return {"success": True, "data": manager.update_post(post_id, body, current)}


@router.delete("/{post_id}")
def delete_post(post_id: str, current=Depends(get_current_user), manager: PostManager = Depends(get_post_manager)):
    manager.delete_post(post_id, current)
    return {"success": True, "message": "Post deleted successfully"}


@router.post("/{post_id}/upvote")
def upvote_post(post_id: str, current=Depends(get_current_user), manager: PostManager = Depends(get_post_manager)):
    return {"success": True, "data": manager.toggle_upvote(post_id, current)}


@router.put("/{post_id}/verify")
def verify_post(
    post_id: str,
    body: PostVerifyBody,
    current=Depends(require_roles(Role.ADMIN.value, Role.FACULTY.value)),
    manager: PostManager = Depends(get_post_manager),
):
    return {"success": True, "data": manager.verify_post(post_id, body, current)}


@router.put("/{post_id}/pin")
def pin_post(post_id: str, current=Depends(require_roles(Role.ADMIN.value)), manager: PostManager = Depends(get_post_manager)):
    return {"success": True, "data": manager.toggle_pin(post_id)}
