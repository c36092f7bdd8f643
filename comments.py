from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, Query
from pymongo.database import Database

from auth import ensure_owner_or_admin, get_current_user, get_optional_user, require_roles, user_oid
from config import settings
from database import (
    comment_collection,
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
from errors import NotFoundError
from logging_config import logger
from notifications import NotificationDispatcher, get_dispatcher
from schemas import Comment, CommentCreateBody, CommentUpdateBody, NotificationType, Role, Section

router = APIRouter(prefix="/api/comments", tags=["comments"])


class CommentManager:
    def __init__(self, db: Database, dispatcher: NotificationDispatcher):
        self.db = db
        self.comments = comment_collection(db)
        self.posts = post_collection(db)
        self.dispatcher = dispatcher

    def present(self, docs: List[dict]) -> List[dict]:
        docs = populate(self.db, docs, "author")
        docs = populate(self.db, docs, "verified_by", fields=("name", "role"))
        return [to_public(d) for d in docs]

    def _load(self, comment_id: str) -> dict:
        comment = self.comments.find_one({"_id": parse_object_id(comment_id, "Comment")})
        if not comment:
            raise NotFoundError("Comment")
        return comment

    def sync_comment_count(self, post_id: ObjectId) -> int:
        """
        Store the number of live comments on the post.

        The count is taken fresh each time rather than incremented. If a
        concurrent create or delete changes it between the count and the write,
        the loop writes again with the newer value.
        """
        count = self.comments.count_documents({"post": post_id})
        for _ in range(3):
            self.db["post"].update_one({"_id": post_id}, {"$set": {"comment_count": count}})
            latest = self.comments.count_documents({"post": post_id})
            if latest == count:
                break
            count = latest
        return count

    def list_comments(self, post_id: str, page: int, limit: int) -> Dict[str, Any]:
        query = {"post": parse_object_id(post_id, "Post")}
        items, pagination = paginate(self.comments, query, page, limit)
        return {"success": True, "data": self.present(items), "pagination": pagination}

    def create_comment(self, post_id: str, body: CommentCreateBody, user: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        post = self.posts.find_one({"_id": parse_object_id(post_id, "Post")})
        if not post:
            raise NotFoundError("Post")

        is_anonymous = post.get("section") == Section.ANONYMOUS.value or body.is_anonymous or user is None
        comment = Comment(
            post=post["_id"],
            content=body.content,
            is_anonymous=is_anonymous,
            author=None if is_anonymous else user_oid(user),
        )
        doc = create_document(self.db, "comment", comment)
        self.sync_comment_count(post["_id"])

        author = post.get("author")
        if author and user and author != user_oid(user):
            commenter = "Someone" if is_anonymous else user["name"]
            self.dispatcher.create(
                recipient=author,
                sender=None if is_anonymous else user_oid(user),
                type=NotificationType.COMMENT,
                post=post["_id"],
                comment=doc["_id"],
                message=f"{commenter} commented on your post",
            )

        created = self.present([doc])[0]
        self.dispatcher.announce("new_comment", {"post_id": str(post["_id"]), "comment": created})
        return created

    def update_comment(self, comment_id: str, body: CommentUpdateBody, user: Dict[str, Any]) -> Dict[str, Any]:
        comment = self._load(comment_id)
        ensure_owner_or_admin(user, comment.get("author"), "update this comment")
        doc = self.comments.find_one_and_update(
            {"_id": comment["_id"]},
            {"$set": {"content": body.content, "updated_at": now()}},
        )
        if not doc:
            raise NotFoundError("Comment")
        return self.present([doc])[0]

    def delete_comment(self, comment_id: str, user: Dict[str, Any]) -> None:
        comment = self.comments.with_deleted().find_one({"_id": parse_object_id(comment_id, "Comment")})
        if not comment:
            raise NotFoundError("Comment")
        ensure_owner_or_admin(user, comment.get("author"), "delete this comment")
        self.comments.soft_delete(comment["_id"])
        self.sync_comment_count(comment["post"])
        logger.info(f"[Comments] Comment {comment['_id']} deleted by {user['id']}")

    def toggle_upvote(self, comment_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
        # Comment upvotes never notify the author
        doc, _ = toggle_upvote(self.comments, parse_object_id(comment_id, "Comment"), user_oid(user))
        if doc is None:
            raise NotFoundError("Comment")
        return self.present([doc])[0]

    def toggle_verify(self, comment_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
        comment = self._load(comment_id)
        verified = not comment.get("is_verified", False)
        doc = self.comments.find_one_and_update(
            {"_id": comment["_id"]},
            {"$set": {
                "is_verified": verified,
                "verified_by": user_oid(user) if verified else None,
                "updated_at": now(),
            }},
        )
        if not doc:
            raise NotFoundError("Comment")
        return self.present([doc])[0]


def get_comment_manager(db: Database = Depends(get_db), dispatcher: NotificationDispatcher = Depends(get_dispatcher)) -> CommentManager:
    return CommentManager(db, dispatcher)


@router.get("/{post_id}")
def list_comments(
    post_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.LIST_PAGE_LIMIT, ge=1, le=settings.MAX_PAGE_LIMIT),
    manager: CommentManager = Depends(get_comment_manager),
):
    return manager.list_comments(post_id, page, limit)


@router.post("/{post_id}", status_code=201)
def create_comment(post_id: str, body: CommentCreateBody, current=Depends(get_optional_user), manager: CommentManager = Depends(get_comment_manager)):
    return {"success": True, "data": manager.create_comment(post_id, body, current)}


@router.put("/{comment_id}")
def update_comment(comment_id: str, body: CommentUpdateBody, current=Depends(get_current_user), manager: CommentManager = Depends(get_comment_manager)):
    return {"success": True, "data": manager.update_comment(comment_id, body, current)}


@router.delete("/{comment_id}")
def delete_comment(comment_id: str, current=Depends(get_current_user), manager: CommentManager = Depends(get_comment_manager)):
    manager.delete_comment(comment_id, current)
    return {"success": True, "message": "Comment deleted successfully"}


@router.post("/{comment_id}/upvote")
def upvote_comment(comment_id: str, current=Depends(get_current_user), manager: CommentManager = Depends(get_comment_manager)):
    return {"success": True, "data": manager.toggle_upvote(comment_id, current)}


@router.put("/{comment_id}/verify")
def verify_comment(
    comment_id: str,
    current=Depends(require_roles(Role.ADMIN.value, Role.FACULTY.value)),
    manager: CommentManager = Depends(get_comment_manager),
):
    return {"success": True, "data": manager.toggle_verify(comment_id, current)}
