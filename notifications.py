from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, Query
from pymongo import ReturnDocument
from pymongo.database import Database

from auth import get_current_user, user_oid
from config import settings
from database import DELETED_USER_ID, create_document, get_db, paginate, parse_object_id, populate, to_public
from errors import NotFoundError
from logging_config import logger
from realtime import ConnectionRegistry, get_registry
from schemas import Notification, NotificationType

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


class NotificationDispatcher:
    """Persists notifications and pushes a live copy to connected recipients."""

    def __init__(self, db: Database, registry: ConnectionRegistry):
        self.db = db
        self.registry = registry
        self.collection = db["notification"]

    def _present(self, docs: List[dict]) -> List[dict]:
        docs = populate(self.db, docs, "sender", fields=("name", "profile_picture"))
        docs = populate(self.db, docs, "post", fields=("title",), collection_name="post")
        return [to_public(d) for d in docs]

    def create(
        self,
        recipient: ObjectId,
        type: NotificationType,
        message: str,
        sender: Optional[ObjectId] = None,
        post: Optional[ObjectId] = None,
        comment: Optional[ObjectId] = None,
    ) -> Optional[Dict[str, Any]]:
        # Content of removed accounts has nobody to notify
        if recipient == DELETED_USER_ID:
            return None
        notification = Notification(
            recipient=recipient,
            sender=sender,
            type=type,
            post=post,
            comment=comment,
            message=message,
        )
        doc = create_document(self.db, "notification", notification)
        payload = self._present([dict(doc)])[0]
        if self.registry.push(str(recipient), "notification", payload):
            logger.info(f"[Notify] Pushed {payload['type']} notification to {recipient}")
        return payload

    def announce(self, event: str, data: Any) -> None:
        """Best-effort broadcast of forum activity to every live connection."""
        self.registry.broadcast(event, data)

    def list_for(self, user: Dict[str, Any], page: int, limit: int, is_read: Optional[bool] = None) -> Dict[str, Any]:
        recipient = user_oid(user)
        query: Dict[str, Any] = {"recipient": recipient}
        if is_read is not None:
            query["is_read"] = is_read
        items, pagination = paginate(self.collection, query, page, limit)
        unread = self.collection.count_documents({"recipient": recipient, "is_read": False})
        return {
            "success": True,
            "data": self._present(items),
            "unread_count": unread,
            "pagination": pagination,
        }

    def mark_read(self, user: Dict[str, Any], notification_id: str) -> Dict[str, Any]:
        # Scoped to the recipient: someone else's notification is simply not found
        _id = parse_object_id(notification_id, "Notification")
        doc = self.collection.find_one_and_update(
            {"_id": _id, "recipient": user_oid(user)},
            {"$set": {"is_read": True}},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            raise NotFoundError("Notification")
        return self._present([doc])[0]

    def mark_all_read(self, user: Dict[str, Any]) -> int:
        result = self.collection.update_many(
            {"recipient": user_oid(user), "is_read": False},
            {"$set": {"is_read": True}},
        )
        return result.modified_count

    def delete(self, user: Dict[str, Any], notification_id: str) -> None:
        _id = parse_object_id(notification_id, "Notification")
        result = self.collection.delete_one({"_id": _id, "recipient": user_oid(user)})
        if result.deleted_count == 0:
            raise NotFoundError("Notification")


def get_dispatcher(db: Database = Depends(get_db), registry: ConnectionRegistry = Depends(get_registry)) -> NotificationDispatcher:
    return NotificationDispatcher(db, registry)


@router.get("")
def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.LIST_PAGE_LIMIT, ge=1, le=settings.MAX_PAGE_LIMIT),
    is_read: Optional[bool] = None,
    current=Depends(get_current_user),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    return dispatcher.list_for(current, page, limit, is_read)


@router.put("/read-all")
def mark_all_notifications_read(current=Depends(get_current_user), dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
    modified = dispatcher.mark_all_read(current)
    return {"success": True, "message": "All notifications marked as read", "modified": modified}


@router.put("/{notification_id}/read")
def mark_notification_read(notification_id: str, current=Depends(get_current_user), dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
    return {"success": True, "data": dispatcher.mark_read(current, notification_id)}


@router.delete("/{notification_id}")
def delete_notification(notification_id: str, current=Depends(get_current_user), dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
    dispatcher.delete(current, notification_id)
    return {"success": True, "message": "Notification deleted successfully"}
