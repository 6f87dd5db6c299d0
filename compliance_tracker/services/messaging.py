"""Messaging service: engagement conversations and per-user notifications."""

import logging
from datetime import datetime

from ..core.errors import NotFoundError, ValidationError
from ..models import Message, MessageStatus, Notification, utcnow
from ..models import derived
from ..schemas.messages import MessageCreate, NotificationCreate
from ..validators import extract_mentions
from .persistence import PersistenceManager

logger = logging.getLogger(__name__)


class MessagingManager:
    """Drafts, sends, reads and threads messages; tracks notifications."""

    def __init__(self, store: PersistenceManager):
        self.store = store

    # =========================================================================
    # MESSAGES
    # =========================================================================

    async def create_message(self, data: MessageCreate | dict) -> Message:
        """Store a new draft or sent message.

        Mentions are taken from the body and a reply joins the thread of
        the message it answers.
        """
        payload = self.store.validate(MessageCreate, data)
        if payload.reply_to:
            parent = await self.get_message(payload.reply_to)
            payload.thread_id = parent.thread_id or parent.id
        message = await self.store.create_message(payload)
        logger.info(
            f"Created {message.status} message {message.id} in engagement {message.engagement_id}"
        )
        return message

    async def get_message(self, message_id: str) -> Message:
        message = await self.store.find_message_by_id(message_id)
        if message is None:
            raise NotFoundError("Message", message_id)
        return message

    async def send(self, message_id: str) -> Message:
        """Send a draft. Messages already past draft are returned unchanged."""
        message = await self.get_message(message_id)
        if derived.state_value(message.status) != MessageStatus.DRAFT.value:
            return message
        meta = {**(message.meta or {}), "sent": utcnow()}
        message = await self.store.update_message(
            message_id, {"status": MessageStatus.SENT.value, "meta": meta}
        )
        logger.info(f"Sent message {message_id}")
        return message

    async def mark_read(self, message_id: str, reader: str) -> Message:
        """Record a read receipt for ``reader`` once.

        A direct message read by its recipient moves from sent to read.
        """
        message = await self.get_message(message_id)
        if derived.was_read_by(message, reader):
            return message

        meta = dict(message.meta or {})
        meta["read"] = [*meta.get("read", []), {"by": reader, "on": utcnow()}]
        values: dict = {"meta": meta}
        if (
            message.recipient == reader
            and derived.state_value(message.status) == MessageStatus.SENT.value
        ):
            values["status"] = MessageStatus.READ.value
        return await self.store.update_message(message_id, values)

    async def edit(self, message_id: str, new_message: str, edited_by: str) -> Message:
        message = await self.get_message(message_id)
        if derived.state_value(message.status) == MessageStatus.DELETED.value:
            raise ValidationError.for_field("status", "Deleted messages cannot be edited")
        new_message = new_message.strip()
        meta = {
            **(message.meta or {}),
            "edited": True,
            "edited_at": utcnow(),
            "edited_by": edited_by,
        }
        message = await self.store.update_message(
            message_id,
            {"message": new_message, "mentions": extract_mentions(new_message), "meta": meta},
        )
        logger.info(f"Message {message_id} edited by {edited_by}")
        return message

    async def delete(self, message_id: str) -> Message:
        """Soft delete. The row stays but its body is hidden on output."""
        await self.get_message(message_id)
        message = await self.store.update_message(
            message_id, {"status": MessageStatus.DELETED.value}
        )
        logger.info(f"Deleted message {message_id}")
        return message

    async def engagement_messages(
        self, engagement_id: str, include_deleted: bool = False
    ) -> list[Message]:
        return await self.store.list_messages(
            engagement_id=engagement_id, include_deleted=include_deleted
        )

    async def control_messages(
        self, engagement_id: str, control_id: str, include_deleted: bool = False
    ) -> list[Message]:
        return await self.store.list_messages(
            engagement_id=engagement_id, control_id=control_id, include_deleted=include_deleted
        )

    async def thread(self, thread_id: str) -> list[Message]:
        """Messages of a thread, oldest first, starting with the root message."""
        replies = await self.store.list_messages(thread_id=thread_id, oldest_first=True)
        root = await self.store.find_message_by_id(thread_id)
        if root is None or derived.state_value(root.status) == MessageStatus.DELETED.value:
            return replies
        return [root, *[m for m in replies if m.id != root.id]]

    async def unread_for_user(self, user: str) -> list[Message]:
        """Direct messages still unread plus broadcasts ``user`` has not read."""
        unread = []
        for message in await self.store.list_sent_messages_for(user):
            if derived.is_broadcast(message) and derived.was_read_by(message, user):
                continue
            unread.append(message)
        return unread

    async def search(self, term: str, engagement_id: str | None = None) -> list[Message]:
        term = term.strip()
        if not term:
            raise ValidationError.for_field("q", "Search term is required")
        return await self.store.search_messages(term, engagement_id=engagement_id)

    async def mentions_of(self, handle: str, engagement_id: str | None = None) -> list[Message]:
        """Messages mentioning ``@handle``."""
        mention = handle if handle.startswith("@") else f"@{handle}"
        messages = await self.store.list_messages(engagement_id=engagement_id)
        return [m for m in messages if mention in (m.mentions or [])]

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    async def notify(self, data: NotificationCreate | dict) -> Notification:
        notification = await self.store.create_notification(data)
        logger.info(f"Created {notification.type} notification for {notification.user_id}")
        return notification

    async def mark_notification_read(self, notification_id: str) -> Notification:
        notification = await self.store.find_notification_by_id(notification_id)
        if notification is None:
            raise NotFoundError("Notification", notification_id)
        if notification.read:
            return notification
        return await self.store.update_notification(
            notification_id, {"read": True, "read_at": utcnow()}
        )

    async def unread_notifications(
        self, user_id: str, now: datetime | None = None
    ) -> list[Notification]:
        """Unread notifications that have not expired yet, newest first."""
        now = now or utcnow()
        return [
            n
            for n in await self.store.list_notifications(user_id, unread_only=True)
            if derived.is_notification_live(n, now)
        ]

    async def notifications(self, user_id: str) -> list[Notification]:
        return await self.store.list_notifications(user_id)

    async def health_check(self) -> dict:
        store_health = await self.store.health_check()
        return {
            "status": "healthy" if store_health["connected"] else "unhealthy",
            "initialized": store_health["initialized"],
        }
