"""Engagement messaging and user notification routes."""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..core.container import ServiceContainer
from ..core.dependencies import AdminDep, ContainerDep, CurrentUserDep, require_permission
from ..core.errors import NotFoundError
from ..models import Message, User
from ..models import derived
from ..schemas.messages import (
    MessageCreate,
    MessageEdit,
    MessageResponse,
    NotificationCreate,
    NotificationResponse,
)

router = APIRouter(tags=["messages"])

can_view = Depends(require_permission("engagement.view", scope="engagement_id"))


async def _visible_message(
    message_id: str, current_user: User, container: ServiceContainer
) -> Message:
    message = await container.messaging.get_message(message_id)
    allowed = await container.permissions.has_permission(
        current_user.user_id, "engagement.view", {"engagement_id": message.engagement_id}
    )
    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Permission required: engagement.view",
        )
    return message


def _require_sender(message: Message, current_user: User) -> None:
    if message.sender != current_user.email and not derived.is_admin(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the sender can change a message",
        )


# =============================================================================
# ENGAGEMENT MESSAGES
# =============================================================================


@router.post(
    "/engagements/{engagement_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[can_view],
)
async def create_message(
    engagement_id: str,
    request: MessageCreate,
    current_user: CurrentUserDep,
    container: ContainerDep,
):
    """Post a draft or sent message as the caller."""
    if request.sender != current_user.email and not derived.is_admin(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Messages can only be sent as yourself",
        )
    data = request.model_dump()
    data["engagement_id"] = engagement_id
    return await container.messaging.create_message(data)


@router.get(
    "/engagements/{engagement_id}/messages",
    response_model=list[MessageResponse],
    dependencies=[can_view],
)
async def engagement_messages(
    engagement_id: str,
    container: ContainerDep,
    control_id: str | None = None,
):
    if control_id:
        return await container.messaging.control_messages(engagement_id, control_id)
    return await container.messaging.engagement_messages(engagement_id)


@router.get(
    "/engagements/{engagement_id}/messages/search",
    response_model=list[MessageResponse],
    dependencies=[can_view],
)
async def search_messages(
    engagement_id: str,
    container: ContainerDep,
    q: str = Query(..., min_length=1),
):
    return await container.messaging.search(q, engagement_id=engagement_id)


@router.get(
    "/engagements/{engagement_id}/mentions/{handle}",
    response_model=list[MessageResponse],
    dependencies=[can_view],
)
async def mentions(engagement_id: str, handle: str, container: ContainerDep):
    return await container.messaging.mentions_of(handle, engagement_id=engagement_id)


# =============================================================================
# MESSAGES
# =============================================================================


@router.get("/messages/unread", response_model=list[MessageResponse])
async def unread_messages(current_user: CurrentUserDep, container: ContainerDep):
    """Direct messages and broadcasts the caller has not read."""
    return await container.messaging.unread_for_user(current_user.email)


@router.get("/messages/{message_id}", response_model=MessageResponse)
async def get_message(message_id: str, current_user: CurrentUserDep, container: ContainerDep):
    return await _visible_message(message_id, current_user, container)


@router.get("/messages/{message_id}/thread", response_model=list[MessageResponse])
async def get_thread(message_id: str, current_user: CurrentUserDep, container: ContainerDep):
    message = await _visible_message(message_id, current_user, container)
    return await container.messaging.thread(message.thread_id or message.id)


@router.post("/messages/{message_id}/send", response_model=MessageResponse)
async def send_message(message_id: str, current_user: CurrentUserDep, container: ContainerDep):
    message = await _visible_message(message_id, current_user, container)
    _require_sender(message, current_user)
    return await container.messaging.send(message_id)


@router.post("/messages/{message_id}/read", response_model=MessageResponse)
async def mark_read(message_id: str, current_user: CurrentUserDep, container: ContainerDep):
    await _visible_message(message_id, current_user, container)
    return await container.messaging.mark_read(message_id, current_user.email)


@router.patch("/messages/{message_id}", response_model=MessageResponse)
async def edit_message(
    message_id: str,
    request: MessageEdit,
    current_user: CurrentUserDep,
    container: ContainerDep,
):
    message = await _visible_message(message_id, current_user, container)
    _require_sender(message, current_user)
    return await container.messaging.edit(message_id, request.message, request.edited_by)


@router.delete("/messages/{message_id}", response_model=MessageResponse)
async def delete_message(message_id: str, current_user: CurrentUserDep, container: ContainerDep):
    message = await _visible_message(message_id, current_user, container)
    _require_sender(message, current_user)
    return await container.messaging.delete(message_id)


# =============================================================================
# NOTIFICATIONS
# =============================================================================


@router.post(
    "/notifications",
    response_model=NotificationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_notification(
    request: NotificationCreate,
    current_user: AdminDep,
    container: ContainerDep,
):
    return await container.messaging.notify(request)


@router.get("/notifications", response_model=list[NotificationResponse])
async def list_notifications(
    current_user: CurrentUserDep,
    container: ContainerDep,
    unread_only: bool = False,
):
    if unread_only:
        return await container.messaging.unread_notifications(current_user.user_id)
    return await container.messaging.notifications(current_user.user_id)


@router.post("/notifications/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: str,
    current_user: CurrentUserDep,
    container: ContainerDep,
):
    notification = await container.store.find_notification_by_id(notification_id)
    if notification is None or notification.user_id != current_user.user_id:
        raise NotFoundError("Notification", notification_id)
    return await container.messaging.mark_notification_read(notification_id)
