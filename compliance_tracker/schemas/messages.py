"""Message and notification schemas."""

from datetime import datetime
from typing import Literal

from pydantic import AliasChoices, Field, field_validator, model_validator

from ..models import MessagePriority, MessageStatus, MessageType, NotificationType, new_id
from ..validators import MAX_MENTIONS, extract_mentions, is_valid_mention
from .base import EmailAddress, PatchModel, TrackerBaseModel, TimestampMixin

DELETED_PLACEHOLDER = "[Message deleted]"


class Attachment(TrackerBaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    type: str | None = None
    size: int | None = Field(default=None, ge=0)
    url: str | None = None


class ReadReceipt(TrackerBaseModel):
    by: EmailAddress
    on: datetime


class MessageMeta(TrackerBaseModel):
    sent: datetime | None = None
    read: list[ReadReceipt] = Field(default_factory=list)
    edited: bool = False
    edited_at: datetime | None = None
    edited_by: str | None = None


class MessageFlags(TrackerBaseModel):
    important: bool = False
    requires_response: bool = False
    response_received: bool = False


def _sender_field(**kwargs):
    return Field(
        validation_alias=AliasChoices("sender", "from"),
        serialization_alias="from",
        **kwargs,
    )


def _recipient_field(**kwargs):
    return Field(
        validation_alias=AliasChoices("recipient", "to"),
        serialization_alias="to",
        **kwargs,
    )


class MessageCreate(TrackerBaseModel):
    """New message. Mentions are derived from the body; replies inherit a thread."""

    engagement_id: str = Field(..., min_length=1)
    control_id: str | None = None
    sender: EmailAddress = _sender_field()
    recipient: EmailAddress | None = _recipient_field(default=None)
    message: str = Field(..., min_length=1, max_length=10000)
    mentions: list[str] = Field(default_factory=list, max_length=MAX_MENTIONS)
    status: Literal["draft", "sent"] = MessageStatus.DRAFT.value
    thread_id: str | None = None
    reply_to: str | None = None
    attachments: list[Attachment] = Field(default_factory=list)
    priority: MessagePriority = MessagePriority.NORMAL
    type: MessageType = MessageType.MESSAGE
    flags: MessageFlags = Field(default_factory=MessageFlags)

    @field_validator("message")
    @classmethod
    def strip_message(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Message body is required")
        return v

    @field_validator("mentions")
    @classmethod
    def validate_mentions(cls, v: list[str]) -> list[str]:
        invalid = [m for m in v if not is_valid_mention(m)]
        if invalid:
            raise ValueError(f"Invalid mention format: {', '.join(invalid)}")
        return v

    @model_validator(mode="after")
    def derive_fields(self) -> "MessageCreate":
        self.mentions = extract_mentions(self.message)
        if self.reply_to and not self.thread_id:
            self.thread_id = self.reply_to
        return self


class MessageEdit(TrackerBaseModel):
    message: str = Field(..., min_length=1, max_length=10000)
    edited_by: EmailAddress


class MessageUpdate(PatchModel):
    message: str | None = Field(default=None, min_length=1, max_length=10000)
    status: MessageStatus | None = None
    priority: MessagePriority | None = None
    flags: MessageFlags | None = None
    meta: MessageMeta | None = None
    mentions: list[str] | None = Field(default=None, max_length=MAX_MENTIONS)


class MessageResponse(TrackerBaseModel, TimestampMixin):
    """Outgoing message; deleted messages hide their body and attachments."""

    id: str
    engagement_id: str
    control_id: str | None = None
    sender: str = _sender_field()
    recipient: str | None = _recipient_field(default=None)
    message: str
    mentions: list[str] = Field(default_factory=list)
    status: MessageStatus
    meta: MessageMeta = Field(default_factory=MessageMeta)
    thread_id: str | None = None
    reply_to: str | None = None
    attachments: list[Attachment] | None = None
    priority: MessagePriority
    type: MessageType
    flags: MessageFlags = Field(default_factory=MessageFlags)

    @model_validator(mode="after")
    def mask_deleted(self) -> "MessageResponse":
        if self.status == MessageStatus.DELETED.value:
            self.message = DELETED_PLACEHOLDER
            self.attachments = None
        return self


class RelatedEntity(TrackerBaseModel):
    type: Literal["engagement", "control", "user", "organization"]
    id: str


class NotificationCreate(TrackerBaseModel):
    user_id: str = Field(..., min_length=1)
    type: NotificationType
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=1000)
    related_entity: RelatedEntity | None = None
    priority: MessagePriority = MessagePriority.NORMAL
    action_required: bool = False
    action_url: str | None = None
    expires_at: datetime | None = None


class NotificationUpdate(PatchModel):
    read: bool | None = None
    read_at: datetime | None = None


class NotificationResponse(NotificationCreate):
    id: str
    read: bool
    read_at: datetime | None = None
    created_at: datetime
