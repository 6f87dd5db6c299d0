"""
Tests for the messaging service.

These tests verify:
1. MESSAGES: drafts, sending, read receipts, edits and soft deletes
2. THREADS: replies join the thread of the message they answer
3. QUERIES: unread, search and mentions
4. NOTIFICATIONS: read state and expiry
"""

from datetime import timedelta

import pytest

from compliance_tracker.core.errors import NotFoundError, ValidationError
from compliance_tracker.models import as_utc, utcnow
from compliance_tracker.schemas.messages import DELETED_PLACEHOLDER, MessageResponse
from compliance_tracker.services.messaging import MessagingManager

ENGAGEMENT_ID = "acme-corp_gap-assessment_2601:v1"
LEAD = "lead@auditfirm.com"
CUSTOMER = "sam@acme.com"


def message_payload(**overrides):
    payload = {
        "engagement_id": ENGAGEMENT_ID,
        "sender": LEAD,
        "message": "Please upload the access review for CC6.1",
    }
    payload.update(overrides)
    return payload


# =============================================================================
# TEST: MESSAGES
# =============================================================================


class TestMessages:
    async def test_new_messages_are_drafts(self, container):
        messaging: MessagingManager = container.messaging
        message = await messaging.create_message(message_payload())

        assert message.status == "draft"
        assert message.priority == "normal"
        assert message.type == "message"
        assert message.thread_id is None

    async def test_from_alias_and_mentions(self, container):
        payload = message_payload(message="@sam and @it-team please review @sam")
        del payload["sender"]
        payload["from"] = "Lead@AuditFirm.com"

        message = await container.messaging.create_message(payload)
        assert message.sender == LEAD
        assert message.mentions == ["@sam", "@it-team"]

    async def test_blank_body_is_rejected(self, container):
        with pytest.raises(ValidationError):
            await container.messaging.create_message(message_payload(message="   "))

    async def test_send_stamps_time_once(self, container):
        messaging = container.messaging
        draft = await messaging.create_message(message_payload())

        sent = await messaging.send(draft.id)
        assert sent.status == "sent"
        assert sent.meta["sent"] is not None

        # Sending again leaves the message as it is
        again = await messaging.send(draft.id)
        assert again.meta["sent"] == sent.meta["sent"]

    async def test_created_as_sent(self, container):
        message = await container.messaging.create_message(message_payload(status="sent"))
        assert message.status == "sent"
        assert message.meta["sent"]

    async def test_read_receipts(self, container):
        messaging = container.messaging
        direct = await messaging.create_message(
            message_payload(recipient=CUSTOMER, status="sent")
        )

        read = await messaging.mark_read(direct.id, CUSTOMER)
        assert read.status == "read"
        assert [r["by"] for r in read.meta["read"]] == [CUSTOMER]

        # A second read by the same reader adds nothing
        read = await messaging.mark_read(direct.id, CUSTOMER)
        assert len(read.meta["read"]) == 1

    async def test_broadcast_read_keeps_status(self, container):
        messaging = container.messaging
        broadcast = await messaging.create_message(message_payload(status="sent"))

        read = await messaging.mark_read(broadcast.id, CUSTOMER)
        assert read.status == "sent"
        assert len(read.meta["read"]) == 1

    async def test_edit_records_editor(self, container):
        messaging = container.messaging
        message = await messaging.create_message(message_payload())

        edited = await messaging.edit(message.id, "  Updated ask for @sam  ", LEAD)

        assert edited.message == "Updated ask for @sam"
        assert edited.mentions == ["@sam"]
        assert edited.meta["edited"] is True
        assert edited.meta["edited_by"] == LEAD

    async def test_soft_delete(self, container):
        messaging = container.messaging
        message = await messaging.create_message(message_payload(
            attachments=[{"name": "review.pdf", "size": 1024}],
        ))

        deleted = await messaging.delete(message.id)
        assert deleted.status == "deleted"
        assert await messaging.engagement_messages(ENGAGEMENT_ID) == []
        assert len(await messaging.engagement_messages(ENGAGEMENT_ID, include_deleted=True)) == 1

        response = MessageResponse.model_validate(deleted)
        assert response.message == DELETED_PLACEHOLDER
        assert response.attachments is None

        with pytest.raises(ValidationError):
            await messaging.edit(message.id, "resurrected", LEAD)

    async def test_unknown_message(self, container):
        with pytest.raises(NotFoundError):
            await container.messaging.send("missing")


# =============================================================================
# TEST: THREADS
# =============================================================================


class TestThreads:
    async def test_replies_join_the_root_thread(self, container):
        messaging = container.messaging
        root = await messaging.create_message(message_payload(status="sent"))
        reply = await messaging.create_message(message_payload(
            sender=CUSTOMER, message="Uploaded", reply_to=root.id, status="sent",
        ))
        nested = await messaging.create_message(message_payload(
            message="Thanks", reply_to=reply.id, status="sent",
        ))

        assert reply.thread_id == root.id
        assert nested.thread_id == root.id

        thread = await messaging.thread(root.id)
        assert thread[0].id == root.id
        assert {m.id for m in thread} == {root.id, reply.id, nested.id}

    async def test_reply_to_unknown_message(self, container):
        with pytest.raises(NotFoundError):
            await container.messaging.create_message(message_payload(reply_to="missing"))

    async def test_control_messages(self, container):
        messaging = container.messaging
        await messaging.create_message(message_payload(control_id="CC6.1"))
        await messaging.create_message(message_payload(control_id="CC7.2"))

        scoped = await messaging.control_messages(ENGAGEMENT_ID, "CC6.1")
        assert [m.control_id for m in scoped] == ["CC6.1"]


# =============================================================================
# TEST: QUERIES
# =============================================================================


class TestQueries:
    async def test_unread_for_user(self, container):
        messaging = container.messaging
        direct = await messaging.create_message(message_payload(recipient=CUSTOMER, status="sent"))
        broadcast = await messaging.create_message(message_payload(status="sent"))
        await messaging.create_message(message_payload(recipient=CUSTOMER))  # draft
        await messaging.create_message(message_payload(recipient="other@acme.com", status="sent"))

        unread = await messaging.unread_for_user(CUSTOMER)
        assert {m.id for m in unread} == {direct.id, broadcast.id}

        await messaging.mark_read(direct.id, CUSTOMER)
        await messaging.mark_read(broadcast.id, CUSTOMER)
        assert await messaging.unread_for_user(CUSTOMER) == []

    async def test_search_is_case_insensitive(self, container):
        messaging = container.messaging
        hit = await messaging.create_message(message_payload(message="Firewall RULES attached"))
        await messaging.create_message(message_payload(message="Unrelated note"))
        gone = await messaging.create_message(message_payload(message="old firewall export"))
        await messaging.delete(gone.id)

        results = await messaging.search("firewall rules")
        assert [m.id for m in results] == [hit.id]
        assert await messaging.search("100%") == []

        with pytest.raises(ValidationError):
            await messaging.search("  ")

    async def test_mentions_of(self, container):
        messaging = container.messaging
        mention = await messaging.create_message(message_payload(message="Ping @sam about this"))
        await messaging.create_message(message_payload(message="Ping @samantha instead"))

        assert [m.id for m in await messaging.mentions_of("sam")] == [mention.id]
        assert [m.id for m in await messaging.mentions_of("@sam", ENGAGEMENT_ID)] == [mention.id]


# =============================================================================
# TEST: NOTIFICATIONS
# =============================================================================


class TestNotifications:
    async def test_mark_read_once(self, container, customer_user):
        messaging = container.messaging
        notification = await messaging.notify({
            "user_id": customer_user.user_id,
            "type": "control_assigned",
            "title": "Control assigned",
            "message": "You own CC6.1",
            "related_entity": {"type": "control", "id": "CC6.1"},
        })
        assert notification.read is False

        read = await messaging.mark_notification_read(notification.id)
        assert read.read is True
        first_read_at = read.read_at

        again = await messaging.mark_notification_read(notification.id)
        assert as_utc(again.read_at) == as_utc(first_read_at)

    async def test_unread_skips_expired(self, container, customer_user):
        messaging = container.messaging
        now = utcnow()
        live = await messaging.notify({
            "user_id": customer_user.user_id,
            "type": "deadline_reminder",
            "title": "Evidence due",
            "message": "Evidence for CC6.1 is due Friday",
            "expires_at": now + timedelta(days=2),
        })
        await messaging.notify({
            "user_id": customer_user.user_id,
            "type": "deadline_reminder",
            "title": "Old reminder",
            "message": "Long gone",
            "expires_at": now - timedelta(days=2),
        })

        unread = await messaging.unread_notifications(customer_user.user_id, now=now)
        assert [n.id for n in unread] == [live.id]
        assert len(await messaging.notifications(customer_user.user_id)) == 2

    async def test_invalid_notification_type(self, container, customer_user):
        with pytest.raises(ValidationError):
            await container.messaging.notify({
                "user_id": customer_user.user_id,
                "type": "carrier_pigeon",
                "title": "Hi",
                "message": "Coo",
            })

    async def test_unknown_notification(self, container):
        with pytest.raises(NotFoundError):
            await container.messaging.mark_notification_read("missing")
