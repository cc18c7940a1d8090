"""Closed vocabulary of platform events that can trigger webhooks."""

from __future__ import annotations

from enum import Enum


class EventType(str, Enum):
    """Platform event names.

    ``WEBHOOK_TEST`` is the diagnostic event sent by the test endpoint. It can
    be delivered but cannot be subscribed to.
    """

    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_DELETED = "user.deleted"
    POST_CREATED = "post.created"
    POST_UPDATED = "post.updated"
    POST_DELETED = "post.deleted"
    POST_LIKED = "post.liked"
    COMMENT_CREATED = "comment.created"
    COMMENT_DELETED = "comment.deleted"
    BLOG_PUBLISHED = "blog.published"
    BLOG_UNPUBLISHED = "blog.unpublished"
    MESSAGE_SENT = "message.sent"
    MESSAGE_RECEIVED = "message.received"
    CALL_STARTED = "call.started"
    CALL_ENDED = "call.ended"
    NOTIFICATION_SENT = "notification.sent"
    GROUP_CREATED = "group.created"
    GROUP_MEMBER_ADDED = "group.member_added"
    GROUP_MEMBER_REMOVED = "group.member_removed"
    PAYMENT_SUCCEEDED = "payment.succeeded"
    PAYMENT_FAILED = "payment.failed"
    WEBHOOK_TEST = "webhook.test"


# Events a subscription may list
SUBSCRIBABLE_EVENTS: tuple[EventType, ...] = tuple(
    event for event in EventType if event is not EventType.WEBHOOK_TEST
)


def parse_event_type(value: str | EventType) -> EventType | None:
    """Return the EventType for ``value``, or None if it is not in the vocabulary."""
    try:
        return EventType(value)
    except ValueError:
        return None


__all__ = ["SUBSCRIBABLE_EVENTS", "EventType", "parse_event_type"]
