from __future__ import annotations

import logging
from typing import Any

from flask import current_app

from trainops.utils.datetime import utc_now

log = logging.getLogger(__name__)


class OutboxNotifier:
    """Queues notifications in the ``notifications`` collection.

    Delivery (push, mail) is done by whoever drains the outbox. Callers use
    :func:`notify` after their own write has committed, so a failure here only
    loses the message.
    """

    def __init__(self, db):
        self._db = db

    def send(self, message: dict[str, Any]) -> None:
        doc = dict(message)
        doc.setdefault("priority", "medium")
        doc.setdefault("read", False)
        doc["createdAt"] = utc_now()
        self._db.notifications.insert_one(doc)


def init_notifier(app) -> None:
    app.extensions.setdefault("notifier", OutboxNotifier(app.extensions["mongo_db"]))


def notify(
    *,
    recipient: Any,
    sender: Any,
    title: str,
    message: str,
    entity_type: str,
    entity_id: Any,
    kind: str = "status_update",
) -> bool:
    """Fire-and-forget. Returns False (and logs) when the message could not be queued."""
    if not recipient:
        log.info("Notification %r skipped: no recipient", title)
        return False

    notifier = current_app.extensions.get("notifier")
    if notifier is None:
        log.warning("Notification %r dropped: notifier not configured", title)
        return False

    try:
        notifier.send(
            {
                "recipient": recipient,
                "sender": sender,
                "title": title,
                "message": message,
                "type": kind,
                "relatedEntity": {"type": entity_type, "id": entity_id},
            }
        )
    except Exception as e:
        log.error("Notification %r to %s failed: %s", title, recipient, e)
        return False
    return True
