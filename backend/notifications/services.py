"""
Notification helpers for ride and booking transitions.

Notifications are a best-effort side effect: a failure here is logged and
swallowed so the transition that triggered it still reports success.
"""

import logging
from typing import Any, Dict, Iterable, Optional

from django.db import transaction

from .models import Notification

logger = logging.getLogger(__name__)


def notify_user(
    user_id: Optional[int],
    title: str,
    message: str,
    type: str = "info",
    data: Optional[Dict[str, Any]] = None,
) -> Optional[Notification]:
    """
    Create a notification row for one recipient.

    Runs inside its own savepoint so a failed insert does not poison the
    caller's transaction.

    Returns:
        The Notification, or None when it could not be created
    """
    if not user_id:
        return None

    try:
        with transaction.atomic():
            notification = Notification.objects.create(
                user_id=user_id,
                title=title,
                message=message,
                type=type,
                data=data or {},
            )
    except Exception:
        logger.exception("Failed to create notification '%s' for user %s", title, user_id)
        return None

    logger.debug("Notification #%s -> user_%s: %s", notification.id, user_id, title)
    return notification


def notify_users(user_ids: Iterable[int], title: str, message: str, type: str = "info", data=None) -> int:
    """Notify several recipients; returns how many notifications were created."""
    sent = 0
    for user_id in user_ids:
        if notify_user(user_id, title, message, type=type, data=data):
            sent += 1
    return sent
