"""
Change feed publishing.

Every model registered in store.registry publishes a change event to the
channel-layer group `feed_<table>` after the writing transaction commits:

    {"type": "feed.change", "table": ..., "operation": "insert" | "update" | "delete",
     "before": row or None, "after": row or None}

`before` is captured in pre_save by re-reading the stored row.
"""

import logging
from functools import partial
from typing import Any, Dict, Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction
from django.db.models.signals import pre_save, post_save, post_delete

from store.registry import TABLES, table_for_model

logger = logging.getLogger(__name__)

FEED_EVENT = "feed.change"


def feed_group(table: str) -> str:
    return f"feed_{table}"


def build_event(table: str, operation: str, before: Optional[Dict[str, Any]], after: Optional[Dict[str, Any]]):
    return {
        "type": FEED_EVENT,
        "table": table,
        "operation": operation,
        "before": before,
        "after": after,
    }


def publish_change(table: str, operation: str, before=None, after=None) -> bool:
    """
    Send one change event to the table's feed group.

    Returns False when no channel layer is configured or the send failed;
    the write that triggered the event has already committed either way.
    """
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return False

    try:
        async_to_sync(channel_layer.group_send)(
            feed_group(table),
            build_event(table, operation, before, after),
        )
    except Exception:
        logger.exception("Failed to publish %s event on %s", operation, table)
        return False

    logger.debug("Published %s event on %s", operation, table)
    return True


# ---------------------- signal handlers ----------------------

def capture_before(sender, instance, **kwargs):
    table = table_for_model(sender)
    instance._feed_before = None
    if table is None or instance.pk is None:
        return

    previous = sender.objects.filter(pk=instance.pk).first()
    if previous is not None:
        instance._feed_before = table.serialize(previous)


def publish_save(sender, instance, created, **kwargs):
    table = table_for_model(sender)
    if table is None:
        return

    operation = "insert" if created else "update"
    before = None if created else getattr(instance, "_feed_before", None)
    after = table.serialize(instance)
    transaction.on_commit(partial(publish_change, table.name, operation, before, after))


def publish_delete(sender, instance, **kwargs):
    table = table_for_model(sender)
    if table is None:
        return

    before = table.serialize(instance)
    transaction.on_commit(partial(publish_change, table.name, "delete", before, None))


def connect_models():
    """Wire the feed signals for every registered table."""
    for table in TABLES.values():
        pre_save.connect(capture_before, sender=table.model, dispatch_uid=f"feed_before_{table.name}")
        post_save.connect(publish_save, sender=table.model, dispatch_uid=f"feed_save_{table.name}")
        post_delete.connect(publish_delete, sender=table.model, dispatch_uid=f"feed_delete_{table.name}")
