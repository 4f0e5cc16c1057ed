"""Fire-and-forget notification helper."""

import logging
from typing import Any

from .exceptions import DeliveryFailure
from .ports import NotificationSender

logger = logging.getLogger(__name__)


def notify(
    sender: NotificationSender, destination: str, template: str, context: dict[str, Any]
) -> bool:
    """
    Send a notification without letting delivery problems escape.

    Returns:
        True if the sender reported delivery
    """
    try:
        outcome = sender.send_notification(destination, template, context)
    except DeliveryFailure as exc:
        logger.warning("Notification %s to %s failed: %s", template, destination, exc)
        return False
    if not outcome.delivered:
        logger.warning("Notification %s to %s not delivered: %s", template, destination, outcome.error)
    return outcome.delivered
