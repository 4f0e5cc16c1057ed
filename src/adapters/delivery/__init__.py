"""Delivery adapters - Outbound verification codes and notifications."""

from .bounded import BoundedNotificationSender, BoundedVerificationSender
from .console import ConsoleNotificationSender, ConsoleVerificationSender

__all__ = [
    "BoundedNotificationSender",
    "BoundedVerificationSender",
    "ConsoleNotificationSender",
    "ConsoleVerificationSender",
]
