"""
Bounded delivery wrappers - run a sender in a worker thread with a timeout.

Outbound calls happen after the state transition has been committed, so a
slow or failing provider must never hold a request open or surface as a
server error. Timeouts and provider exceptions are converted to
DeliveryFailure, which the domain logs and reports as a soft warning.
"""

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, TypeVar

from src.domain.exceptions import DeliveryFailure
from src.domain.ports import DeliveryOutcome, NotificationSender, VerificationCodeSender

logger = logging.getLogger(__name__)

T = TypeVar("T")

_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="delivery")


def call_with_timeout(func: Callable[..., T], timeout: float, *args: Any) -> T:
    """
    Run ``func(*args)`` on the delivery pool and wait at most ``timeout`` seconds.

    Raises:
        DeliveryFailure: On timeout or any exception raised by ``func``
    """
    future = _executor.submit(func, *args)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout as e:
        future.cancel()
        raise DeliveryFailure(f"Delivery timed out after {timeout}s") from e
    except DeliveryFailure:
        raise
    except Exception as e:
        logger.exception("Delivery provider error")
        raise DeliveryFailure(str(e) or type(e).__name__) from e


class BoundedVerificationSender:
    """Implements VerificationCodeSender by delegating under a timeout."""

    def __init__(self, inner: VerificationCodeSender, timeout: float = 5.0) -> None:
        self._inner = inner
        self._timeout = timeout

    def send_verification_code(
        self, destination: str, code: str, context: dict[str, Any]
    ) -> DeliveryOutcome:
        return call_with_timeout(
            self._inner.send_verification_code, self._timeout, destination, code, context
        )


class BoundedNotificationSender:
    """Implements NotificationSender by delegating under a timeout."""

    def __init__(self, inner: NotificationSender, timeout: float = 5.0) -> None:
        self._inner = inner
        self._timeout = timeout

    def send_notification(
        self, destination: str, template: str, context: dict[str, Any]
    ) -> DeliveryOutcome:
        return call_with_timeout(
            self._inner.send_notification, self._timeout, destination, template, context
        )
