"""
Console delivery adapters - Implement the domain's sender protocols.

These adapters log outbound messages instead of handing them to an SMS or
e-mail provider, for demo and development purposes.
"""

import logging
import uuid
from typing import Any

from src.domain.exceptions import DeliveryFailure
from src.domain.ports import DeliveryOutcome

from .templates import VERIFICATION_SMS, render

logger = logging.getLogger(__name__)


class ConsoleVerificationSender:
    """
    Implements VerificationCodeSender protocol via console logging.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def send_verification_code(
        self, destination: str, code: str, context: dict[str, Any]
    ) -> DeliveryOutcome:
        """
        Log verification code to console (simulates SMS delivery).

        The code is logged at INFO level to be visible in docker-compose logs.

        Args:
            destination: Normalized phone number
            code: 6-digit verification code
            context: Template context (first_name)
        """
        message = VERIFICATION_SMS.render({**context, "code": code})
        logger.info("[VERIFICATION] Phone: %s Code: %s", destination, code)
        logger.debug("[VERIFICATION] Body: %s", message.body)
        return DeliveryOutcome.sent(reference=uuid.uuid4().hex)


class ConsoleNotificationSender:
    """
    Implements NotificationSender protocol via console logging.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def send_notification(
        self, destination: str, template: str, context: dict[str, Any]
    ) -> DeliveryOutcome:
        """
        Render a template and log it (simulates e-mail/SMS delivery).

        Raises:
            DeliveryFailure: If the template is unknown or its context incomplete
        """
        try:
            message = render(template, context)
        except KeyError as e:
            raise DeliveryFailure(f"Cannot render {template}: missing {e}") from e

        logger.info(
            "[NOTIFICATION] To: %s Template: %s Subject: %s", destination, template, message.subject
        )
        logger.debug("[NOTIFICATION] Body: %s", message.body)
        return DeliveryOutcome.sent(reference=uuid.uuid4().hex)
