"""
Outbound message templates.

Each template renders a subject (e-mail only) and a plain-text body from a
context dict. Unknown template names raise KeyError.
"""

from dataclasses import dataclass
from typing import Any

BRAND = "AyurSutra Wellness"


@dataclass(frozen=True)
class RenderedMessage:
    subject: str | None
    body: str


@dataclass(frozen=True)
class MessageTemplate:
    subject: str | None
    body: str

    def render(self, context: dict[str, Any]) -> RenderedMessage:
        values = {"brand": BRAND, "first_name": "there", **context}
        subject = self.subject.format(**values) if self.subject else None
        return RenderedMessage(subject=subject, body=self.body.format(**values))


VERIFICATION_SMS = MessageTemplate(
    subject=None,
    body=(
        "Hello {first_name}! Your {brand} verification code is: {code}. "
        "Valid for 10 minutes. Do not share this code with anyone."
    ),
)

TEMPLATES: dict[str, MessageTemplate] = {
    "welcome-email": MessageTemplate(
        subject="Welcome to {brand} - Your Wellness Journey Begins!",
        body=(
            "Dear {first_name},\n\n"
            "Welcome to {brand}! Your account has been created and verified. "
            "You can now access your personalized dashboard.\n\n"
            "Best regards,\n{brand} Team"
        ),
    ),
    "welcome-sms": MessageTemplate(
        subject=None,
        body="Welcome to {brand}, {first_name}! Your wellness journey begins now.",
    ),
    "password-reset": MessageTemplate(
        subject="Password Reset Request - {brand}",
        body=(
            "Dear {first_name},\n\n"
            "Use the link below to reset your password. It expires in "
            "{expires_minutes} minutes.\n\n{reset_url}\n\n"
            "If you did not request a reset, ignore this message."
        ),
    ),
}


def render(template: str, context: dict[str, Any]) -> RenderedMessage:
    """Render a named notification template."""
    return TEMPLATES[template].render(context)
