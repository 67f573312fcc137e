from __future__ import annotations

import time
from typing import Optional

from asktrevor.logging import get_logger

logger = get_logger(__name__)


class EmailService:
    """Outbound email for quotes and follow-ups.

    No mail transport is wired up yet: every send is simulated by logging
    the envelope and a preview of the body, and reported back with
    ``status="simulated"``.
    """

    def __init__(self, *, sender_address: str = "noreply@example.com") -> None:
        self.sender_address = sender_address

    def _redact_email(self, email: str) -> str:
        """Redact an email address for logging to avoid PII leakage."""
        if "@" not in email:
            return "redacted"
        local, domain = email.split("@", 1)
        return f"{local[:2]}***@{domain}"

    def _simulate_send(
        self,
        to_email: str,
        subject: str,
        body: str,
        *,
        sender: str,
        reply_to: Optional[str] = None,
    ) -> str:
        message_id = f"simulated-{int(time.time() * 1000)}"
        logger.info(
            "email_simulated_send",
            message_id=message_id,
            to=self._redact_email(to_email),
            sender=sender,
            reply_to=self._redact_email(reply_to) if reply_to else None,
            subject=subject,
            body_preview=body[:200],
        )
        return message_id

    def send_quote(
        self,
        *,
        project_id: str,
        draft_quote: str,
        recipient_email: str,
        sender_name: str,
        sender_email: Optional[str] = None,
    ) -> dict:
        subject = f"Quote Proposal for Project {project_id}"
        sender = f"{sender_name} <{self.sender_address}>"
        message_id = self._simulate_send(
            recipient_email, subject, draft_quote, sender=sender, reply_to=sender_email
        )
        return {
            "id": message_id,
            "to": recipient_email,
            "from": sender,
            "subject": subject,
            "status": "simulated",
        }

    def send_follow_up(
        self,
        *,
        contact_email: str,
        project_title: str,
        project_name: str,
        body: str,
    ) -> str:
        subject = f"Follow-up: {project_title} - {project_name}"
        sender = f"Ask Trevor <{self.sender_address}>"
        return self._simulate_send(contact_email, subject, body, sender=sender)
