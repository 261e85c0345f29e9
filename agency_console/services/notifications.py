"""Templated e-mail notifications.

Messages are rendered here and handed to a delivery endpoint (an HTTP
function that relays them over SMTP). Sending is fire-and-forget: the
request runs on a worker thread and any failure is logged, never raised,
so a notification problem cannot abort the business operation that
triggered it. Without a configured ``NOTIFICATION_URL`` the notifier
only logs what it would have sent.
"""
from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Mapping, Optional

import requests

logger = logging.getLogger(__name__)

SIGNATURE = "Best regards,\nAgency Directory Team"

TEMPLATES = {
    "review_approved": (
        "Your Review Has Been Approved",
        "Dear {user_name},\n\n"
        "Your review for {agency_name} has been approved and is now visible on our platform.\n\n"
        "Thank you for contributing to our community!\n\n" + SIGNATURE,
    ),
    "review_rejected": (
        "Review Update",
        "Dear {user_name},\n\n"
        "We've reviewed your submission for {agency_name}. Unfortunately, we cannot publish it at this time.\n"
        "Please ensure your review follows our community guidelines.\n\n" + SIGNATURE,
    ),
    "new_agency": (
        "New Agency Listing Submitted",
        "Hello Admin,\n\n"
        "A new agency listing has been submitted:\n\n"
        "Agency Name: {agency_name}\n"
        "Location: {location}\n"
        "Contact Email: {contact_email}\n\n"
        "Please review this submission in your admin dashboard.\n\n" + SIGNATURE,
    ),
    "agency_approved": (
        "Your Agency Listing Has Been Approved",
        "Dear {owner_name},\n\n"
        'Congratulations! Your agency listing for "{agency_name}" has been approved.\n'
        "Your listing is now visible to potential clients on our platform.\n\n" + SIGNATURE,
    ),
}


class _Defaults(dict):
    def __missing__(self, key: str) -> str:
        return ""


def render(template: str, data: Mapping[str, Any]) -> tuple[str, str]:
    """Return ``(subject, body)`` for ``template`` filled with ``data``."""
    subject, body = TEMPLATES[template]
    return subject, body.format_map(_Defaults(data))


class Notifier:
    """Fire-and-forget delivery of templated messages."""

    def __init__(
        self,
        url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: float = 10.0,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self.url = url
        self.token = token
        self.timeout = timeout
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="notify")

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "Notifier":
        return cls(url=config.get("NOTIFICATION_URL"), token=config.get("NOTIFICATION_TOKEN"))

    def notify(self, template: str, to: Optional[str], data: Mapping[str, Any]) -> Optional[Future]:
        """Queue a message; returns the delivery future, or ``None`` if nothing was queued."""
        if not to:
            logger.info("Skipping %s notification: no recipient", template)
            return None
        subject, body = render(template, data)
        if not self.url:
            logger.info("Notifications disabled; would send %s to %s", template, to)
            return None
        payload = {"to": to, "subject": subject, "body": body, "template": template, "data": dict(data)}
        return self._executor.submit(self._deliver, payload)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the delivery workers, by default after queued messages are sent."""
        self._executor.shutdown(wait=wait)
        logger.info("Notifier executor shutdown")

    def _deliver(self, payload: dict) -> bool:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            response = requests.post(self.url, json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Failed to send %s notification to %s: %s", payload["template"], payload["to"], exc)
            return False
        return True
