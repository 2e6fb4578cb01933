"""
Outbound notification dispatch.

Notifications are delivered by an external service that owns templating,
delivery channels and opt-out preferences. The booking core only tells it
what happened, for which booking and to whom. Dispatch is fire-and-forget:
a failure is logged at warning and never undoes or blocks the booking change
that triggered it.
"""

import logging
from typing import Optional, Union

import httpx

from core.config import (
    NOTIFICATION_DISPATCH_TOKEN,
    NOTIFICATION_DISPATCH_URL,
    NOTIFICATION_TIMEOUT_SECONDS,
)
from shared_types.booking import NotificationType

logger = logging.getLogger(__name__)

# Global singleton instance
_dispatcher: Optional["NotificationDispatcher"] = None


class NotificationDispatcher:
    """Client for the external notification service."""

    def __init__(
        self,
        url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None
    ):
        """
        Args:
            url: Dispatch endpoint. Empty disables dispatch (calls are logged and skipped).
            token: Optional bearer token for the dispatch endpoint
            timeout: Request timeout in seconds
            client: Optional preconfigured httpx.Client (used by tests)
        """
        self.url = NOTIFICATION_DISPATCH_URL if url is None else url
        self.token = NOTIFICATION_DISPATCH_TOKEN if token is None else token
        self.timeout = NOTIFICATION_TIMEOUT_SECONDS if timeout is None else timeout
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def notify(
        self,
        notification_type: Union[str, NotificationType],
        booking_id: int,
        recipient_id: str
    ) -> None:
        """
        Send one notification request.

        Args:
            notification_type: Type of notification (see NotificationType)
            booking_id: Booking the notification is about
            recipient_id: Patient user id or provider slug

        Raises:
            httpx.HTTPError: On transport errors or non-2xx responses
        """
        notification_type = NotificationType(notification_type)
        if not self.enabled:
            logger.info(
                f"Notification dispatch disabled, skipping {notification_type.value} "
                f"for booking {booking_id}"
            )
            return

        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        payload = {
            "type": notification_type.value,
            "booking_id": booking_id,
            "recipient_user_id": recipient_id,
        }

        if self._client is not None:
            response = self._client.post(self.url, headers=headers, json=payload, timeout=self.timeout)
        else:
            response = httpx.post(self.url, headers=headers, json=payload, timeout=self.timeout)
        response.raise_for_status()
        logger.debug(f"Dispatched {notification_type.value} for booking {booking_id}")

    def dispatch_best_effort(
        self,
        notification_type: Union[str, NotificationType],
        booking_id: int,
        recipient_id: Optional[str]
    ) -> bool:
        """
        Send a notification, swallowing and logging any failure.

        Returns:
            True if the request was accepted (or dispatch is disabled), False otherwise
        """
        if not recipient_id:
            logger.info(f"No recipient for {notification_type} on booking {booking_id}, skipping notification")
            return False
        try:
            self.notify(notification_type, booking_id, recipient_id)
            return True
        except httpx.HTTPStatusError as e:
            # Log but don't fail - notification failure shouldn't block the booking change
            logger.warning(
                f"Notification {notification_type} for booking {booking_id} rejected: "
                f"{e.response.status_code} - {e.response.text}"
            )
            return False
        except Exception as e:
            logger.warning(f"Failed to send {notification_type} notification for booking {booking_id}: {e}")
            return False


def get_notification_dispatcher() -> NotificationDispatcher:
    """
    Get the global notification dispatcher instance.

    Returns:
        NotificationDispatcher: The global dispatcher instance
    """
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher
