import httpx
import logging
from typing import Optional

from app.config import get_settings

logger = logging.getLogger(__name__)

ELLIPSIS = "..."


def preview(content: str, limit: int = 80) -> str:
    """Truncate message content for a notification body."""
    if len(content) <= limit:
        return content
    return content[:limit] + ELLIPSIS


class PushNotifier:
    """Client for the push-notification endpoint.

    Best effort only: `notify` never raises, it reports success as a bool so
    callers can fire and forget.
    """

    def __init__(self, url: Optional[str] = None, api_key: Optional[str] = None,
                 timeout: Optional[float] = None, client: Optional[httpx.AsyncClient] = None):
        settings = get_settings()
        self.url = settings.push_function_url if url is None else url
        self.api_key = settings.push_api_key if api_key is None else api_key
        self.timeout = settings.push_timeout if timeout is None else timeout
        self.preview_length = settings.push_preview_length
        self._client = client

    def is_configured(self) -> bool:
        return bool(self.url)

    async def notify(self, recipient_id: str, title: str, body: str,
                     url: str = "/messages", tag: str = "new-message") -> bool:
        if not self.is_configured():
            logger.debug("Push endpoint not configured, skipping notification")
            return False

        payload = {
            "user_id": recipient_id,
            "title": title,
            "body": body,
            "url": url,
            "tag": tag,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=payload, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Push notification to {recipient_id} failed: {e}")
            return False

        logger.info(f"Push notification sent to {recipient_id} ({tag})")
        return True


push_notifier = PushNotifier()
