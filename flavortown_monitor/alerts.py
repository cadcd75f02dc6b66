"""Operational status messages to a Discord webhook. Best effort only."""

import logging
from typing import Optional

from discord_webhook import DiscordWebhook


logger = logging.getLogger(__name__)

# Discord caps plain message content at 2000 characters
MAX_CONTENT = 2000


def send_status_webhook(webhook_url: Optional[str], message: str) -> bool:
    """Send a status message. Returns False (and logs) instead of raising."""
    if not webhook_url:
        return False
    try:
        webhook = DiscordWebhook(url=webhook_url, content=message[:MAX_CONTENT])
        response = webhook.execute()
    except Exception as e:
        logger.error(f"Status webhook failed: {e}")
        return False

    status = getattr(response, "status_code", None)
    if status is not None and status >= 300:
        logger.error(f"Status webhook failed with HTTP {status}")
        return False
    return True
