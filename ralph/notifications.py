"""
Webhook notifications for ralph.

POSTs a small JSON payload {event, timestamp, message} to a configured URL
at session start, completion and failure. Delivery is best-effort: any
error is logged and the run carries on.
"""

import json
import logging
from datetime import datetime, timezone
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

logger = logging.getLogger(__name__)

SESSION_START = "session_start"
SESSION_COMPLETE = "session_complete"
SESSION_FAILED = "session_failed"

EVENTS = (SESSION_START, SESSION_COMPLETE, SESSION_FAILED)

WEBHOOK_TIMEOUT = 10
MAX_MESSAGE_LENGTH = 500


def build_payload(event: str, message: str) -> dict:
    if event not in EVENTS:
        raise ValueError(f"Unknown webhook event '{event}'")
    # Truncate long messages to keep payloads small
    if len(message) > MAX_MESSAGE_LENGTH:
        message = message[:MAX_MESSAGE_LENGTH] + "..."
    return {
        "event": event,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "message": message,
    }


def send_webhook(url: str | None, event: str, message: str) -> bool:
    """
    POST an event to url. No-op when url is empty.

    Returns:
        True if the endpoint answered 2xx
    """
    if not url:
        return False

    req = Request(
        url,
        data=json.dumps(build_payload(event, message)).encode(),
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    try:
        with urlopen(req, timeout=WEBHOOK_TIMEOUT) as response:
            logger.debug(f"Webhook sent: {event} ({response.status})")
            return True
    except HTTPError as e:
        logger.warning(f"Webhook returned {e.code} for {event}")
    except (URLError, OSError) as e:
        logger.warning(f"Webhook failed for {event}: {e}")
    return False


def notify_start(url: str | None, project: str) -> None:
    send_webhook(url, SESSION_START, f"Starting session for {project}")


def notify_complete(url: str | None, iterations: int) -> None:
    send_webhook(url, SESSION_COMPLETE, f"Session complete after {iterations} iteration(s)")


def notify_failed(url: str | None, reason: str) -> None:
    send_webhook(url, SESSION_FAILED, reason)
