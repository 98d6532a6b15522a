"""
Webhook security utilities.

Inbound webhooks are signed with an HMAC-SHA256 of the raw request body,
keyed by the request timestamp concatenated with the bot's client secret.
"""

import hashlib
import hmac
import time
from typing import Dict, Optional, Union

import structlog

from .errors import WebhookValidationError

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-MailBots-Signature"
TIMESTAMP_HEADER = "X-MailBots-Timestamp"

Body = Union[str, bytes]


def _as_bytes(payload: Body) -> bytes:
    return payload if isinstance(payload, bytes) else payload.encode("utf-8")


class WebhookSecurity:
    """Handles webhook signature operations."""

    @staticmethod
    def generate_signature(payload: Body, secret: str, timestamp: Union[str, int]) -> str:
        """
        Generate the signature for a webhook payload.

        Args:
            payload: Raw request body
            secret: Client secret of the bot
            timestamp: Unix timestamp sent alongside the signature

        Returns:
            Hex-encoded signature
        """
        key = f"{timestamp}{secret}".encode("utf-8")
        return hmac.new(key, _as_bytes(payload), hashlib.sha256).hexdigest()

    @staticmethod
    def verify_signature(payload: Body, signature: str, secret: str, timestamp: Union[str, int]) -> bool:
        """Constant-time comparison of ``signature`` against the expected one."""
        expected_signature = WebhookSecurity.generate_signature(payload, secret, timestamp)
        return hmac.compare_digest(signature.strip().lower(), expected_signature)

    @staticmethod
    def timestamp_is_fresh(timestamp: Union[str, int], tolerance: int, now: Optional[float] = None) -> bool:
        """
        Check the timestamp is within ``tolerance`` seconds of now.

        A tolerance of 0 disables the check.
        """
        if tolerance == 0:
            return True
        try:
            sent_at = int(str(timestamp).strip())
        except ValueError:
            return False
        now = time.time() if now is None else now
        return abs(now - sent_at) <= tolerance

    @staticmethod
    def create_signature_headers(
        payload: Body,
        secret: str,
        timestamp: Optional[Union[str, int]] = None,
    ) -> Dict[str, str]:
        """
        Create signature headers for a webhook request.

        Args:
            payload: Raw request body
            secret: Client secret of the receiving bot
            timestamp: Defaults to now

        Returns:
            Dictionary of headers to include in request
        """
        timestamp = str(int(time.time()) if timestamp is None else timestamp)
        return {
            SIGNATURE_HEADER: WebhookSecurity.generate_signature(payload, secret, timestamp),
            TIMESTAMP_HEADER: timestamp,
        }


def validate_webhook(
    headers,
    raw_body: Body,
    secret: Optional[str],
    tolerance: int = 300,
    now: Optional[float] = None,
) -> None:
    """
    Validate an inbound webhook.

    Args:
        headers: Case-insensitive mapping of request headers
        raw_body: Body exactly as received
        secret: Client secret of the bot
        tolerance: Maximum age of the timestamp in seconds

    Raises:
        WebhookValidationError: A header is missing, stale or the signature does not match
    """
    signature = headers.get(SIGNATURE_HEADER)
    timestamp = headers.get(TIMESTAMP_HEADER)

    if not signature:
        raise WebhookValidationError("Webhook validation requires a signature")
    if not timestamp:
        raise WebhookValidationError("Webhook validation requires a timestamp")
    if not raw_body:
        raise WebhookValidationError("Webhook validation requires the full text body")
    if not secret:
        raise WebhookValidationError("Webhook validation requires a client secret")

    if not WebhookSecurity.timestamp_is_fresh(timestamp, tolerance, now=now):
        logger.warning("Webhook timestamp outside tolerance", timestamp=timestamp, tolerance=tolerance)
        raise WebhookValidationError("Webhook timestamp is too old or too far in the future")

    if not WebhookSecurity.verify_signature(raw_body, signature, secret, timestamp):
        logger.warning("Webhook signature mismatch")
        raise WebhookValidationError("Webhook signature does not match")

    logger.debug("Webhook validated")
