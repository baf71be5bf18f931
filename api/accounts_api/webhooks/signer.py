"""Webhook payload signer using HMAC-SHA256."""

import hashlib
import hmac
import time

from accounts_api.webhooks.exceptions import WebhookSignatureError


class WebhookSigner:
    """Signs webhook payloads and verifies ``t=<ts>,v1=<hex>`` headers."""

    TIMESTAMP_KEY = "t"
    SIGNATURE_KEY = "v1"

    @staticmethod
    def _digest(payload: str, secret: str, timestamp: int) -> str:
        # Signature is computed over: timestamp + "." + payload
        message = f"{timestamp}.{payload}"
        return hmac.new(
            secret.encode("utf-8"),
            message.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    @staticmethod
    def generate_signature(payload: str, secret: str, timestamp: int | None = None) -> str:
        """
        Generate the signature header value for a webhook payload.

        Args:
            payload: The JSON payload string to sign
            secret: The shared secret key
            timestamp: Unix timestamp (defaults to current time)

        Returns:
            Header value of the form ``t=<timestamp>,v1=<hex digest>``
        """
        if timestamp is None:
            timestamp = int(time.time())

        signature = WebhookSigner._digest(payload, secret, timestamp)
        return f"{WebhookSigner.TIMESTAMP_KEY}={timestamp},{WebhookSigner.SIGNATURE_KEY}={signature}"

    @staticmethod
    def parse_header(signature_header: str) -> tuple[int, str]:
        """Split a signature header into (timestamp, hex digest)."""
        fields: dict[str, str] = {}
        for element in signature_header.split(","):
            key, sep, value = element.strip().partition("=")
            if sep and key not in fields:
                fields[key] = value

        raw_timestamp = fields.get(WebhookSigner.TIMESTAMP_KEY)
        signature = fields.get(WebhookSigner.SIGNATURE_KEY)
        if not raw_timestamp or not signature:
            raise WebhookSignatureError("Invalid signature format")

        try:
            timestamp = int(raw_timestamp)
        except ValueError as e:
            raise WebhookSignatureError("Invalid signature format") from e

        return timestamp, signature

    @staticmethod
    def is_timestamp_valid(timestamp: int, tolerance_seconds: int) -> bool:
        """Check that a timestamp lies within ``tolerance_seconds`` of now."""
        return abs(int(time.time()) - timestamp) <= tolerance_seconds

    @staticmethod
    def verify_signature(
        payload: str,
        signature_header: str,
        secret: str,
        tolerance_seconds: int | None = None,
    ) -> bool:
        """
        Verify a webhook signature header.

        Args:
            payload: The JSON payload string
            signature_header: Value of the signature header
            secret: The shared secret key
            tolerance_seconds: Maximum accepted age of the signed timestamp

        Returns:
            True if the digest matches, False otherwise

        Raises:
            WebhookSignatureError: malformed header or stale timestamp
        """
        timestamp, signature = WebhookSigner.parse_header(signature_header)

        # Digest and comparison run before the freshness check so a stale
        # header costs the same as a forged one.
        expected = WebhookSigner._digest(payload, secret, timestamp)
        matches = hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))
        fresh = tolerance_seconds is None or WebhookSigner.is_timestamp_valid(
            timestamp, tolerance_seconds
        )

        if not fresh:
            raise WebhookSignatureError("Timestamp is outside tolerance window")
        return matches

    @staticmethod
    def require_valid_signature(
        payload: str,
        signature_header: str,
        secret: str,
        tolerance_seconds: int | None = None,
    ) -> None:
        """Receiver-side check that fails with one generic error whatever the cause."""
        try:
            valid = WebhookSigner.verify_signature(
                payload, signature_header, secret, tolerance_seconds
            )
        except WebhookSignatureError:
            valid = False
        if not valid:
            raise WebhookSignatureError("Invalid webhook signature")

    @staticmethod
    def get_headers(
        payload: str,
        secret: str,
        signature_header: str = "X-Webhook-Signature",
        timestamp_header: str = "X-Webhook-Timestamp",
        timestamp: int | None = None,
    ) -> dict[str, str]:
        """
        Generate the signing HTTP headers for a payload.

        Returns:
            Dictionary with the signature and timestamp headers
        """
        if timestamp is None:
            timestamp = int(time.time())

        return {
            signature_header: WebhookSigner.generate_signature(payload, secret, timestamp),
            timestamp_header: str(timestamp),
        }
