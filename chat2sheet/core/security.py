# chat2sheet/core/security.py - Signature verification and secret handling
from typing import Optional, Union
import hashlib
import hmac
import secrets


class SecurityError(Exception):
    """Custom exception for security-related errors"""
    pass


class SignatureVerifier:
    """HMAC-SHA256 signatures as used by the payment gateway"""

    @staticmethod
    def sign(secret: str, payload: Union[bytes, str]) -> str:
        """
        Compute the hex HMAC-SHA256 of a payload.

        Args:
            secret: Shared secret
            payload: Raw bytes (webhook body) or text (checkout "order|payment")

        Returns:
            Hex encoded digest
        """
        if not secret:
            raise SecurityError("Signing secret cannot be empty")
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()

    @staticmethod
    def verify(secret: Optional[str], payload: Union[bytes, str], signature: Optional[str]) -> bool:
        """
        Verify a signature using timing-safe comparison.

        Returns False (never raises) when the secret or signature is missing.
        """
        if not secret or not signature:
            return False
        try:
            expected = SignatureVerifier.sign(secret, payload)
        except SecurityError:
            return False
        return hmac.compare_digest(expected, signature.strip())


class SecurityUtils:
    """Utility functions for security operations"""

    @staticmethod
    def verify_api_key(expected: Optional[str], provided: Optional[str]) -> bool:
        """Constant-time API key check; an unset key never matches"""
        if not expected or not provided:
            return False
        return secrets.compare_digest(expected, provided)

    @staticmethod
    def mask_sensitive_data(data: str, visible_chars: int = 4) -> str:
        """
        Mask sensitive data for logging (e.g., API keys, phone numbers).

        Args:
            data: Sensitive data to mask
            visible_chars: Number of characters to show at the end

        Returns:
            Masked string
        """
        if not data or len(data) <= visible_chars:
            return "*" * len(data) if data else ""

        return "*" * (len(data) - visible_chars) + data[-visible_chars:]


signature_verifier = SignatureVerifier()
security_utils = SecurityUtils()


def verify_webhook_signature(secret: Optional[str], raw_body: bytes, signature: Optional[str]) -> bool:
    """Verify a payment webhook body signature"""
    return signature_verifier.verify(secret, raw_body, signature)


def verify_checkout_signature(secret: Optional[str], order_id: str, payment_id: str, signature: Optional[str]) -> bool:
    """Verify the checkout callback signature over "order_id|payment_id" """
    return signature_verifier.verify(secret, f"{order_id}|{payment_id}", signature)


def mask_sensitive_data(data: str, visible_chars: int = 4) -> str:
    return security_utils.mask_sensitive_data(data, visible_chars)


__all__ = [
    "SecurityError", "SignatureVerifier", "SecurityUtils",
    "signature_verifier", "security_utils",
    "verify_webhook_signature", "verify_checkout_signature", "mask_sensitive_data",
]
