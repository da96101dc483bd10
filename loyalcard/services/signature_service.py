"""
Signature Service for QR payloads.

Tokens embedded in QR codes have three dot-separated segments:

    <payload>.<hash>.<timestamp>

- payload:   unpadded URL-safe base64 of the canonical JSON payload
             (sorted keys, compact separators)
- hash:      hex HMAC-SHA256 of "<canonical json>|<timestamp>" keyed with the
             server-held QR secret
- timestamp: Unix seconds at signing time

The trailing ``hash.timestamp`` pair is the signature proper. Verification
recomputes the hash from the decoded payload and compares it in constant time,
then checks freshness:

- tampered / malformed / unknown key  -> SignatureInvalidError ("reject and alert")
- authentic but older than validity   -> SignatureExpiredError ("ask for a rescan")

Verification never touches the database.
"""
import base64
import binascii
import hashlib
import hmac
import json
import logging
import time
from typing import Any, Callable, Dict, Iterable, Optional

from flask import current_app

from ..utils.exceptions import SignatureExpiredError, SignatureInvalidError, ValidationError

logger = logging.getLogger(__name__)

QR_TYPE_LOYALTY_CARD = 'loyaltyCard'


def canonical_json(payload: Dict[str, Any]) -> str:
    """Stable text form of a payload; key order never affects the signature."""
    return json.dumps(payload, sort_keys=True, separators=(',', ':'), ensure_ascii=False)


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b'=').decode('ascii')


def _b64decode(segment: str) -> bytes:
    padding = '=' * (-len(segment) % 4)
    return base64.urlsafe_b64decode(segment + padding)


class SignatureService:
    """
    Signs and verifies QR payloads.

    Usage:
        service = SignatureService(secret='...', validity_seconds=180 * 86400)
        token = service.sign({'type': 'loyaltyCard', 'cardId': 7})
        payload = service.verify(token)
    """

    def __init__(
        self,
        secret: str,
        validity_seconds: int,
        previous_secrets: Iterable[str] = (),
        max_clock_skew_seconds: int = 300,
        clock: Callable[[], float] = time.time
    ):
        if not secret:
            raise ValueError('QR signing secret must be configured')
        self.secret = secret
        self.previous_secrets = [s for s in previous_secrets if s]
        self.validity_seconds = validity_seconds
        self.max_clock_skew_seconds = max_clock_skew_seconds
        self.clock = clock

    @classmethod
    def from_config(cls, config=None, clock: Callable[[], float] = time.time) -> 'SignatureService':
        """Build a service from Flask config (current_app when not given)."""
        config = config if config is not None else current_app.config
        return cls(
            secret=config['QR_SECRET_KEY'],
            previous_secrets=config.get('QR_PREVIOUS_SECRET_KEYS', []),
            validity_seconds=int(config.get('QR_VALIDITY_DAYS', 180)) * 86400,
            max_clock_skew_seconds=int(config.get('QR_MAX_CLOCK_SKEW_SECONDS', 300)),
            clock=clock
        )

    # ==================== Signing ====================

    def _digest(self, secret: str, canonical: str, timestamp: int) -> str:
        message = f'{canonical}|{timestamp}'
        return hmac.new(
            secret.encode('utf-8'),
            message.encode('utf-8'),
            hashlib.sha256
        ).hexdigest()

    def sign(self, payload: Dict[str, Any], timestamp: Optional[int] = None) -> str:
        """
        Sign a payload with the current secret.

        Args:
            payload: JSON-serializable dict
            timestamp: Signing time in Unix seconds (defaults to now)

        Returns:
            Token string ``<payload>.<hash>.<timestamp>``
        """
        if not isinstance(payload, dict) or not payload:
            raise ValidationError('QR payload must be a non-empty object', field='payload')

        if timestamp is None:
            timestamp = int(self.clock())

        canonical = canonical_json(payload)
        digest = self._digest(self.secret, canonical, timestamp)
        return f'{_b64encode(canonical.encode("utf-8"))}.{digest}.{timestamp}'

    # ==================== Verification ====================

    def verify(self, token: str, allow_expired: bool = False) -> Dict[str, Any]:
        """
        Verify a signed token and return its payload.

        ``allow_expired`` skips only the age check; integrity and the future
        timestamp check still apply.

        Raises:
            SignatureInvalidError: Malformed token, tampered payload or hash,
                unknown signing key, or timestamp too far in the future
            SignatureExpiredError: Authentic token older than the validity period
        """
        if not token or not isinstance(token, str):
            raise SignatureInvalidError('QR token is missing')

        parts = token.strip().split('.')
        if len(parts) != 3:
            raise SignatureInvalidError('QR token is malformed')

        payload_segment, received_hash, timestamp_text = parts

        try:
            timestamp = int(timestamp_text)
            canonical = _b64decode(payload_segment).decode('utf-8')
            payload = json.loads(canonical)
        except (ValueError, binascii.Error, UnicodeDecodeError):
            raise SignatureInvalidError('QR token is malformed')

        if not isinstance(payload, dict):
            raise SignatureInvalidError('QR token is malformed')

        # Only the exact canonical encoding is accepted, so every byte of the segment is covered
        if canonical_json(payload) != canonical or _b64encode(canonical.encode('utf-8')) != payload_segment:
            raise SignatureInvalidError()

        if not self._matches_any_key(canonical, timestamp, received_hash):
            logger.warning('QR signature mismatch (possible tampering), signed_at=%s', timestamp)
            raise SignatureInvalidError()

        now = int(self.clock())
        age = now - timestamp
        if age < -self.max_clock_skew_seconds:
            logger.warning('QR token timestamp %s is %ss in the future', timestamp, -age)
            raise SignatureInvalidError('QR code timestamp is in the future')

        if age > self.validity_seconds and not allow_expired:
            raise SignatureExpiredError(age_seconds=age)

        return payload

    def _matches_any_key(self, canonical: str, timestamp: int, received_hash: str) -> bool:
        for secret in [self.secret] + self.previous_secrets:
            expected = self._digest(secret, canonical, timestamp)
            if hmac.compare_digest(expected, received_hash):
                return True
        return False


def get_signature_service() -> SignatureService:
    """Signature service configured for the current app."""
    return SignatureService.from_config()


def loyalty_card_payload(card) -> Dict[str, Any]:
    """QR payload identifying a loyalty card."""
    return {
        'type': QR_TYPE_LOYALTY_CARD,
        'cardId': card.id,
        'cardNumber': card.card_number,
        'customerId': card.customer_id,
        'programId': card.program_id,
        'businessId': card.business_id,
    }
