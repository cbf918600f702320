"""
PIN verification against a resolved payer.

There is no lockout or throttling of failed attempts; every attempt is
logged and counted so repeated failures are visible in monitoring.
"""
import asyncio
import re

import structlog

from cashless.core.identity import Payer
from cashless.errors import ValidationError
from cashless.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

# ASCII digits only; \d would also accept other Unicode digits
PIN_PATTERN = re.compile(r"[0-9]{4}")


def validate_pin_format(pin: object) -> str:
    """
    Check that pin is exactly four decimal digits.

    Raises:
        ValidationError: If the PIN is malformed
    """
    if not isinstance(pin, str) or PIN_PATTERN.fullmatch(pin) is None:
        metrics.record_pin_verification("malformed")
        raise ValidationError("PIN must be exactly 4 digits")
    return pin


class CredentialVerifier:
    """Checks PINs without blocking the event loop on bcrypt."""

    async def verify_pin(self, account: Payer, pin: str) -> bool:
        """
        Verify pin for account.

        Returns:
            bool: True if the PIN matches the stored hash

        Raises:
            ValidationError: If the PIN is not exactly four digits
        """
        validate_pin_format(pin)

        matched = await asyncio.to_thread(account.verify_pin, pin)

        metrics.record_pin_verification("match" if matched else "mismatch")
        if not matched:
            logger.warning(
                "pin_mismatch",
                payer_kind=account.kind.value,
                payer_id=account.id,
            )
        return matched
