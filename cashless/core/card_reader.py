"""
Card reader feed consumption.

The reader device reports the most recently observed card together with the
time it was seen. A scan attempt only accepts scans observed at or after the
moment the attempt started, so a card tapped for a previous customer is
never charged for the next order.
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

import structlog

from cashless.errors import ScanTimeout, ValidationError
from cashless.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(moment: datetime) -> datetime:
    """Treat naive timestamps from devices as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


@dataclass(frozen=True)
class CardScan:
    """A card observed by the reader."""

    card_id: str
    scanned_at: datetime


class CardReader(Protocol):
    """Anything that can report the most recent scan."""

    async def latest_scan(self) -> Optional[CardScan]: ...


class CardScanFeed:
    """In-process store of the latest scan pushed by the reader device."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._latest: Optional[CardScan] = None

    def record(self, card_id: str, scanned_at: Optional[datetime] = None) -> CardScan:
        """Store a scan reported by the device."""
        if not isinstance(card_id, str) or not card_id.strip():
            raise ValidationError("Card identifier is required")
        scan = CardScan(
            card_id=card_id.strip(),
            scanned_at=_as_utc(scanned_at) if scanned_at else self._clock(),
        )
        self._latest = scan
        logger.info("card_scan_recorded", card_id=scan.card_id, scanned_at=scan.scanned_at.isoformat())
        return scan

    async def latest_scan(self) -> Optional[CardScan]:
        return self._latest


class ScanAttempt:
    """
    One operator request to read a card.

    Args:
        reader: Source of the most recent scan
        started_at: Start of the attempt; defaults to now
    """

    def __init__(
        self,
        reader: CardReader,
        started_at: Optional[datetime] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.reader = reader
        self._clock = clock
        self.started_at = _as_utc(started_at) if started_at else clock()

    def is_fresh(self, scan: CardScan) -> bool:
        return _as_utc(scan.scanned_at) >= self.started_at

    async def poll(self) -> Optional[CardScan]:
        """Return the latest scan if it happened during this attempt."""
        scan = await self.reader.latest_scan()
        if scan is None:
            return None
        if not self.is_fresh(scan):
            logger.debug(
                "stale_card_scan_ignored",
                card_id=scan.card_id,
                scanned_at=scan.scanned_at.isoformat(),
                attempt_started_at=self.started_at.isoformat(),
            )
            return None
        return scan

    async def wait(self, timeout: float = 10.0, poll_interval: float = 0.5) -> CardScan:
        """
        Poll the reader until a fresh scan arrives.

        Raises:
            ScanTimeout: If no fresh scan arrives within timeout seconds
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            scan = await self.poll()
            if scan is not None:
                metrics.record_card_scan("accepted")
                return scan
            remaining = deadline - loop.time()
            if remaining <= 0:
                metrics.record_card_scan("timeout")
                logger.info("card_scan_timeout", timeout_seconds=timeout)
                raise ScanTimeout(
                    "No card scanned within the scan window", timeout_seconds=timeout
                )
            await asyncio.sleep(min(poll_interval, remaining))
