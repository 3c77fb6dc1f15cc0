"""
Order and invoice numbering.

Format: PREFIX-YYYYMMDD-NNNNNN (UTC date, 6-digit sequence), e.g.
ORD-20250314-000042. A number is assigned once, when the document is
persisted, and never changes.

Uniqueness is ultimately the database's job (unique index). The generator
draws a candidate from a sequence source, hands it to a persist callback,
and draws again if the callback reports a collision.
"""

import logging
import re
import secrets
from datetime import datetime
from typing import Callable, Protocol, TypeVar

from clients.valkey_client import ValkeyClient
from core.exceptions import DuplicateNumberCollision
from utils.timezone import to_utc

logger = logging.getLogger(__name__)

ORDER_PREFIX = "ORD"
INVOICE_PREFIX = "INV"

MAX_SEQUENCE = 999999
NUMBER_PATTERN = re.compile(r"^(?P<prefix>[A-Z]+)-(?P<day>\d{8})-(?P<seq>\d{6})$")

T = TypeVar("T")


class SequenceSource(Protocol):
    """Supplies the numeric suffix for a prefix on a given UTC day."""

    def next_value(self, prefix: str, day: str) -> int: ...


class RandomSequence:
    """Six random digits. Collisions are possible and left to the retry loop."""

    def next_value(self, prefix: str, day: str) -> int:
        return secrets.randbelow(MAX_SEQUENCE + 1)


class ValkeySequence:
    """
    Atomic per-day counter in Valkey.

    INCR is atomic across processes, so concurrent checkouts never draw the
    same value. Keys expire two days after their first use.
    """

    def __init__(self, valkey: ValkeyClient, ttl_seconds: int = 2 * 24 * 3600):
        self.valkey = valkey
        self.ttl_seconds = ttl_seconds

    def next_value(self, prefix: str, day: str) -> int:
        """
        Raises:
            ValueError: More than 999999 documents for this prefix today
        """
        key = f"docseq:{prefix}:{day}"
        value = self.valkey.incr_with_ttl(key, self.ttl_seconds)
        if value > MAX_SEQUENCE:
            raise ValueError(f"Sequence exhausted for {prefix} on {day}")
        return value


class DocumentNumberGenerator:
    """
    Generates and assigns collision-free document numbers.

    Usage:
        numbers = DocumentNumberGenerator(ValkeySequence(valkey))
        order = numbers.assign(ORDER_PREFIX, now, lambda n: insert_order(n))
    """

    def __init__(self, sequence: SequenceSource, max_attempts: int = 5):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.sequence = sequence
        self.max_attempts = max_attempts

    def generate(self, prefix: str, now: datetime) -> str:
        """Draw one candidate number for `prefix` on the UTC day of `now`."""
        day = to_utc(now).strftime("%Y%m%d")
        return f"{prefix}-{day}-{self.sequence.next_value(prefix, day):06d}"

    def assign(self, prefix: str, now: datetime, persist: Callable[[str], T]) -> T:
        """
        Persist a document under a fresh number, retrying on collisions.

        Args:
            prefix: ORDER_PREFIX or INVOICE_PREFIX
            now: Creation time; its UTC date goes into the number
            persist: Stores the document under the given number. Must raise
                DuplicateNumberCollision if the number is already taken.

        Returns:
            Whatever persist returns.

        Raises:
            DuplicateNumberCollision: Every attempt collided
        """
        last_error: DuplicateNumberCollision | None = None

        for attempt in range(1, self.max_attempts + 1):
            number = self.generate(prefix, now)
            try:
                return persist(number)
            except DuplicateNumberCollision as e:
                last_error = e
                logger.warning(
                    f"Number collision on {number} (attempt {attempt}/{self.max_attempts})"
                )

        raise DuplicateNumberCollision(last_error.number, attempts=self.max_attempts)
