"""Abstract base classes and value normalization for notification parsers."""

import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from ..models.core import (
    SENDER_TIMEZONE,
    DateTimeStatus,
    ExtractedFields,
    NormalizedDateTime,
    NotifierConfig,
)


logger = logging.getLogger(__name__)


class DocumentParser(ABC):
    """Abstract base class for notification document parsers"""

    def __init__(self, config: Optional[NotifierConfig] = None):
        self.config = config or NotifierConfig()

    @abstractmethod
    def extract(self, markup: str) -> ExtractedFields:
        """Extract raw field values from the document markup"""
        pass

    @abstractmethod
    def get_field_labels(self) -> Dict[str, List[str]]:
        """Return the label synonyms recognized for each field key"""
        pass


class ValueNormalizer:
    """Converts raw notification text into typed values.

    The sender writes amounts in whole dong and uses ``.`` and ``,``
    interchangeably as thousands separators, so neither is ever read as a
    decimal point. Timestamps follow ``DD/MM/YYYY, HH:MM:SS`` in UTC+7.
    """

    DATE_TIME_SEPARATOR = ', '

    def normalize_amount(self, amount_str: Optional[str]) -> int:
        """Convert an amount such as ``"+2.000 VND"`` to a signed integer.

        Returns 0 for empty or non-numeric input.
        """
        if not amount_str:
            return 0

        amount_str = str(amount_str)
        is_negative = '-' in amount_str

        cleaned = re.sub(r'[^\d.,]', '', amount_str)
        if '.' in cleaned or ',' in cleaned:
            cleaned = re.sub(r'[.,]', '', cleaned)

        try:
            amount = int(cleaned) if cleaned else 0
        except ValueError:
            amount = 0

        return -amount if is_negative else amount

    def normalize_datetime(self, date_str: Optional[str]) -> NormalizedDateTime:
        """Parse ``DD/MM/YYYY, HH:MM[:SS]`` as a UTC+7 timestamp.

        Never raises: unparseable input yields the current time tagged
        ``FALLBACK_DEFAULTED`` so callers can flag the record.
        """
        try:
            value = self._parse_datetime(date_str)
            return NormalizedDateTime(value=value, status=DateTimeStatus.PARSED)
        except (ValueError, TypeError) as e:
            logger.debug(f"Falling back to current time for '{date_str}': {e}")
            return NormalizedDateTime(
                value=datetime.now(SENDER_TIMEZONE),
                status=DateTimeStatus.FALLBACK_DEFAULTED
            )

    def _parse_datetime(self, date_str: Optional[str]) -> datetime:
        if not date_str or not str(date_str).strip():
            raise ValueError("Date string cannot be empty")

        date_str = ' '.join(str(date_str).split())
        if self.DATE_TIME_SEPARATOR not in date_str:
            raise ValueError(f"Missing date/time separator in: {date_str}")

        date_part, time_part = date_str.split(self.DATE_TIME_SEPARATOR, 1)
        date_parts = date_part.strip().split('/')
        time_parts = time_part.strip().split(':')

        if len(date_parts) != 3:
            raise ValueError(f"Expected DD/MM/YYYY, got: {date_part}")
        if len(time_parts) not in (2, 3):
            raise ValueError(f"Expected HH:MM[:SS], got: {time_part}")
        if len(time_parts) == 2:
            time_parts.append('0')

        components = date_parts + time_parts
        if not all(part.isdigit() for part in components):
            raise ValueError(f"Non-numeric date/time component in: {date_str}")

        day, month, year, hour, minute, second = (
            part.zfill(2) for part in components
        )
        return datetime.strptime(
            f"{year}-{month}-{day} {hour}:{minute}:{second}",
            "%Y-%m-%d %H:%M:%S"
        ).replace(tzinfo=SENDER_TIMEZONE)

    def clean_text(self, value: Optional[str]) -> str:
        """Collapse runs of whitespace and trim"""
        if not value:
            return ""
        return ' '.join(str(value).split())

    def clean_transaction_code(self, value: Optional[str]) -> str:
        """Keep only ASCII letters, digits and underscores"""
        if not value:
            return ""
        return re.sub(r'[^\w]', '', str(value), flags=re.ASCII)
