"""Label/value field extraction from HTML notification tables."""

import logging
from typing import Dict, List, Optional

from bs4 import BeautifulSoup
from bs4.element import Tag

from .base import DocumentParser, ValueNormalizer
from ..models.core import ExtractedFields, NotifierConfig, TransactionField


logger = logging.getLogger(__name__)

CELL_TAGS = ['td', 'th']


class FieldExtractor(DocumentParser):
    """Finds labelled values in the sender's table layout.

    Each field has one or more literal labels (with and without diacritics).
    When a cell contains a label, the value is taken from a sibling cell in the
    same row or, failing that, from the whole next row: the template places
    values beside or below their label depending on the notification.
    """

    def __init__(self,
                 config: Optional[NotifierConfig] = None,
                 field_labels: Optional[Dict[str, List[str]]] = None):
        super().__init__(config)
        labels = field_labels if field_labels is not None else self.config.field_labels
        self.field_labels: Dict[TransactionField, List[str]] = {
            TransactionField(key): list(values) for key, values in labels.items()
        }
        self.normalizer = ValueNormalizer()

    def get_field_labels(self) -> Dict[str, List[str]]:
        return {field.value: list(labels) for field, labels in self.field_labels.items()}

    def extract(self, markup: str) -> ExtractedFields:
        """Return the first value found for each known field"""
        extracted = ExtractedFields()
        if not markup or not markup.strip():
            return extracted

        soup = BeautifulSoup(markup, 'html.parser')

        for cell in soup.find_all(CELL_TAGS):
            # Layout cells wrap whole nested tables and contain every label
            if cell.find('table') is not None:
                continue

            cell_text = self._cell_text(cell)
            if not cell_text:
                continue

            for field, labels in self.field_labels.items():
                if extracted[field] is not None:
                    continue

                for label in labels:
                    if label not in cell_text:
                        continue
                    value = self._find_value(cell, label)
                    if value:
                        cleaned = self._clean_value(field, value)
                        if cleaned:
                            extracted.set(field, cleaned)
                            break

        found = [field.value for field in TransactionField if extracted[field] is not None]
        logger.debug(f"Extracted fields: {', '.join(found) or 'none'}")
        return extracted

    def _find_value(self, label_cell: Tag, label: str) -> Optional[str]:
        """Locate the value for a label cell: same row first, then next row"""
        row = label_cell.find_parent('tr')
        if row is None:
            return None

        for cell in row.find_all(CELL_TAGS, recursive=False):
            if cell is label_cell:
                continue
            text = self._cell_text(cell)
            if text and text != label and label not in text:
                return text

        next_row = row.find_next_sibling('tr')
        if next_row is not None:
            text = self._cell_text(next_row)
            if text and label not in text:
                return text

        return None

    def _clean_value(self, field: TransactionField, value: str) -> str:
        if field is TransactionField.TRANSACTION_CODE:
            return self.normalizer.clean_transaction_code(value)
        return self.normalizer.clean_text(value)

    def _cell_text(self, element: Tag) -> str:
        return self.normalizer.clean_text(element.get_text(' '))
