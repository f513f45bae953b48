"""Notification parsers: field extraction, normalization and assembly"""

from .base import DocumentParser, ValueNormalizer
from .html_parser import FieldExtractor
from .assembler import TransactionAssembler

__all__ = ['DocumentParser', 'ValueNormalizer', 'FieldExtractor', 'TransactionAssembler']
