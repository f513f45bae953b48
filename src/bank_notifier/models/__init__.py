"""Data models and structures"""

from .core import (
    AssemblyResult,
    AssemblyStatus,
    Cursor,
    CycleResult,
    CycleStatus,
    DateTimeStatus,
    ExtractedFields,
    MessageListing,
    NormalizedDateTime,
    NotifierConfig,
    RawMessage,
    StoreResult,
    TransactionField,
    TransactionRecord,
)

__all__ = [
    'AssemblyResult',
    'AssemblyStatus',
    'Cursor',
    'CycleResult',
    'CycleStatus',
    'DateTimeStatus',
    'ExtractedFields',
    'MessageListing',
    'NormalizedDateTime',
    'NotifierConfig',
    'RawMessage',
    'StoreResult',
    'TransactionField',
    'TransactionRecord',
]
