"""Bank notification email ingestion"""

__version__ = "0.1.0"
