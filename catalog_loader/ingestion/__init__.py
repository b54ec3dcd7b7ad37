"""
Data Ingestion Package
Streaming CSV import of catalog products.
"""

from .csv_reader import CsvRow, CsvStreamReader, detect_encoding
from .csv_processor import CSVImportPipeline, ImportStats

__all__ = ["CsvRow", "CsvStreamReader", "detect_encoding", "CSVImportPipeline", "ImportStats"]
