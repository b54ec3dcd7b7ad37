"""
Catalog Loader
Resumable chunked uploads and streaming CSV import into a product catalog.
"""

__version__ = "0.1.0"
