"""
Dependency wiring
Builds the shared store, engines and pipeline from settings.
"""

from functools import lru_cache

from catalog_loader.catalog.assets import AssetLinker
from catalog_loader.catalog.store import SqlCatalogStore
from catalog_loader.config.settings import get_settings
from catalog_loader.db.session import get_session_factory
from catalog_loader.ingestion.csv_processor import CSVImportPipeline
from catalog_loader.uploads.client import ChunkedUploader
from catalog_loader.uploads.engine import ChunkedUploadEngine
from catalog_loader.uploads.storage import ChunkStore, LocalChunkStore


@lru_cache()
def get_chunk_store() -> ChunkStore:
    return LocalChunkStore(get_settings().storage_root)


@lru_cache()
def get_asset_linker() -> AssetLinker:
    return AssetLinker(get_session_factory())


@lru_cache()
def get_upload_engine() -> ChunkedUploadEngine:
    return ChunkedUploadEngine(
        session_factory=get_session_factory(),
        store=get_chunk_store(),
        asset_linker=get_asset_linker(),
        chunk_size=get_settings().chunk_size,
    )


def get_import_pipeline() -> CSVImportPipeline:
    """Fresh pipeline per import; run state never leaks between imports."""
    session_factory = get_session_factory()
    return CSVImportPipeline(
        session_factory=session_factory,
        catalog=SqlCatalogStore(session_factory),
        asset_linker=get_asset_linker(),
        chunk_store=get_chunk_store(),
        batch_size=get_settings().import_batch_size,
    )


def get_uploader() -> ChunkedUploader:
    settings = get_settings()
    return ChunkedUploader(
        engine=get_upload_engine(),
        chunk_size=settings.chunk_size,
        max_workers=settings.upload_workers,
        retry_attempts=settings.chunk_retry_attempts,
        retry_delay=settings.chunk_retry_delay,
    )
