"""
Pytest configuration and shared fixtures
"""

import io

import pytest

from catalog_loader.catalog.assets import AssetLinker
from catalog_loader.catalog.store import SqlCatalogStore
from catalog_loader.db.session import create_db_engine, create_session_factory, init_db
from catalog_loader.ingestion.csv_processor import CSVImportPipeline
from catalog_loader.uploads.engine import ChunkedUploadEngine
from catalog_loader.uploads.storage import LocalChunkStore
from catalog_loader.utils.locks import KeyedLock


@pytest.fixture
def db_engine(tmp_path):
    """File-backed SQLite database so worker threads share one schema."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'catalog.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def chunk_store(tmp_path):
    return LocalChunkStore(tmp_path / "storage")


@pytest.fixture
def catalog(session_factory):
    return SqlCatalogStore(session_factory, locks=KeyedLock())


@pytest.fixture
def asset_linker(session_factory):
    return AssetLinker(session_factory)


@pytest.fixture
def upload_engine(session_factory, chunk_store, asset_linker):
    return ChunkedUploadEngine(
        session_factory=session_factory,
        store=chunk_store,
        asset_linker=asset_linker,
        locks=KeyedLock(),
        chunk_size=4,
    )


@pytest.fixture
def pipeline(session_factory, catalog, asset_linker, chunk_store):
    return CSVImportPipeline(
        session_factory=session_factory,
        catalog=catalog,
        asset_linker=asset_linker,
        chunk_store=chunk_store,
        batch_size=2,
    )


@pytest.fixture
def make_csv():
    """Build a binary CSV stream from header and row lists."""

    def _make(header, rows, line_end="\n"):
        lines = [",".join(header)] + [",".join(row) for row in rows]
        return io.BytesIO((line_end.join(lines) + line_end).encode("utf-8"))

    return _make


@pytest.fixture
def sample_csv_data():
    """Sample CSV data for testing."""
    return b"""sku,name,price,category,stock
SKU-1,Widget,9.99,Tools,5
SKU-2,Gadget,5.00,Tools,
SKU-3,Gizmo,12.50,,3
"""
