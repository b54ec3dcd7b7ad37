"""
SQLAlchemy ORM Models
Database table definitions using SQLAlchemy ORM.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Integer, BigInteger, DateTime, ForeignKey, Numeric, Text, JSON, Index,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp used for all created/updated columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UploadSession(Base):
    """
    Chunked upload session.

    Tracks which chunk indices have been accepted for one file and the
    lifecycle status: pending -> uploading -> completed | failed.
    """
    __tablename__ = 'upload_sessions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    token = Column(String(64), unique=True, index=True, nullable=False,
                   comment='Opaque session token exposed to clients')

    # Declared file attributes
    original_name = Column(String(512), nullable=False, index=True,
                           comment='Filename declared by the client')
    stored_filename = Column(String(255), unique=True, nullable=False,
                             comment='Collision-resistant name of the assembled object')
    size = Column(BigInteger, nullable=False, comment='Declared total size in bytes')
    mime_type = Column(String(255), nullable=False)
    chunk_size = Column(Integer, nullable=True, comment='Chunk size advertised to clients')

    # Progress
    total_chunks = Column(Integer, nullable=False)
    uploaded_chunks = Column(Integer, nullable=False, default=0)
    chunk_indices = Column(JSON, nullable=False, default=list,
                           comment='Sorted list of accepted chunk indices')

    # Completion
    checksum = Column(String(64), nullable=True, comment='SHA-256 of the assembled file')
    final_path = Column(String(1024), nullable=True, comment='Store key of the assembled file')
    status = Column(String(20), nullable=False, default='pending', index=True)
    error_message = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow, index=True)

    def __repr__(self):
        return f"<UploadSession(id={self.id}, token={self.token}, status={self.status})>"


class ImportRun(Base):
    """
    CSV import run.

    One row per import invocation with the final counters and the
    row-level diagnostics collected while streaming.
    """
    __tablename__ = 'import_runs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    filename = Column(String(512), nullable=False)
    status = Column(String(20), nullable=False, default='processing', index=True)

    # Counters
    total_rows = Column(Integer, nullable=False, default=0)
    imported = Column(Integer, nullable=False, default=0)
    updated = Column(Integer, nullable=False, default=0)
    invalid = Column(Integer, nullable=False, default=0)
    duplicates = Column(Integer, nullable=False, default=0)

    # Diagnostics
    row_errors = Column(JSON, nullable=False, default=list,
                        comment='Ordered list of {row, errors} entries')
    error_message = Column(Text, nullable=True, comment='General failure message')

    # Timestamps
    started_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<ImportRun(id={self.id}, filename={self.filename}, status={self.status})>"


class Product(Base):
    """
    Catalog product keyed by SKU.
    """
    __tablename__ = 'products'

    id = Column(Integer, primary_key=True, autoincrement=True)
    sku = Column(String(255), unique=True, index=True, nullable=False)

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    category = Column(String(255), nullable=True, index=True)
    stock = Column(Integer, nullable=False, default=0)

    # Asset linking
    pending_asset_name = Column(String(255), nullable=True, index=True,
                                comment='Asset filename waiting for a completed upload')
    primary_asset_id = Column(Integer, ForeignKey('assets.id', ondelete='SET NULL'),
                              nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Product(id={self.id}, sku={self.sku})>"


class Asset(Base):
    """
    File derived from a completed upload and attached to an owning record.

    The owner is a tagged reference (owner_kind, owner_id) rather than a
    foreign key so other record kinds can own assets later.
    """
    __tablename__ = 'assets'

    id = Column(Integer, primary_key=True, autoincrement=True)
    upload_id = Column(Integer, ForeignKey('upload_sessions.id', ondelete='CASCADE'),
                       nullable=False, index=True)

    owner_kind = Column(String(50), nullable=False)
    owner_id = Column(Integer, nullable=False)

    variant = Column(String(20), nullable=False, default='original')
    path = Column(String(1024), nullable=False)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index('idx_assets_owner', 'owner_kind', 'owner_id'),
        UniqueConstraint('upload_id', 'owner_kind', 'owner_id', 'variant',
                         name='uq_assets_upload_owner_variant'),
    )

    def __repr__(self):
        return f"<Asset(id={self.id}, owner={self.owner_kind}:{self.owner_id}, variant={self.variant})>"
