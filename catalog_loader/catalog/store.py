"""
Catalog Store
Upsert-by-SKU persistence for catalog records.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, ContextManager, Dict, Iterator, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from catalog_loader.db.models import Product
from catalog_loader.db.session import session_scope
from catalog_loader.errors import DuplicateRecordError, ResourceNotFoundError
from catalog_loader.models.product import CatalogRecord, UpsertOutcome
from catalog_loader.utils.locks import KeyedLock, catalog_locks

logger = logging.getLogger(__name__)

MUTABLE_FIELDS = ("name", "price", "description", "category", "stock", "pending_asset_name")


class CatalogStore(ABC):
    """
    Contract for the catalog the import pipeline writes to.

    Implementations provide lookups, writes and a per-key lock; `upsert`
    composes them into one check-then-write unit per key.
    """

    @abstractmethod
    def find_by_key(self, key: str) -> Optional[CatalogRecord]:
        ...

    @abstractmethod
    def create(self, fields: Dict[str, Any]) -> CatalogRecord:
        """Create a record. Raises DuplicateRecordError if the key exists."""

    @abstractmethod
    def update(self, record: CatalogRecord, fields: Dict[str, Any]) -> CatalogRecord:
        ...

    @abstractmethod
    def lock(self, key: str) -> ContextManager[None]:
        """Exclusive section for one key."""

    def upsert(self, key: str, fields: Dict[str, Any]) -> UpsertOutcome:
        """Create the record for `key` or update its mutable fields."""
        with self.lock(key):
            existing = self.find_by_key(key)
            if existing is not None:
                return UpsertOutcome(record=self.update(existing, fields), created=False)

            try:
                return UpsertOutcome(record=self.create({**fields, "sku": key}), created=True)
            except DuplicateRecordError:
                # Another process created it between our check and write
                logger.info(f"Product {key} created concurrently, updating instead")
                existing = self.find_by_key(key)
                if existing is None:
                    raise
                return UpsertOutcome(record=self.update(existing, fields), created=False)


class SqlCatalogStore(CatalogStore):
    """CatalogStore backed by the `products` table."""

    def __init__(self, session_factory: sessionmaker, locks: Optional[KeyedLock] = None):
        self.session_factory = session_factory
        self.locks = locks or catalog_locks

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        with self.locks.hold(f"product:{key}"):
            yield

    def find_by_key(self, key: str) -> Optional[CatalogRecord]:
        with session_scope(self.session_factory) as session:
            product = session.query(Product).filter(Product.sku == key).first()
            return CatalogRecord.model_validate(product) if product else None

    def create(self, fields: Dict[str, Any]) -> CatalogRecord:
        product = Product(sku=fields["sku"], **{k: fields.get(k) for k in MUTABLE_FIELDS})
        if product.stock is None:
            product.stock = 0
        try:
            with session_scope(self.session_factory) as session:
                session.add(product)
                session.flush()
                return CatalogRecord.model_validate(product)
        except IntegrityError as e:
            raise DuplicateRecordError(
                f"Product already exists: {fields['sku']}", details={"sku": fields["sku"]}
            ) from e

    def update(self, record: CatalogRecord, fields: Dict[str, Any]) -> CatalogRecord:
        with session_scope(self.session_factory) as session:
            product = (
                session.query(Product)
                .filter(Product.sku == record.sku)
                .with_for_update()
                .first()
            )
            if product is None:
                raise ResourceNotFoundError("Product", record.sku)

            for name in MUTABLE_FIELDS:
                if name in fields:
                    setattr(product, name, fields[name])
            if product.stock is None:
                product.stock = 0

            session.flush()
            return CatalogRecord.model_validate(product)

    def list_records(self, limit: int = 100, offset: int = 0) -> List[CatalogRecord]:
        with session_scope(self.session_factory) as session:
            products = session.query(Product).order_by(Product.id).offset(offset).limit(limit).all()
            return [CatalogRecord.model_validate(p) for p in products]
