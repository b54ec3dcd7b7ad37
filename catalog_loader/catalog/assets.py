"""
Asset Linking
Resolves completed uploads by their declared filename and attaches them
to catalog records, including records that named the file before it
finished uploading.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from catalog_loader.db.models import Asset, Product, UploadSession
from catalog_loader.db.session import session_scope
from catalog_loader.errors import ResourceNotFoundError, UploadConflictError
from catalog_loader.models.upload import UploadSessionInfo, UploadStatus

logger = logging.getLogger(__name__)

ORIGINAL_VARIANT = "original"


class OwnerKind(str, Enum):
    """Record kinds that can own assets."""

    PRODUCT = "product"


@dataclass(frozen=True)
class AssetOwner:
    """Tagged reference to the record owning an asset."""

    kind: OwnerKind
    owner_id: int

    @classmethod
    def product(cls, product_id: int) -> "AssetOwner":
        return cls(kind=OwnerKind.PRODUCT, owner_id=product_id)


class AssetLinker:
    """
    Links completed uploads to catalog records.

    Linking is idempotent: attaching the same upload to the same owner
    twice leaves a single asset.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def find_completed_upload_by_original_name(self, name: str) -> Optional[UploadSessionInfo]:
        """Most recent completed upload declared under `name`."""
        with session_scope(self.session_factory) as session:
            upload = (
                session.query(UploadSession)
                .filter(
                    UploadSession.original_name == name,
                    UploadSession.status == UploadStatus.COMPLETED.value,
                )
                .order_by(UploadSession.id.desc())
                .first()
            )
            return UploadSessionInfo.model_validate(upload) if upload else None

    def link_asset_to_record(self, record_key: str, upload_id: int) -> bool:
        """
        Attach a completed upload to the product with SKU `record_key`.

        Returns True if a new asset was created, False if it already existed.
        Raises ResourceNotFoundError for unknown products or uploads and
        UploadConflictError if the upload is not completed.
        """
        with session_scope(self.session_factory) as session:
            product = (
                session.query(Product)
                .filter(Product.sku == record_key)
                .with_for_update()
                .first()
            )
            if product is None:
                raise ResourceNotFoundError("Product", record_key)

            upload = session.get(UploadSession, upload_id)
            if upload is None:
                raise ResourceNotFoundError("Upload", upload_id)

            return self._attach(session, AssetOwner.product(product.id), product, upload)

    def link_pending_records(self, upload_id: int) -> int:
        """
        Link every product waiting on this upload's filename.

        Returns the number of products linked. Failures are logged per
        product and do not stop the others.
        """
        with session_scope(self.session_factory) as session:
            upload = session.get(UploadSession, upload_id)
            if upload is None:
                raise ResourceNotFoundError("Upload", upload_id)
            original_name = upload.original_name
            skus: List[str] = [
                sku
                for (sku,) in session.query(Product.sku)
                .filter(Product.pending_asset_name == original_name)
                .all()
            ]

        count = 0
        for sku in skus:
            try:
                self.link_asset_to_record(sku, upload_id)
                count += 1
            except (ResourceNotFoundError, UploadConflictError, SQLAlchemyError) as e:
                logger.error(f"Failed to link pending product {sku} to upload {upload_id}: {e}")

        if count:
            logger.info(f"Linked {count} pending products to upload {original_name}")
        return count

    def assets_for(self, owner: AssetOwner) -> List[Asset]:
        with session_scope(self.session_factory) as session:
            return (
                session.query(Asset)
                .filter(Asset.owner_kind == owner.kind.value, Asset.owner_id == owner.owner_id)
                .order_by(Asset.id)
                .all()
            )

    def _attach(
        self, session: Session, owner: AssetOwner, product: Product, upload: UploadSession
    ) -> bool:
        if upload.status != UploadStatus.COMPLETED.value:
            raise UploadConflictError(
                "Upload is not complete", details={"upload_id": upload.id, "status": upload.status}
            )

        asset = (
            session.query(Asset)
            .filter(
                Asset.upload_id == upload.id,
                Asset.owner_kind == owner.kind.value,
                Asset.owner_id == owner.owner_id,
                Asset.variant == ORIGINAL_VARIANT,
            )
            .first()
        )
        created = asset is None
        if created:
            asset = Asset(
                upload_id=upload.id,
                owner_kind=owner.kind.value,
                owner_id=owner.owner_id,
                variant=ORIGINAL_VARIANT,
                path=upload.final_path,
            )
            session.add(asset)
            session.flush()
            logger.info(f"Attached upload {upload.original_name} to product {product.sku}")

        product.primary_asset_id = asset.id
        product.pending_asset_name = None
        return created
