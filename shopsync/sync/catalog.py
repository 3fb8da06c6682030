"""
Catalog Reconciler

Upserts feed products by external id, one transaction per product. Re-running
with an identical feed changes nothing but the updated/synced timestamps.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from shopsync.database.models import Product, utcnow
from shopsync.ingestion.source_client import ProductFeedRecord
from shopsync.sync.errors import ReconcileError, StoreUnavailable
from shopsync.sync.unit_of_work import UnitOfWork

logger = structlog.get_logger(__name__)

MUTABLE_FIELDS = (
    "name",
    "description",
    "price",
    "category",
    "brand",
    "image",
    "unit",
    "rating",
    "availability",
    "discount",
)


@dataclass
class ReconcileResult:
    """Outcome of one catalog pass"""
    created: int = 0
    updated: int = 0
    failed: int = 0
    errors: List[ReconcileError] = field(default_factory=list)

    @property
    def synced(self) -> int:
        return self.created + self.updated


def product_fields(record: ProductFeedRecord) -> Dict[str, Any]:
    """Column values a feed record maps to."""
    return {name: getattr(record, name) for name in MUTABLE_FIELDS}


class CatalogReconciler:
    """Keeps the products table in line with the latest feed."""

    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    async def reconcile(self, feed_products: Iterable[ProductFeedRecord]) -> ReconcileResult:
        """
        Upsert every feed product in feed order.

        A failing product is logged and counted; the pass continues.

        Raises:
            StoreUnavailable: If the store stops answering
        """
        result = ReconcileResult()

        for record in feed_products:
            try:
                created = await self._upsert(record)
            except StoreUnavailable as e:
                if not await self.uow.is_reachable():
                    raise
                self._record_failure(result, ReconcileError(record.external_id, str(e)))
                continue
            except (SQLAlchemyError, ValueError, TypeError) as e:
                self._record_failure(result, ReconcileError(record.external_id, str(e)))
                continue

            if created:
                result.created += 1
            else:
                result.updated += 1

        logger.info(
            "Catalog reconciled",
            created=result.created,
            updated=result.updated,
            failed=result.failed,
        )
        return result

    async def _upsert(self, record: ProductFeedRecord) -> bool:
        """Returns True when the product was created."""
        now = utcnow()
        fields = product_fields(record)

        async with self.uow.transaction() as session:
            product = await session.scalar(
                select(Product).where(Product.external_id == record.external_id)
            )

            if product is None:
                session.add(
                    Product(
                        external_id=record.external_id,
                        created_at=now,
                        updated_at=now,
                        last_synced_at=now,
                        **fields,
                    )
                )
                logger.debug("Product created", external_id=record.external_id)
                return True

            for name, value in fields.items():
                setattr(product, name, value)
            product.updated_at = now
            product.last_synced_at = now
            logger.debug("Product updated", external_id=record.external_id)
            return False

    @staticmethod
    def _record_failure(result: ReconcileResult, error: ReconcileError) -> None:
        logger.warning("Product upsert failed", external_id=error.external_id, error=error.reason)
        result.failed += 1
        result.errors.append(error)
