from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from ist.domain.errors import AppError, NotFoundError, StoreUnavailableError
from ist.repositories.document_store import MAX_BATCH_WRITES, DocumentSnapshot, DocumentStore
from ist.repositories.documents import SALES
from ist.services.sales_service import SalesService, day_bounds

log = logging.getLogger("ist.purge")


@dataclass(frozen=True)
class PurgePolicy:
    """How a bulk purge treats stock.

    restore_stock=False closes out the period without touching item
    quantities: sales are removed by unconditional batches. With True each
    sale goes through SalesService.delete_sale, so stock is restored and
    sales whose item no longer exists are left in place.
    """

    restore_stock: bool = False
    chunk_size: int = MAX_BATCH_WRITES


class PurgeService:
    def __init__(
        self,
        store: DocumentStore,
        user_id: str,
        sales_service: SalesService,
        policy: PurgePolicy | None = None,
    ):
        self.store = store
        self.sales_service = sales_service
        self.policy = policy or PurgePolicy()
        self.sales = store.collection(user_id, SALES)

    def purge_sales_in_range(self, start: datetime, end: datetime) -> int:
        """Remove every sale with saleDate in [start, end]; returns how many went."""
        try:
            snaps = self.store.query(
                self.sales.where("saleDate", ">=", start).where("saleDate", "<=", end)
            )
        except StoreUnavailableError as e:
            log.error("purge_query_failed start=%s end=%s error=%s", start, end, e)
            return 0
        if not snaps:
            return 0
        if self.policy.restore_stock:
            removed = self._purge_reconciling(snaps)
        else:
            removed = self._purge_batched(snaps)
        log.info(
            "sales_purged removed=%s matched=%s start=%s end=%s restore_stock=%s",
            removed, len(snaps), start, end, self.policy.restore_stock,
        )
        return removed

    def purge_today(self, today: Optional[date] = None) -> int:
        return self.purge_sales_in_range(*day_bounds(today or date.today()))

    def _purge_batched(self, snaps: list[DocumentSnapshot]) -> int:
        size = max(1, min(int(self.policy.chunk_size), MAX_BATCH_WRITES))
        removed = 0
        for i in range(0, len(snaps), size):
            chunk = snaps[i : i + size]
            batch = self.store.batch()
            for s in chunk:
                batch.delete(s.ref)
            try:
                removed += batch.commit()
            except AppError as e:
                log.warning("purge_chunk_failed offset=%s size=%s error=%s", i, len(chunk), e)
        return removed

    def _purge_reconciling(self, snaps: list[DocumentSnapshot]) -> int:
        removed = 0
        for s in snaps:
            try:
                self.sales_service.delete_sale(s.id)
            except NotFoundError as e:
                log.warning("purge_sale_skipped sale_id=%s reason=%s", s.id, e)
                continue
            except AppError as e:
                log.warning("purge_sale_failed sale_id=%s error=%s", s.id, e)
                continue
            removed += 1
        return removed
