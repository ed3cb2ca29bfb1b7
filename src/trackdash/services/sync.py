"""Sequential synchronisation of every active order."""

import asyncio
import logging
from dataclasses import asdict, dataclass, field

from trackdash.config import settings
from trackdash.errors import StoreError
from trackdash.services.reconciler import OrderReconciler, Skipped

logger = logging.getLogger(__name__)


@dataclass
class SyncSummary:
    """Result of a batch sync run."""

    total: int = 0
    success: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    cancelled: bool = False

    def as_dict(self) -> dict:
        return asdict(self)


class BatchSyncDriver:
    """Runs every non-terminal order through the reconciler, one at a time.

    The pacing delay keeps bursts well under the tracking provider's limit,
    independently of the rate limiter inside the gateway.
    """

    def __init__(
        self,
        repository,
        reconciler: OrderReconciler,
        pacing_seconds: float | None = None,
    ):
        self.repository = repository
        self.reconciler = reconciler
        self.pacing_seconds = settings.sync_pacing_seconds if pacing_seconds is None else pacing_seconds

    async def sync_all_active(self, cancel: asyncio.Event | None = None) -> SyncSummary:
        """Reconcile all active orders.

        Raises StoreError only if the active orders cannot be listed; every
        per-order problem is recorded in the summary instead.
        """
        orders = await self.repository.list_non_terminal()
        summary = SyncSummary(total=len(orders))
        logger.info("Starting sync of %d active orders", summary.total)

        for index, order in enumerate(orders):
            if cancel is not None and cancel.is_set():
                logger.info("Sync cancelled after %d of %d orders", index, summary.total)
                summary.cancelled = True
                break

            try:
                outcome = await self.reconciler.reconcile(order)
            except StoreError as e:
                summary.failed += 1
                summary.errors.append(f"{order.order_number}: {e}")
            else:
                if isinstance(outcome, Skipped):
                    summary.failed += 1
                    summary.errors.append(f"{order.order_number}: {outcome.reason}")
                else:
                    summary.success += 1

            if index < len(orders) - 1 and self.pacing_seconds > 0:
                await asyncio.sleep(self.pacing_seconds)

        logger.info(
            "Sync finished: %d succeeded, %d failed of %d",
            summary.success,
            summary.failed,
            summary.total,
        )
        return summary
