"""
inventory_services.receivables -- Accounts receivable raised by sales.

Responsibility:
    Decide whether a completed sale leaves money owed (paid by a credit
    method, or converted from a sales order) and record the receivable
    for the sale total.

Architecture position:
    Services -- writes through the OfflineActionQueue when one is given,
    so a receivable raised while the remote store is unreachable is kept
    in the offline log and replayed later; otherwise straight through the
    DataAccessLayer.

Invariants enforced:
    - A sale needs a receivable when its payment method is one of
      ``receivables.credit_payment_methods`` (case-insensitive) or it was
      converted from a sales order.
    - Customer is "Customer" for converted sales, "Walk-in Customer"
      otherwise. Due date is now plus ``receivables.terms_days``.
    - Description ``Payment for POS Sale <sale id>``, invoice number
      ``POS-<sale id>``, status ``outstanding``.
    - One idempotency key per sale, so a replayed receivable is not
      stored twice.

Failure modes:
    - Never raised. A failed write is logged and returned in
      ReceivableResult.error; the sale itself stands.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from uuid import uuid4

from inventory_config.schema import ReceivablesConfig
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.entities import OfflineAction, Receivable, Sale
from inventory_kernel.exceptions import InventoryCoreError
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.utils.idempotency import generate_idempotency_key
from inventory_services.data_access import DataAccessLayer
from inventory_services.offline_queue import OfflineActionQueue

logger = get_logger("services.receivables")

CONVERTED_CUSTOMER_NAME = "Customer"
WALK_IN_CUSTOMER_NAME = "Walk-in Customer"


@dataclass(frozen=True)
class ReceivableResult:
    """
    Outcome of ``raise_for_sale``.

    ``receivable`` is the stored record, ``queued`` the offline action
    holding it when the store was unreachable. Both are None when the sale
    owes nothing or the write failed (``error``).
    """

    required: bool
    receivable: Receivable | None = None
    queued: OfflineAction | None = None
    error: InventoryCoreError | None = None


class ReceivablesService:
    def __init__(
        self,
        data_access: DataAccessLayer,
        config: ReceivablesConfig | None = None,
        clock: Clock | None = None,
        queue: OfflineActionQueue | None = None,
    ) -> None:
        self._data_access = data_access
        self._config = config or ReceivablesConfig()
        self._clock = clock or SystemClock()
        self._queue = queue

    def requires_receivable(self, sale: Sale) -> bool:
        method = (sale.payment_method or "").lower()
        return method in self._config.credit_payment_methods or bool(sale.converted_from_order_id)

    def build_receivable(self, sale: Sale) -> Receivable:
        return Receivable(
            id=str(uuid4()),
            customer_name=(
                CONVERTED_CUSTOMER_NAME if sale.converted_from_order_id else WALK_IN_CUSTOMER_NAME
            ),
            amount=sale.total_amount,
            due_at=self._clock.now() + timedelta(days=self._config.terms_days),
            description=f"Payment for POS Sale {sale.id}",
            sale_id=sale.id,
            invoice_number=f"POS-{sale.id}",
        )

    def raise_for_sale(self, sale: Sale) -> ReceivableResult:
        if not self.requires_receivable(sale):
            logger.debug("receivable_not_required", extra={
                "sale_id": sale.id,
                "payment_method": sale.payment_method,
            })
            return ReceivableResult(required=False)

        receivable = self.build_receivable(sale)
        with LogContext.bind(sale_id=sale.id):
            try:
                if self._queue is None:
                    return self._stored(self._data_access.create_receivable(receivable))
                outcome = self._queue.execute_or_enqueue(
                    "create_receivable",
                    receivable.to_dict(),
                    idempotency_key=generate_idempotency_key(
                        self._queue.device_id, "create_receivable", sale.id
                    ),
                )
            except InventoryCoreError as exc:
                logger.warning("receivable_creation_failed", extra={
                    "sale_id": sale.id,
                    "error_code": exc.code,
                    "error": str(exc),
                })
                return ReceivableResult(required=True, error=exc)

            if outcome.executed:
                return self._stored(Receivable.from_dict(outcome.result))
            logger.info("receivable_deferred", extra={
                "sale_id": sale.id,
                "action_id": outcome.queued.id,
            })
            return ReceivableResult(required=True, queued=outcome.queued)

    def _stored(self, receivable: Receivable) -> ReceivableResult:
        logger.info("receivable_created", extra={
            "receivable_id": receivable.id,
            "sale_id": receivable.sale_id,
            "amount": receivable.amount,
            "due_at": receivable.due_at,
        })
        return ReceivableResult(required=True, receivable=receivable)
