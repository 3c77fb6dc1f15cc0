"""
Invoice service for billing.

Invoices are always generated from orders. They copy the order's amounts
and a snapshot of its lines; the amounts must satisfy the same identity as
the order (total = subtotal - discount + tax + shipping).
"""

import logging
from datetime import timedelta
from uuid import UUID, uuid4

from psycopg2.errors import UniqueViolation
from psycopg2.extras import Json

from clients.postgres_client import PostgresClient, Transaction
from core.audit import AuditLogger, AuditAction
from core.config import PricingConfig
from core.event_bus import EventBus
from core.events import InvoiceIssued, InvoicePaid
from core.exceptions import DuplicateNumberCollision, InvalidStatusTransition
from core.models import Invoice, InvoiceStats, InvoiceStatus, Order, INVOICE_TRANSITIONS
from core.numbering import INVOICE_PREFIX, DocumentNumberGenerator
from core.pricing import verify_identity
from utils.timezone import Clock, now_utc
from utils.user_context import get_current_user_id

logger = logging.getLogger(__name__)


class InvoiceService:
    """Service for invoice operations."""

    def __init__(
        self,
        postgres: PostgresClient,
        audit: AuditLogger,
        numbers: DocumentNumberGenerator,
        event_bus: EventBus | None = None,
        config: PricingConfig | None = None,
        clock: Clock = now_utc,
    ):
        self.postgres = postgres
        self.audit = audit
        self.numbers = numbers
        self.event_bus = event_bus
        self.config = config or PricingConfig()
        self.clock = clock

    def create_for_order(self, order: Order, notes: str | None = None) -> Invoice:
        """
        Generate the invoice for an order.

        Generating twice for the same order returns the existing invoice.

        Args:
            order: Order to bill
            notes: Optional invoice notes

        Returns:
            Invoice in DRAFT status, due `invoice_due_days` after issue

        Raises:
            PricingInvariantViolation: Order amounts don't add up
            DuplicateNumberCollision: No free invoice number after retries
        """
        existing = self.get_for_order(order.id)
        if existing is not None:
            return existing

        verify_identity(
            order.subtotal_cents, order.discount_cents, order.tax_cents,
            order.shipping_cents, order.total_cents,
        )

        items = self.postgres.execute(
            """
            SELECT product_id, quantity, unit_price_cents, total_price_cents
            FROM order_items
            WHERE order_id = %s
            """,
            (order.id,)
        )
        snapshot = [
            {**item, "product_id": str(item["product_id"])}
            for item in items
        ]

        now = self.clock()
        due_at = now + timedelta(days=self.config.invoice_due_days)

        with self.postgres.transaction() as tx:
            invoice = self.numbers.assign(
                INVOICE_PREFIX,
                now,
                lambda number: self._insert(tx, number, order, snapshot, now, due_at, notes),
            )
            self.audit.log_change(
                entity_type="invoice",
                entity_id=invoice.id,
                action=AuditAction.CREATE,
                changes={
                    "created": {
                        "order_id": str(order.id),
                        "invoice_number": invoice.invoice_number,
                        "total_cents": invoice.total_cents
                    }
                },
                db=tx,
            )

        logger.info(f"Invoice {invoice.invoice_number} issued for order {order.order_number}")

        if self.event_bus is not None:
            self.event_bus.publish(InvoiceIssued.create(invoice=invoice))

        return invoice

    def _insert(self, tx: Transaction, invoice_number, order, snapshot, now, due_at, notes) -> Invoice:
        try:
            with tx.savepoint():
                row = tx.execute_returning(
                    """
                    INSERT INTO invoices (
                        id, order_id, merchant_id, invoice_number, status,
                        subtotal_cents, discount_cents, tax_cents, shipping_cents, total_cents,
                        items, issued_at, due_at, notes,
                        created_at, updated_at
                    ) VALUES (
                        %s, %s, %s, %s, %s,
                        %s, %s, %s, %s, %s,
                        %s, %s, %s, %s,
                        %s, %s
                    )
                    RETURNING *
                    """,
                    (
                        uuid4(), order.id, order.merchant_id, invoice_number, InvoiceStatus.DRAFT.value,
                        order.subtotal_cents, order.discount_cents, order.tax_cents,
                        order.shipping_cents, order.total_cents,
                        Json(snapshot), now, due_at, notes,
                        now, now
                    )
                )[0]
        except UniqueViolation as e:
            raise DuplicateNumberCollision(invoice_number) from e

        return Invoice.model_validate(row)

    def get_by_id(self, invoice_id: UUID) -> Invoice | None:
        """
        Get invoice by ID.

        Returns:
            Invoice if found, None otherwise.
        """
        row = self.postgres.execute_single(
            "SELECT * FROM invoices WHERE id = %s",
            (invoice_id,)
        )

        if row is None:
            return None

        return Invoice.model_validate(row)

    def get_for_order(self, order_id: UUID) -> Invoice | None:
        row = self.postgres.execute_single(
            "SELECT * FROM invoices WHERE order_id = %s",
            (order_id,)
        )

        if row is None:
            return None

        return Invoice.model_validate(row)

    def get_owned(self, invoice_id: UUID) -> Invoice:
        """
        Get an invoice issued by the acting merchant.

        Raises:
            ValueError: If not found or issued by another merchant
        """
        invoice = self.get_by_id(invoice_id)
        if invoice is None or invoice.merchant_id != get_current_user_id():
            raise ValueError(f"Invoice {invoice_id} not found")
        return invoice

    def _move(self, current: Invoice, target: InvoiceStatus, set_paid_at: bool = False) -> Invoice:
        """
        Apply a status transition.

        Raises:
            InvalidStatusTransition: Not allowed from the current status
        """
        if target not in INVOICE_TRANSITIONS[current.status]:
            raise InvalidStatusTransition("invoice", current.status.value, target.value)

        now = self.clock()
        paid_at = now if set_paid_at else current.paid_at

        row = self.postgres.execute_returning(
            """
            UPDATE invoices
            SET status = %s, paid_at = %s, updated_at = %s
            WHERE id = %s
            RETURNING *
            """,
            (target.value, paid_at, now, current.id)
        )[0]

        updated = Invoice.model_validate(row)

        self.audit.log_change(
            entity_type="invoice",
            entity_id=current.id,
            action=AuditAction.UPDATE,
            changes={"status": {"old": current.status.value, "new": target.value}}
        )

        return updated

    def send(self, invoice_id: UUID) -> Invoice:
        """Mark an invoice as sent to the customer. Delivery itself happens elsewhere."""
        return self._move(self.get_owned(invoice_id), InvoiceStatus.SENT)

    def mark_paid(self, invoice_id: UUID) -> Invoice:
        """
        Record full payment of an invoice.

        Publishes InvoicePaid, which marks the order paid.
        """
        updated = self._move(self.get_owned(invoice_id), InvoiceStatus.PAID, set_paid_at=True)

        if self.event_bus is not None:
            self.event_bus.publish(InvoicePaid.create(invoice=updated))

        return updated

    def mark_overdue(self, invoice_id: UUID) -> Invoice:
        return self._move(self.get_owned(invoice_id), InvoiceStatus.OVERDUE)

    def cancel(self, invoice_id: UUID) -> Invoice:
        """Cancel an unpaid invoice."""
        return self._move(self.get_owned(invoice_id), InvoiceStatus.CANCELLED)

    def cancel_for_order(self, order_id: UUID) -> Invoice | None:
        """
        Cancel the order's invoice if it is still open.

        Called when the order itself is cancelled, by whichever party
        cancelled it. Paid or already cancelled invoices are returned as is.
        """
        invoice = self.get_for_order(order_id)
        if invoice is None or not invoice.is_open:
            return invoice

        return self._move(invoice, InvoiceStatus.CANCELLED)

    def list_for_merchant(
        self,
        merchant_id: UUID | None = None,
        status: InvoiceStatus | None = None,
        limit: int = 50
    ) -> list[Invoice]:
        """
        List a merchant's invoices, newest first.

        Args:
            merchant_id: Defaults to the acting merchant
            status: Only invoices in this status
            limit: Maximum results
        """
        merchant_id = merchant_id or get_current_user_id()
        params = [merchant_id]
        status_clause = ""
        if status is not None:
            status_clause = "AND status = %s"
            params.append(status.value)
        params.append(limit)

        rows = self.postgres.execute(
            f"""
            SELECT * FROM invoices
            WHERE merchant_id = %s {status_clause}
            ORDER BY created_at DESC
            LIMIT %s
            """,
            tuple(params)
        )

        return [Invoice.model_validate(row) for row in rows]

    def merchant_stats(self, merchant_id: UUID | None = None) -> InvoiceStats:
        """
        Invoice counts and amounts for a merchant.

        Pending invoices are drafts and sent ones; the pending amount is
        what has been billed and not yet paid (sent and overdue).
        """
        merchant_id = merchant_id or get_current_user_id()

        row = self.postgres.execute_single(
            """
            SELECT
                COUNT(*) AS total_invoices,
                COUNT(*) FILTER (WHERE status = 'paid') AS paid_invoices,
                COUNT(*) FILTER (WHERE status IN ('draft', 'sent')) AS pending_invoices,
                COUNT(*) FILTER (WHERE status = 'overdue') AS overdue_invoices,
                COALESCE(SUM(total_cents) FILTER (WHERE status = 'paid'), 0) AS total_revenue_cents,
                COALESCE(SUM(total_cents) FILTER (WHERE status IN ('sent', 'overdue')), 0) AS pending_amount_cents
            FROM invoices
            WHERE merchant_id = %s
            """,
            (merchant_id,)
        )

        return InvoiceStats.model_validate(row)
