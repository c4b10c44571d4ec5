"""
Invoice/Payment Reconciler

Keeps an invoice's stored status in line with the completed payments
recorded against it. The status is derived, never trusted from input.
"""

from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from fairshare.audit import AuditLogger
from fairshare.errors import ResourceNotFoundError
from fairshare.models.invoice import Invoice, InvoiceStatus, Payment, PaymentStatus
from fairshare.services.storage import PaymentStorageInterface


class InvoiceNotFoundError(ResourceNotFoundError):
    default_message = "Invoice not found"


def derive_invoice_status(invoice_amount: Decimal, payments: Iterable[Payment]) -> InvoiceStatus:
    """
    Status implied by the completed payments against an invoice.

    Pending and failed payments never count.
    """
    total_paid = sum(
        (p.amount_paid for p in payments if p.status == PaymentStatus.COMPLETED),
        Decimal("0"),
    )
    if total_paid >= invoice_amount:
        return InvoiceStatus.PAID
    if total_paid > 0:
        return InvoiceStatus.PARTIAL
    return InvoiceStatus.PENDING


class InvoiceReconciler:
    """Re-derives and persists invoice status after payments change."""

    def __init__(
        self,
        payments: PaymentStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._payments = payments
        self._audit = audit_logger or AuditLogger()

    async def reconcile_invoice_status(self, invoice_id: UUID) -> Invoice:
        """
        Recompute the invoice status from its payments.

        Idempotent: the stored status is only written when it differs
        from the derived one.

        Raises:
            InvoiceNotFoundError: If the invoice doesn't exist
        """
        invoice = await self._payments.get_invoice(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError()

        payments = await self._payments.list_payments_for_invoice(invoice_id)
        status = derive_invoice_status(invoice.amount, payments)
        if status == invoice.status:
            return invoice

        updated = await self._payments.update_invoice_status(invoice_id, status)
        total_paid = sum(
            (p.amount_paid for p in payments if p.status == PaymentStatus.COMPLETED),
            Decimal("0"),
        )
        await self._audit.log_invoice_status_updated(
            invoice_id=invoice_id,
            old_status=invoice.status.value,
            new_status=status.value,
            total_paid=str(total_paid),
        )
        return updated
