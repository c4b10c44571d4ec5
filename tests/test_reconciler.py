"""Tests for invoice status reconciliation."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from fairshare.invoices import InvoiceNotFoundError, InvoiceReconciler, derive_invoice_status
from fairshare.models.audit import AuditEventType
from fairshare.models.invoice import Invoice, InvoiceStatus, Payment, PaymentStatus, PaymentType


def payment(amount: str, status=PaymentStatus.COMPLETED, invoice_id=None, user_id=None) -> Payment:
    return Payment(
        user_id=user_id or uuid4(),
        invoice_id=invoice_id,
        payment_date=date(2024, 5, 2),
        payment_type=PaymentType.TRANSFER,
        amount_paid=Decimal(amount),
        status=status,
    )


class TestDeriveInvoiceStatus:
    """Tests for derive_invoice_status."""

    def test_no_payments_is_pending(self):
        """Test an invoice with nothing paid."""
        assert derive_invoice_status(Decimal("100"), []) == InvoiceStatus.PENDING

    def test_partial(self):
        """Test a partially paid invoice."""
        assert derive_invoice_status(Decimal("100"), [payment("40")]) == InvoiceStatus.PARTIAL

    def test_exact_and_over_payment_is_paid(self):
        """Test that paying the full amount or more marks it paid."""
        assert derive_invoice_status(Decimal("100"), [payment("60"), payment("40")]) == InvoiceStatus.PAID
        assert derive_invoice_status(Decimal("100"), [payment("150")]) == InvoiceStatus.PAID

    def test_only_completed_payments_count(self):
        """Test that pending and failed payments are ignored."""
        payments = [
            payment("100", status=PaymentStatus.PENDING),
            payment("100", status=PaymentStatus.FAILED),
        ]
        assert derive_invoice_status(Decimal("100"), payments) == InvoiceStatus.PENDING

        payments.append(payment("10"))
        assert derive_invoice_status(Decimal("100"), payments) == InvoiceStatus.PARTIAL


class TestInvoiceReconciler:
    """Tests for InvoiceReconciler against the in-memory store."""

    async def test_reconcile_updates_status(self, payments, audit_logger, audit_storage):
        """Test status follows the payments recorded so far."""
        user_id = uuid4()
        invoice = await payments.save_invoice(Invoice(
            user_id=user_id,
            vendor_name="UTE",
            amount=Decimal("2500"),
            invoice_date=date(2024, 5, 1),
        ))
        reconciler = InvoiceReconciler(payments, audit_logger)

        await payments.save_payment(payment("1000", invoice_id=invoice.id, user_id=user_id))
        updated = await reconciler.reconcile_invoice_status(invoice.id)
        assert updated.status == InvoiceStatus.PARTIAL

        await payments.save_payment(payment("1500", invoice_id=invoice.id, user_id=user_id))
        updated = await reconciler.reconcile_invoice_status(invoice.id)
        assert updated.status == InvoiceStatus.PAID

        events = await audit_storage.get_events_by_entity("invoice", invoice.id)
        assert [e.details["new_status"] for e in events] == ["partial", "paid"]
        assert all(e.event_type == AuditEventType.INVOICE_STATUS_UPDATED for e in events)

    async def test_reconcile_is_idempotent(self, payments, audit_logger, audit_storage):
        """Test that reconciling twice changes nothing the second time."""
        invoice = await payments.save_invoice(Invoice(
            user_id=uuid4(),
            vendor_name="Antel",
            amount=Decimal("900"),
            invoice_date=date(2024, 5, 1),
        ))
        await payments.save_payment(payment("900", invoice_id=invoice.id))
        reconciler = InvoiceReconciler(payments, audit_logger)

        first = await reconciler.reconcile_invoice_status(invoice.id)
        second = await reconciler.reconcile_invoice_status(invoice.id)

        assert first.status == second.status == InvoiceStatus.PAID
        events = await audit_storage.get_events_by_entity("invoice", invoice.id)
        assert len(events) == 1

    async def test_pending_payment_leaves_invoice_pending(self, payments):
        """Test that a pending payment does not move the status."""
        invoice = await payments.save_invoice(Invoice(
            user_id=uuid4(),
            vendor_name="OSE",
            amount=Decimal("300"),
            invoice_date=date(2024, 5, 1),
        ))
        await payments.save_payment(payment("300", status=PaymentStatus.PENDING, invoice_id=invoice.id))

        updated = await InvoiceReconciler(payments).reconcile_invoice_status(invoice.id)
        assert updated.status == InvoiceStatus.PENDING

    async def test_missing_invoice(self, payments):
        """Test reconciling an unknown invoice."""
        with pytest.raises(InvoiceNotFoundError):
            await InvoiceReconciler(payments).reconcile_invoice_status(uuid4())


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
