"""Personal invoice reconciliation."""

from fairshare.invoices.reconciler import (
    InvoiceNotFoundError,
    InvoiceReconciler,
    derive_invoice_status,
)

__all__ = ["InvoiceNotFoundError", "InvoiceReconciler", "derive_invoice_status"]
