"""
Two-Stage Validation Pipeline

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Type checking, required fields, formats, positive amounts
- Done by the pydantic request models before anything reaches here

STAGE 2 - SEMANTIC VALIDATION:
- Absurd amount detection
- Future date detection
- Recurrence consistency
- Invoice ownership for expenses linked to an invoice
- This catches logically impossible or suspicious requests

IMPORTANT: Validation NEVER silently fixes issues.
Errors block the request; warnings are reported alongside the result.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fairshare.config import get_settings
from fairshare.errors import InvalidRequestError
from fairshare.models.expense import ExpenseCreateRequest
from fairshare.models.invoice import InvoiceCreateRequest, PaymentCreateRequest
from fairshare.models.validation import ValidationIssue, ValidationResult
from fairshare.services.storage import PaymentStorageInterface


class ExpenseRequestValidator:
    """
    Semantic checks for expense, invoice and payment requests.

    Stage 1 is the request model itself; this class is stage 2.
    """

    def __init__(
        self,
        payment_storage: Optional[PaymentStorageInterface] = None,
    ):
        """
        Initialize validator.

        Args:
            payment_storage: Storage used to check invoice ownership.
                             If None, ownership checks are skipped.
        """
        self._storage = payment_storage
        self._settings = get_settings().app

    def _check_amount(self, field: str, amount: Decimal) -> list[ValidationIssue]:
        max_amount = self._settings.max_expense_amount
        if amount > max_amount:
            return [ValidationIssue(
                field=field,
                issue_type="suspicious_value",
                message=f"Amount ({amount:,.2f}) exceeds the maximum of {max_amount:,.2f}",
                severity="error",
                suggested_fix="Please verify this amount is correct",
            )]
        return []

    def _check_date(self, field: str, value: date) -> list[ValidationIssue]:
        max_future_days = self._settings.future_date_tolerance_days
        max_future_date = date.today() + timedelta(days=max_future_days)
        if value > max_future_date:
            return [ValidationIssue(
                field=field,
                issue_type="future_date",
                message=f"Date ({value}) is more than {max_future_days} days in the future",
                severity="error",
                suggested_fix="Please verify the date is correct",
            )]
        return []

    def _check_recurrence(self, request: ExpenseCreateRequest) -> list[ValidationIssue]:
        issues = []

        if request.is_recurring and request.recurrence_interval is None:
            issues.append(ValidationIssue(
                field="recurrence_interval",
                issue_type="missing",
                message="Recurring expenses need a recurrence interval",
                severity="error",
                suggested_fix="Choose daily, weekly, monthly or yearly",
            ))

        if not request.is_recurring and request.recurrence_interval is not None:
            issues.append(ValidationIssue(
                field="recurrence_interval",
                issue_type="inconsistent",
                message="A recurrence interval was given for a non-recurring expense",
                severity="error",
                suggested_fix="Mark the expense as recurring or drop the interval",
            ))

        if not request.is_recurring and request.recurrence_day is not None:
            issues.append(ValidationIssue(
                field="recurrence_day",
                issue_type="inconsistent",
                message="Recurrence day is ignored for a non-recurring expense",
                severity="warning",
            ))

        return issues

    async def _check_invoice_owner(
        self,
        invoice_id: Optional[UUID],
        user_id: UUID,
    ) -> list[ValidationIssue]:
        if invoice_id is None or self._storage is None:
            return []

        invoice = await self._storage.get_invoice(invoice_id)
        if invoice is None or invoice.user_id != user_id:
            return [ValidationIssue(
                field="invoice_id",
                issue_type="invalid_reference",
                message="Invoice not found",
                severity="error",
            )]
        return []

    @staticmethod
    def _result(issues: list[ValidationIssue]) -> ValidationResult:
        return ValidationResult(
            is_valid=not any(issue.severity == "error" for issue in issues),
            issues=issues,
        )

    async def validate_expense(
        self,
        request: ExpenseCreateRequest,
        user_id: UUID,
    ) -> ValidationResult:
        """Semantic validation of a new group expense."""
        issues = []
        issues.extend(self._check_amount("amount", request.amount))
        issues.extend(self._check_date("expense_date", request.expense_date))
        issues.extend(self._check_recurrence(request))
        issues.extend(await self._check_invoice_owner(request.invoice_id, user_id))
        return self._result(issues)

    def validate_invoice(self, request: InvoiceCreateRequest) -> ValidationResult:
        """Semantic validation of a new personal invoice."""
        issues = []
        issues.extend(self._check_amount("amount", request.amount))
        issues.extend(self._check_date("invoice_date", request.invoice_date))
        return self._result(issues)

    async def validate_payment(
        self,
        request: PaymentCreateRequest,
        user_id: UUID,
    ) -> ValidationResult:
        """Semantic validation of a new personal payment."""
        issues = []
        issues.extend(self._check_amount("amount_paid", request.amount_paid))
        issues.extend(self._check_date("payment_date", request.payment_date))
        issues.extend(await self._check_invoice_owner(request.invoice_id, user_id))
        return self._result(issues)

    @staticmethod
    def ensure_valid(result: ValidationResult) -> ValidationResult:
        """
        Raise if the result carries any error-level issue.

        Raises:
            InvalidRequestError: With every issue attached
        """
        if result.has_errors:
            first_error = next(issue for issue in result.issues if issue.severity == "error")
            raise InvalidRequestError(
                first_error.message,
                issues=[issue.model_dump() for issue in result.issues],
            )
        return result
