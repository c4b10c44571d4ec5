"""
Split Engine

Divides a group expense among members and settles individual shares.

CRITICAL: This module decides who owes what. Every rule here is exact
decimal arithmetic; nothing is estimated and nothing is floated.

Rounding rule:
- Every share is rounded DOWN to the currency quantum (0.01)
- The remainder goes to the payer's own share
- So shares always sum exactly to the expense amount, and the payer
  (who already paid in full) absorbs the odd cent instead of a debtor
"""

from datetime import datetime
from decimal import ROUND_DOWN, Decimal
from typing import Optional, Union
from uuid import UUID

import structlog

from fairshare.audit import AuditLogger
from fairshare.errors import (
    FairshareError,
    InvalidRequestError,
    ResourceNotFoundError,
    StateConflictError,
)
from fairshare.models.expense import ComputedSplit, MarkSplitPaidResult, SplitParticipant
from fairshare.models.group import SplitMethod
from fairshare.models.invoice import Payment, PaymentStatus, PaymentType
from fairshare.models.types import CURRENCY_QUANTUM, utcnow
from fairshare.services.storage import ExpenseLedgerInterface, PaymentStorageInterface


logger = structlog.get_logger(__name__)


class NoMembersError(FairshareError):
    """A split was requested for a group with no members."""

    status_code = 500
    default_message = "Cannot split an expense among zero members"


class SplitNotFoundError(ResourceNotFoundError):
    """The split does not exist or does not belong to the expense."""

    default_message = "Split not found"


class AlreadyPaidError(StateConflictError):
    """The split was already settled (possibly by a concurrent request)."""

    default_message = "Already paid"


def resolve_split_method(split_method: Union[SplitMethod, str, None]) -> SplitMethod:
    """Map any value outside the known methods to EQUAL."""
    try:
        return SplitMethod(split_method)
    except ValueError:
        return SplitMethod.EQUAL


def uses_equal_fallback(
    members: list[SplitParticipant],
    split_method: Union[SplitMethod, str, None],
) -> bool:
    """True when a proportional group has no declared income to split by."""
    total_income = sum((m.monthly_income for m in members), Decimal("0"))
    return resolve_split_method(split_method) == SplitMethod.PROPORTIONAL and total_income <= 0


def compute_splits(
    amount: Decimal,
    payer_id: UUID,
    members: list[SplitParticipant],
    split_method: Union[SplitMethod, str, None],
    paid_at: Optional[datetime] = None,
) -> list[ComputedSplit]:
    """
    Compute one split per member for a new expense.

    Args:
        amount: Expense amount, strictly positive
        payer_id: Member who paid the full amount up front
        members: Current group members with their declared incomes
        split_method: Group split method; unknown values mean equal
        paid_at: Settlement time stamped on the payer's split

    Returns:
        Splits in member order. Only the payer's split is paid. A share
        can round down to 0.00 on tiny amounts or zero incomes; it stays
        unpaid but is not counted as debt.

    Raises:
        NoMembersError: members is empty
        InvalidRequestError: non-positive amount, duplicate members,
            or payer not among members
    """
    if not members:
        raise NoMembersError()
    if amount <= 0:
        raise InvalidRequestError("Amount must be greater than zero")

    member_ids = [m.user_id for m in members]
    if len(set(member_ids)) != len(member_ids):
        raise InvalidRequestError("Duplicate member in split")
    if payer_id not in member_ids:
        raise InvalidRequestError("Payer is not a member of the group")

    method = resolve_split_method(split_method)
    total_income = sum((m.monthly_income for m in members), Decimal("0"))

    if method == SplitMethod.PROPORTIONAL and total_income <= 0:
        logger.warning(
            "split_fallback_equal",
            member_count=len(members),
            reason="no income declared",
        )
        method = SplitMethod.EQUAL

    if method == SplitMethod.PROPORTIONAL:
        raw_shares = [amount * m.monthly_income / total_income for m in members]
    else:
        raw_shares = [amount / len(members)] * len(members)

    shares = [share.quantize(CURRENCY_QUANTUM, rounding=ROUND_DOWN) for share in raw_shares]
    payer_index = member_ids.index(payer_id)
    shares[payer_index] += amount - sum(shares, Decimal("0"))

    paid_at = paid_at or utcnow()
    return [
        ComputedSplit(
            user_id=member.user_id,
            amount_owed=share,
            is_paid=member.user_id == payer_id,
            paid_at=paid_at if member.user_id == payer_id else None,
        )
        for member, share in zip(members, shares)
    ]


class SplitEngine:
    """
    Settles splits against the expense ledger.

    The unpaid -> paid transition goes through the ledger's conditional
    update, so of two concurrent settlements exactly one wins.
    """

    def __init__(
        self,
        ledger: ExpenseLedgerInterface,
        payments: Optional[PaymentStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._ledger = ledger
        self._payments = payments
        self._audit = audit_logger or AuditLogger()

    async def mark_split_paid(
        self,
        split_id: UUID,
        expense_id: UUID,
        recorded_by: UUID,
        expense_description: Optional[str] = None,
    ) -> MarkSplitPaidResult:
        """
        Settle one split and record a matching payment.

        The payment row is best effort: if it cannot be written the split
        stays settled, payment is None and the message says so.

        Raises:
            SplitNotFoundError: (split_id, expense_id) does not resolve
            AlreadyPaidError: split already settled, including a lost race
        """
        split = await self._ledger.get_split(split_id, expense_id)
        if split is None:
            raise SplitNotFoundError()
        if split.is_paid:
            raise AlreadyPaidError()

        settled = await self._ledger.mark_split_paid(split_id, expense_id, utcnow())
        if settled is None:
            # Another request settled it between our read and our update
            raise AlreadyPaidError()

        await self._audit.log_split_paid(
            split_id=settled.id,
            expense_id=expense_id,
            amount=str(settled.amount_owed),
            actor_id=recorded_by,
        )

        payment = await self._record_payment(settled.id, settled.amount_owed, recorded_by, expense_description)
        if payment is None:
            message = "Payment registered, but the payment record could not be saved"
        else:
            message = "Payment registered successfully"

        return MarkSplitPaidResult(split=settled, payment=payment, message=message)

    async def _record_payment(
        self,
        split_id: UUID,
        amount: Decimal,
        recorded_by: UUID,
        expense_description: Optional[str],
    ) -> Optional[Payment]:
        if self._payments is None:
            return None

        description = expense_description or "group expense"
        try:
            payment = Payment(
                user_id=recorded_by,
                invoice_id=None,
                payment_date=utcnow().date(),
                payment_type=PaymentType.GROUP_EXPENSE,
                amount_paid=amount,
                status=PaymentStatus.COMPLETED,
                notes=f"Shared expense payment: {description} (split {split_id})",
            )
            return await self._payments.save_payment(payment)
        except Exception as e:
            logger.error(
                "split_payment_record_failed",
                split_id=str(split_id),
                error=str(e),
            )
            await self._audit.log_payment_audit_failed(
                split_id=split_id,
                error_message=str(e),
                actor_id=recorded_by,
            )
            return None
