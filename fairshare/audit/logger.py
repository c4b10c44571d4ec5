"""
Audit Logger

DESIGN DECISION: Every significant state change is logged.
This provides:
1. Complete traceability of who created, joined, left and settled what
2. Debugging capability
3. A trail for degraded paths (e.g. a settled split whose payment row failed)

The audit logger:
- Is async so it composes with the async storage layer
- Gracefully handles failures (a failed audit write never fails the request)
- Supports correlation IDs to trace related events
"""

import logging
from typing import Any, Optional
from uuid import UUID, uuid4

import structlog

from fairshare.config import get_settings
from fairshare.models.audit import AuditEvent, AuditEventBuilder, AuditEventType, AuditSeverity
from fairshare.services.storage import AuditStorageInterface


_configured = False


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure structlog for local JSON logging.

    Idempotent; the level defaults to the configured log_level.
    """
    global _configured
    if _configured:
        return

    level = level or get_settings().app.log_level
    logging.basicConfig(format="%(message)s", level=getattr(logging, level, logging.INFO))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit table (for persistence)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        configure_logging()
        self._storage = storage
        self._logger = structlog.get_logger("fairshare.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_entity_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: UUID,
        actor_id: Optional[UUID],
        description: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """Log a plain informational event about one entity."""
        await self.log(AuditEvent(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            description=description,
            details=details or {},
        ))

    async def log_group_created(
        self,
        group_id: UUID,
        name: str,
        split_method: str,
        actor_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.group_created(
            group_id=group_id,
            name=name,
            split_method=split_method,
            actor_id=actor_id,
        ))

    async def log_group_deleted(
        self,
        group_id: UUID,
        actor_id: UUID,
        reason: str,
    ) -> None:
        await self.log(AuditEventBuilder.group_deleted(
            group_id=group_id,
            actor_id=actor_id,
            reason=reason,
        ))

    async def log_membership_changed(
        self,
        event_type: AuditEventType,
        group_id: UUID,
        user_id: UUID,
        actor_id: UUID,
        details: Optional[dict] = None,
    ) -> None:
        """Log a join, leave or role change."""
        await self.log(AuditEventBuilder.membership_changed(
            event_type=event_type,
            group_id=group_id,
            user_id=user_id,
            actor_id=actor_id,
            details=details,
        ))

    async def log_invitation(
        self,
        event_type: AuditEventType,
        invitation_id: UUID,
        group_id: UUID,
        email: str,
        actor_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.invitation(
            event_type=event_type,
            invitation_id=invitation_id,
            group_id=group_id,
            email=email,
            actor_id=actor_id,
        ))

    async def log_expense_created(
        self,
        expense_id: UUID,
        group_id: UUID,
        amount: str,
        split_count: int,
        actor_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.expense_created(
            expense_id=expense_id,
            group_id=group_id,
            amount=amount,
            split_count=split_count,
            actor_id=actor_id,
        ))

    async def log_split_fallback_equal(self, member_count: int) -> None:
        """Log that a proportional split had no income to work with."""
        await self.log(AuditEventBuilder.split_fallback_equal(member_count=member_count))

    async def log_split_paid(
        self,
        split_id: UUID,
        expense_id: UUID,
        amount: str,
        actor_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.split_paid(
            split_id=split_id,
            expense_id=expense_id,
            amount=amount,
            actor_id=actor_id,
        ))

    async def log_payment_audit_failed(
        self,
        split_id: UUID,
        error_message: str,
        actor_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.payment_audit_failed(
            split_id=split_id,
            error_message=error_message,
            actor_id=actor_id,
        ))

    async def log_payment_recorded(
        self,
        payment_id: UUID,
        amount: str,
        invoice_id: Optional[UUID],
        actor_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.payment_recorded(
            payment_id=payment_id,
            amount=amount,
            invoice_id=invoice_id,
            actor_id=actor_id,
        ))

    async def log_invoice_status_updated(
        self,
        invoice_id: UUID,
        old_status: str,
        new_status: str,
        total_paid: str,
    ) -> None:
        await self.log(AuditEventBuilder.invoice_status_updated(
            invoice_id=invoice_id,
            old_status=old_status,
            new_status=new_status,
            total_paid=total_paid,
        ))

    async def log_income_propagation_failed(
        self,
        user_id: UUID,
        error_message: str,
    ) -> None:
        await self.log(AuditEventBuilder.income_propagation_failed(
            user_id=user_id,
            error_message=error_message,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a request and pass it through all
    subsequent operations.
    """
    return uuid4()
