"""
Audit Models for Fairshare

Every significant state change is logged for audit purposes.
This provides:
1. Complete traceability of group and payment operations
2. Debugging information when things go wrong
3. Ability to reconstruct who settled what, and when

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
The audit trail is advisory; persisted entity state is the source of truth.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from fairshare.models.types import utcnow


class AuditEventType(str, Enum):
    """
    Types of events we audit.
    """
    # Groups and membership
    GROUP_CREATED = "group_created"
    GROUP_UPDATED = "group_updated"
    GROUP_DELETED = "group_deleted"
    MEMBER_JOINED = "member_joined"
    MEMBER_LEFT = "member_left"
    MEMBER_ROLE_CHANGED = "member_role_changed"

    # Invitations
    INVITATION_SENT = "invitation_sent"
    INVITATION_ACCEPTED = "invitation_accepted"
    INVITATION_REJECTED = "invitation_rejected"

    # Group expenses
    EXPENSE_CREATED = "expense_created"
    SPLIT_FALLBACK_EQUAL = "split_fallback_equal"
    SPLIT_PAID = "split_paid"
    PAYMENT_AUDIT_FAILED = "payment_audit_failed"

    # Personal invoices and payments
    INVOICE_CREATED = "invoice_created"
    PAYMENT_RECORDED = "payment_recorded"
    INVOICE_STATUS_UPDATED = "invoice_status_updated"

    # Profile
    PROFILE_UPDATED = "profile_updated"
    INCOME_PROPAGATION_FAILED = "income_propagation_failed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'group', 'expense', 'split')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Who did it
    actor_id: Optional[UUID] = Field(
        default=None,
        description="User who triggered the event, if any"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events of one request)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "actor_id": str(self.actor_id) if self.actor_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_row(self) -> tuple:
        """
        Convert to a row for relational storage.

        Columns in order:
        (event_id, timestamp, event_type, severity, entity_type, entity_id,
         actor_id, correlation_id, description, details_json, error_message)
        """
        return (
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type,
            str(self.entity_id) if self.entity_id else None,
            str(self.actor_id) if self.actor_id else None,
            str(self.correlation_id) if self.correlation_id else None,
            self.description,
            json.dumps(self.details, default=str) if self.details else None,
            self.error_message,
        )


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.group_created(group_id, name, actor_id)
        event = AuditEventBuilder.split_paid(split_id, expense_id, amount, actor_id)
    """

    @staticmethod
    def group_created(
        group_id: UUID,
        name: str,
        split_method: str,
        actor_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GROUP_CREATED,
            entity_type="group",
            entity_id=group_id,
            actor_id=actor_id,
            description=f"Group created: {name}",
            details={"split_method": split_method},
        )

    @staticmethod
    def group_deleted(
        group_id: UUID,
        actor_id: UUID,
        reason: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GROUP_DELETED,
            severity=AuditSeverity.WARNING,
            entity_type="group",
            entity_id=group_id,
            actor_id=actor_id,
            description=f"Group deleted ({reason})",
            details={"reason": reason},
        )

    @staticmethod
    def membership_changed(
        event_type: AuditEventType,
        group_id: UUID,
        user_id: UUID,
        actor_id: UUID,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            entity_type="group",
            entity_id=group_id,
            actor_id=actor_id,
            description=f"{event_type.value.replace('_', ' ').capitalize()}: {user_id}",
            details={"user_id": str(user_id), **(details or {})},
        )

    @staticmethod
    def invitation(
        event_type: AuditEventType,
        invitation_id: UUID,
        group_id: UUID,
        email: str,
        actor_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            entity_type="invitation",
            entity_id=invitation_id,
            actor_id=actor_id,
            description=f"{event_type.value.replace('_', ' ').capitalize()}: {email}",
            details={"group_id": str(group_id), "email": email},
        )

    @staticmethod
    def expense_created(
        expense_id: UUID,
        group_id: UUID,
        amount: str,
        split_count: int,
        actor_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_CREATED,
            entity_type="expense",
            entity_id=expense_id,
            actor_id=actor_id,
            description=f"Expense created: {amount} split {split_count} ways",
            details={
                "group_id": str(group_id),
                "amount": amount,
                "split_count": split_count,
            },
        )

    @staticmethod
    def split_fallback_equal(
        member_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SPLIT_FALLBACK_EQUAL,
            severity=AuditSeverity.WARNING,
            entity_type="split",
            description="No income declared in group, proportional split fell back to equal",
            details={"member_count": member_count},
        )

    @staticmethod
    def split_paid(
        split_id: UUID,
        expense_id: UUID,
        amount: str,
        actor_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SPLIT_PAID,
            entity_type="split",
            entity_id=split_id,
            actor_id=actor_id,
            description=f"Split settled: {amount}",
            details={"expense_id": str(expense_id), "amount": amount},
        )

    @staticmethod
    def payment_audit_failed(
        split_id: UUID,
        error_message: str,
        actor_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PAYMENT_AUDIT_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="split",
            entity_id=split_id,
            actor_id=actor_id,
            description="Split settled but the payment record could not be written",
            error_message=error_message,
        )

    @staticmethod
    def payment_recorded(
        payment_id: UUID,
        amount: str,
        invoice_id: Optional[UUID],
        actor_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PAYMENT_RECORDED,
            entity_type="payment",
            entity_id=payment_id,
            actor_id=actor_id,
            description=f"Payment recorded: {amount}",
            details={
                "amount": amount,
                "invoice_id": str(invoice_id) if invoice_id else None,
            },
        )

    @staticmethod
    def invoice_status_updated(
        invoice_id: UUID,
        old_status: str,
        new_status: str,
        total_paid: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_STATUS_UPDATED,
            entity_type="invoice",
            entity_id=invoice_id,
            description=f"Invoice status {old_status} -> {new_status}",
            details={
                "old_status": old_status,
                "new_status": new_status,
                "total_paid": total_paid,
            },
        )

    @staticmethod
    def income_propagation_failed(
        user_id: UUID,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INCOME_PROPAGATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="user",
            entity_id=user_id,
            actor_id=user_id,
            description="Profile income saved but group memberships were not updated",
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
