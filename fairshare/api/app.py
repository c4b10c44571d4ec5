"""
HTTP API

Flask app exposing the orchestrator flows as a JSON API.

Caller identity is asserted by the upstream identity provider in request
headers; this layer only reads it. Error bodies are always
{"error": "<message>"}, plus "issues" for validation failures.
"""

import asyncio
from datetime import date
from functools import wraps
from typing import Optional
from uuid import UUID

import structlog
from flask import Flask, current_app, g, jsonify, request
from pydantic import BaseModel, ValidationError
from werkzeug.exceptions import HTTPException

from fairshare.audit import create_correlation_id
from fairshare.config import get_settings, validate_all_settings
from fairshare.errors import AuthenticationRequiredError, FairshareError, InvalidRequestError
from fairshare.models.expense import ExpenseCreateRequest, MarkSplitPaidRequest
from fairshare.models.group import (
    GroupCreateRequest,
    GroupUpdateRequest,
    InvitationCreateRequest,
    MemberRoleUpdateRequest,
    ProfileUpdateRequest,
)
from fairshare.models.invoice import InvoiceCreateRequest, PaymentCreateRequest
from fairshare.orchestrator import AppComponents, create_app_components
from fairshare.services.storage import StorageError


logger = structlog.get_logger(__name__)

EXTENSION_KEY = "fairshare"


def create_app(components: Optional[AppComponents] = None) -> Flask:
    """
    Build the Flask app.

    Args:
        components: Pre-built flows. If None, they are created from
                    settings and the schema is initialized.
    """
    if components is None:
        components = create_app_components()
        asyncio.run(components.initialize())

    app = Flask(__name__)
    app.extensions[EXTENSION_KEY] = components

    register_error_handlers(app)
    register_routes(app)
    return app


def _components() -> AppComponents:
    return current_app.extensions[EXTENSION_KEY]


def _json(payload, status: int = 200):
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    elif isinstance(payload, list):
        payload = [
            item.model_dump(mode="json") if isinstance(item, BaseModel) else item
            for item in payload
        ]
    return jsonify(payload), status


def _parse(model: type[BaseModel]):
    """Validate the JSON body against a request model."""
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    return model.model_validate(payload)


def _date_arg(name: str) -> Optional[date]:
    value = request.args.get(name)
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise InvalidRequestError(f"Invalid date for {name}: {value}")


def require_caller(func):
    """
    Resolve the caller from identity headers into g.caller.

    Unknown user ids are provisioned on first sight when an email
    header is present.
    """
    @wraps(func)
    async def wrapper(*args, **kwargs):
        settings = get_settings().app
        raw_id = request.headers.get(settings.identity_header)
        if not raw_id:
            raise AuthenticationRequiredError()
        try:
            user_id = UUID(raw_id)
        except ValueError:
            raise AuthenticationRequiredError("Invalid user id")

        g.caller = await _components().profile_flow.resolve_caller(
            user_id,
            email=request.headers.get(settings.identity_email_header),
            name=request.headers.get(settings.identity_name_header),
        )
        return await func(*args, **kwargs)

    return wrapper


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(FairshareError)
    async def handle_domain_error(error: FairshareError):
        if error.status_code >= 500:
            logger.error("request_failed", error_type=type(error).__name__, error=error.message)
            await _record_failure(error)
            return jsonify({"error": "Internal server error"}), error.status_code

        body = {"error": error.message}
        if isinstance(error, InvalidRequestError) and error.issues:
            body["issues"] = error.issues
        return jsonify(body), error.status_code

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        issues = [
            {
                "field": ".".join(str(part) for part in err["loc"]),
                "issue_type": err["type"],
                "message": err["msg"],
            }
            for err in error.errors()
        ]
        return jsonify({"error": "Invalid request", "issues": issues}), 400

    @app.errorhandler(StorageError)
    async def handle_storage_error(error: StorageError):
        logger.error("storage_failed", error_type=type(error).__name__, error=str(error))
        await _record_failure(error)
        return jsonify({"error": "Internal server error"}), 500

    @app.errorhandler(Exception)
    async def handle_unexpected_error(error: Exception):
        if isinstance(error, HTTPException):
            return jsonify({"error": error.description}), error.code
        logger.exception("unhandled_error", error_type=type(error).__name__)
        await _record_failure(error)
        return jsonify({"error": "Internal server error"}), 500


async def _record_failure(error: Exception) -> None:
    """Audit an opaque 500 so it can be traced back to the request."""
    await _components().audit_logger.log_error(
        error_type=type(error).__name__,
        error_message=str(error),
        details={"method": request.method, "path": request.path},
        correlation_id=create_correlation_id(),
    )


def register_routes(app: Flask) -> None:
    @app.get("/api/health")
    def health():
        results = validate_all_settings()
        healthy = all(v for k, v in results.items() if not k.endswith("_error"))
        return jsonify({"status": "ok" if healthy else "degraded", "settings": results})

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    @app.get("/api/user")
    @require_caller
    async def get_user():
        return _json(g.caller)

    @app.patch("/api/user")
    @require_caller
    async def update_user():
        result = await _components().profile_flow.update_profile(
            g.caller.id, _parse(ProfileUpdateRequest)
        )
        body = result.user.model_dump(mode="json")
        if result.memberships_updated is None:
            body["warning"] = "Income saved, but group memberships could not be updated"
        return jsonify(body)

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    @app.get("/api/groups")
    @require_caller
    async def list_groups():
        return _json(await _components().group_flow.list_groups(g.caller.id))

    @app.post("/api/groups")
    @require_caller
    async def create_group():
        group = await _components().group_flow.create_group(g.caller, _parse(GroupCreateRequest))
        return _json(group, 201)

    @app.get("/api/groups/<uuid:group_id>")
    @require_caller
    async def get_group(group_id: UUID):
        return _json(await _components().group_flow.get_group(group_id, g.caller.id))

    @app.patch("/api/groups/<uuid:group_id>")
    @require_caller
    async def update_group(group_id: UUID):
        group = await _components().group_flow.update_group(
            group_id, g.caller.id, _parse(GroupUpdateRequest)
        )
        return _json(group)

    @app.delete("/api/groups/<uuid:group_id>")
    @require_caller
    async def delete_group(group_id: UUID):
        await _components().group_flow.delete_group(group_id, g.caller.id)
        return jsonify({"success": True})

    @app.get("/api/groups/<uuid:group_id>/members")
    @require_caller
    async def list_members(group_id: UUID):
        return _json(await _components().group_flow.list_members(group_id, g.caller.id))

    @app.patch("/api/groups/<uuid:group_id>/members/<uuid:user_id>")
    @require_caller
    async def change_member_role(group_id: UUID, user_id: UUID):
        payload = _parse(MemberRoleUpdateRequest)
        member = await _components().group_flow.change_member_role(
            group_id, g.caller.id, user_id, payload.role
        )
        return _json(member)

    @app.post("/api/groups/<uuid:group_id>/leave")
    @require_caller
    async def leave_group(group_id: UUID):
        deleted = await _components().group_flow.leave_group(group_id, g.caller.id)
        return jsonify({"success": True, "group_deleted": deleted})

    @app.post("/api/groups/<uuid:group_id>/invite")
    @require_caller
    async def invite(group_id: UUID):
        payload = _parse(InvitationCreateRequest)
        invitation = await _components().group_flow.invite(group_id, g.caller, payload.email)
        return _json(invitation, 201)

    @app.get("/api/groups/<uuid:group_id>/summary")
    @require_caller
    async def group_summary(group_id: UUID):
        return _json(await _components().report_flow.group_summary(group_id, g.caller.id))

    # ------------------------------------------------------------------
    # Group expenses
    # ------------------------------------------------------------------

    @app.get("/api/groups/<uuid:group_id>/expenses")
    @require_caller
    async def list_expenses(group_id: UUID):
        return _json(await _components().expense_flow.list_expenses(group_id, g.caller.id))

    @app.post("/api/groups/<uuid:group_id>/expenses")
    @require_caller
    async def create_expense(group_id: UUID):
        expense = await _components().expense_flow.create_expense(
            group_id, g.caller.id, _parse(ExpenseCreateRequest)
        )
        return _json(expense, 201)

    @app.post("/api/groups/<uuid:group_id>/expenses/<uuid:expense_id>/pay")
    @require_caller
    async def pay_split(group_id: UUID, expense_id: UUID):
        result = await _components().expense_flow.mark_split_paid(
            group_id, expense_id, g.caller.id, _parse(MarkSplitPaidRequest)
        )
        return _json(result)

    # ------------------------------------------------------------------
    # Invitations
    # ------------------------------------------------------------------

    @app.get("/api/invitations")
    @require_caller
    async def list_invitations():
        return _json(await _components().group_flow.list_invitations(g.caller))

    @app.post("/api/invitations/<uuid:invitation_id>/accept")
    @require_caller
    async def accept_invitation(invitation_id: UUID):
        member = await _components().group_flow.accept_invitation(invitation_id, g.caller)
        return jsonify({"success": True, "member": member.model_dump(mode="json")})

    @app.post("/api/invitations/<uuid:invitation_id>/reject")
    @require_caller
    async def reject_invitation(invitation_id: UUID):
        await _components().group_flow.reject_invitation(invitation_id, g.caller)
        return jsonify({"success": True})

    # ------------------------------------------------------------------
    # Personal invoices and payments
    # ------------------------------------------------------------------

    @app.get("/api/invoices")
    @require_caller
    async def list_invoices():
        invoices = await _components().invoice_flow.list_invoices(
            g.caller.id,
            date_from=_date_arg("date_from"),
            date_to=_date_arg("date_to"),
        )
        return _json(invoices)

    @app.post("/api/invoices")
    @require_caller
    async def create_invoice():
        invoice = await _components().invoice_flow.create_invoice(
            g.caller.id, _parse(InvoiceCreateRequest)
        )
        return _json(invoice, 201)

    @app.get("/api/invoices/<uuid:invoice_id>")
    @require_caller
    async def get_invoice(invoice_id: UUID):
        return _json(await _components().invoice_flow.get_invoice(invoice_id, g.caller.id))

    @app.get("/api/payments")
    @require_caller
    async def list_payments():
        return _json(await _components().invoice_flow.list_payments(g.caller.id))

    @app.post("/api/payments")
    @require_caller
    async def create_payment():
        payment = await _components().invoice_flow.create_payment(
            g.caller.id, _parse(PaymentCreateRequest)
        )
        return _json(payment, 201)

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    @app.get("/api/dashboard/stats")
    @require_caller
    async def dashboard_stats():
        return _json(await _components().report_flow.dashboard(g.caller))
