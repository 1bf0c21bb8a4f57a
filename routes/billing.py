"""Invoice and payment endpoints."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from ledger import billing as billing_service
from models import RoleEnum
from routes.auth import current_actor_id, forbidden, require_role
from routes.params import date_range_args
from schemas import InvoiceDetailSchema, InvoiceSchema, PaymentSchema

bp = Blueprint("billing", __name__, url_prefix="/api/billing")

invoice_schema = InvoiceDetailSchema()
invoices_schema = InvoiceSchema(many=True)
payment_schema = PaymentSchema()

WRITE_ROLES = (RoleEnum.admin, RoleEnum.finance_manager)


@bp.get("/invoices")
@jwt_required()
def list_invoices():
    start, end = date_range_args()
    status = billing_service.parse_status(request.args.get("status"))
    return jsonify(invoices_schema.dump(billing_service.list_invoices(status=status, start=start, end=end)))


@bp.get("/invoices/next-number")
@jwt_required()
def next_invoice_number():
    return jsonify({"invoice_no": billing_service.get_next_invoice_number()})


@bp.get("/invoices/<int:invoice_id>")
@jwt_required()
def invoice_detail(invoice_id: int):
    return jsonify(invoice_schema.dump(billing_service.get_invoice(invoice_id)))


@bp.post("/invoices")
@jwt_required()
def create_invoice():
    if not require_role(*WRITE_ROLES):
        return forbidden("You do not have permission to raise invoices.")

    payload = request.get_json(silent=True) or {}
    invoice = billing_service.create_invoice(
        date=payload.get("date"),
        customer=payload.get("customer"),
        line_items=payload.get("line_items"),
        invoice_no=payload.get("invoice_no"),
        actor_id=current_actor_id(),
    )
    return jsonify(invoice_schema.dump(invoice)), 201


@bp.delete("/invoices/<int:invoice_id>")
@jwt_required()
def delete_invoice(invoice_id: int):
    if not require_role(*WRITE_ROLES):
        return forbidden("You do not have permission to delete invoices.")

    billing_service.delete_invoice(invoice_id, actor_id=current_actor_id())
    return jsonify({"ok": True})


@bp.post("/invoices/<int:invoice_id>/payments")
@jwt_required()
def record_payment(invoice_id: int):
    if not require_role(*WRITE_ROLES):
        return forbidden("You do not have permission to record payments.")

    payload = request.get_json(silent=True) or {}
    payment = billing_service.record_payment(
        invoice_id,
        date=payload.get("date"),
        amount=payload.get("amount"),
        method=payload.get("method"),
        reference=payload.get("reference"),
        notes=payload.get("notes"),
        actor_id=current_actor_id(),
    )
    body = payment_schema.dump(payment)
    body["invoice"] = invoice_schema.dump(payment.invoice)
    return jsonify(body), 201


@bp.delete("/payments/<int:payment_id>")
@jwt_required()
def delete_payment(payment_id: int):
    if not require_role(*WRITE_ROLES):
        return forbidden("You do not have permission to delete payments.")

    invoice = billing_service.delete_payment(payment_id, actor_id=current_actor_id())
    return jsonify({"ok": True, "invoice": invoice_schema.dump(invoice)})
