"""Cotton receipt (batch) endpoints."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from ledger import batches as batch_service
from models import RoleEnum
from routes.auth import current_actor_id, forbidden, require_role
from routes.params import date_range_args
from schemas import BatchBalanceSchema, BatchSchema

bp = Blueprint("batches", __name__, url_prefix="/api/batches")

batch_schema = BatchSchema()
balance_schema = BatchBalanceSchema()
balances_schema = BatchBalanceSchema(many=True)

WRITE_ROLES = (RoleEnum.admin, RoleEnum.production_manager)


@bp.get("")
@jwt_required()
def list_batches():
    start, end = date_range_args()
    return jsonify(balances_schema.dump(batch_service.list_batches(start=start, end=end)))


@bp.get("/available")
@jwt_required()
def list_available():
    return jsonify(balances_schema.dump(batch_service.list_available()))


@bp.get("/<int:batch_id>")
@jwt_required()
def batch_detail(batch_id: int):
    return jsonify(balance_schema.dump(batch_service.batch_balance(batch_id)))


@bp.post("")
@jwt_required()
def create_batch():
    if not require_role(*WRITE_ROLES):
        return forbidden("You do not have permission to record cotton receipts.")

    payload = request.get_json(silent=True) or {}
    batch = batch_service.create_batch(
        date=payload.get("date"),
        supplier=payload.get("supplier"),
        bale_count=payload.get("bale_count"),
        weight_kg=payload.get("weight_kg"),
        actor_id=current_actor_id(),
    )
    body = batch_schema.dump(batch)
    body["warnings"] = list(getattr(batch, "warnings", []))
    return jsonify(body), 201


@bp.put("/<int:batch_id>")
@jwt_required()
def update_batch(batch_id: int):
    if not require_role(*WRITE_ROLES):
        return forbidden("You do not have permission to edit cotton receipts.")

    payload = request.get_json(silent=True) or {}
    batch = batch_service.update_batch(
        batch_id,
        date=payload.get("date"),
        supplier=payload.get("supplier"),
        bale_count=payload.get("bale_count"),
        weight_kg=payload.get("weight_kg"),
        actor_id=current_actor_id(),
    )
    return jsonify(batch_schema.dump(batch))


@bp.delete("/<int:batch_id>")
@jwt_required()
def delete_batch(batch_id: int):
    if not require_role(*WRITE_ROLES):
        return forbidden("You do not have permission to delete cotton receipts.")

    batch_service.delete_batch(batch_id, actor_id=current_actor_id())
    return jsonify({"ok": True})
