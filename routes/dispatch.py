"""Outward (finished-goods dispatch) endpoints."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from ledger import stock as stock_service
from models import RoleEnum
from routes.auth import current_actor_id, forbidden, require_role
from routes.params import date_range_args
from schemas import DispatchEntrySchema

bp = Blueprint("dispatch", __name__, url_prefix="/api/dispatch")

dispatch_schema = DispatchEntrySchema()
dispatches_schema = DispatchEntrySchema(many=True)

WRITE_ROLES = (RoleEnum.admin, RoleEnum.production_manager)


@bp.get("")
@jwt_required()
def list_dispatches():
    start, end = date_range_args()
    return jsonify(dispatches_schema.dump(stock_service.list_dispatches(start=start, end=end)))


@bp.get("/<int:dispatch_id>")
@jwt_required()
def dispatch_detail(dispatch_id: int):
    return jsonify(dispatch_schema.dump(stock_service.get_dispatch(dispatch_id)))


@bp.post("")
@jwt_required()
def create_dispatch():
    if not require_role(*WRITE_ROLES):
        return forbidden("You do not have permission to dispatch yarn.")

    payload = request.get_json(silent=True) or {}
    entry = stock_service.record_dispatch(
        date=payload.get("date"),
        customer=payload.get("customer"),
        vehicle_no=payload.get("vehicle_no"),
        driver_name=payload.get("driver_name"),
        items=payload.get("items"),
        actor_id=current_actor_id(),
    )
    return jsonify(dispatch_schema.dump(entry)), 201


@bp.delete("/<int:dispatch_id>")
@jwt_required()
def delete_dispatch(dispatch_id: int):
    if not require_role(*WRITE_ROLES):
        return forbidden("You do not have permission to delete dispatch entries.")

    stock_service.delete_dispatch(dispatch_id, actor_id=current_actor_id())
    return jsonify({"ok": True})
