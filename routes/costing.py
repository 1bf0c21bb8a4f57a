"""Cost allocation endpoints."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from ledger import costing as costing_service
from models import CostCategory, RoleEnum
from routes.auth import current_actor_id, forbidden, require_role
from routes.params import date_range_args
from schemas import CostingEntrySchema, CostPerKgSchema, CostSummarySchema, DailyCostSchema

bp = Blueprint("costing", __name__, url_prefix="/api/costing")

entry_schema = CostingEntrySchema()
entries_schema = CostingEntrySchema(many=True)
summary_schema = CostSummarySchema()
daily_schema = DailyCostSchema(many=True)
per_kg_schema = CostPerKgSchema()

WRITE_ROLES = (RoleEnum.admin, RoleEnum.finance_manager)

# Payload keys accepted for each category, passed straight to its recorder.
RECORDERS = {
    CostCategory.ELECTRICITY: (
        costing_service.record_electricity,
        ("date", "units_consumed", "rate_per_unit", "shifts"),
    ),
    CostCategory.EMPLOYEE: (
        costing_service.record_employee,
        ("date", "workers", "rate_per_worker", "shifts", "overtime"),
    ),
    CostCategory.PACKAGING: (
        costing_service.record_packaging,
        ("date", "rate_per_kg"),
    ),
    CostCategory.MAINTENANCE: (
        costing_service.record_maintenance,
        ("date", "rate_per_kg", "manual_override_cost"),
    ),
    CostCategory.EXPENSE: (
        costing_service.record_expense,
        ("date", "title", "amount", "expense_type", "description"),
    ),
}


@bp.get("")
@jwt_required()
def list_entries():
    start, end = date_range_args()
    category = request.args.get("category")
    entries = costing_service.list_costing(
        start=start,
        end=end,
        category=costing_service.parse_category(category) if category else None,
    )
    return jsonify(entries_schema.dump(entries))


@bp.get("/stale")
@jwt_required()
def stale_entries():
    return jsonify(entries_schema.dump(costing_service.stale_entries()))


@bp.post("/<string:category>")
@jwt_required()
def record_entry(category: str):
    if not require_role(*WRITE_ROLES):
        return forbidden("You do not have permission to record costs.")

    recorder, keys = RECORDERS[costing_service.parse_category(category)]
    payload = request.get_json(silent=True) or {}
    entry = recorder(**{key: payload.get(key) for key in keys}, actor_id=current_actor_id())
    return jsonify(entry_schema.dump(entry)), 201


@bp.delete("/<int:entry_id>")
@jwt_required()
def delete_entry(entry_id: int):
    if not require_role(*WRITE_ROLES):
        return forbidden("You do not have permission to delete costs.")

    costing_service.delete_costing(entry_id, actor_id=current_actor_id())
    return jsonify({"ok": True})


@bp.get("/summary")
@jwt_required()
def summary():
    start, end = date_range_args()
    return jsonify(summary_schema.dump(costing_service.cost_summary(start=start, end=end)))


@bp.get("/summary/daily")
@jwt_required()
def daily_summary():
    start, end = date_range_args()
    return jsonify(daily_schema.dump(costing_service.daily_cost_summary(start=start, end=end)))


@bp.get("/summary/per-kg")
@jwt_required()
def per_kg():
    start, end = date_range_args()
    return jsonify(per_kg_schema.dump(costing_service.cost_per_kg(start=start, end=end)))
