"""REST endpoints for production entries and yarn stock."""

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from ledger import production as production_service
from ledger import stock as stock_service
from models import RoleEnum
from routes.auth import current_actor_id, forbidden, require_role
from routes.params import date_range_args
from schemas import ProductionEntrySchema, YarnStockSchema


bp = Blueprint("production", __name__, url_prefix="/api/production")

entry_schema = ProductionEntrySchema()
entries_schema = ProductionEntrySchema(many=True)
stock_schema = YarnStockSchema(many=True)

WRITE_ROLES = (RoleEnum.admin, RoleEnum.production_manager)


def _payload_args(payload):
    return {
        "date": payload.get("date"),
        "consumptions": payload.get("consumptions"),
        "outputs": payload.get("outputs"),
        "waste": payload.get("waste"),
    }


def _dump_with_warnings(entry):
    body = entry_schema.dump(entry)
    body["efficiency_percent"] = None
    if entry.total_consumed_kg:
        body["efficiency_percent"] = str(
            production_service.efficiency_percent(entry.total_produced_kg, entry.total_consumed_kg)
        )
    body["warnings"] = list(getattr(entry, "warnings", []))
    return body


@bp.get("")
@jwt_required()
def list_entries():
    start, end = date_range_args()
    entries = production_service.list_production(start=start, end=end)
    return jsonify(entries_schema.dump(entries))


@bp.get("/<int:entry_id>")
@jwt_required()
def entry_detail(entry_id: int):
    return jsonify(_dump_with_warnings(production_service.get_production(entry_id)))


@bp.post("")
@jwt_required()
def create_entry():
    if not require_role(*WRITE_ROLES):
        return forbidden("You do not have permission to record production.")

    payload = request.get_json(silent=True) or {}
    entry = production_service.record_production(**_payload_args(payload), actor_id=current_actor_id())
    return jsonify(_dump_with_warnings(entry)), 201


@bp.put("/<int:entry_id>")
@jwt_required()
def update_entry(entry_id: int):
    if not require_role(*WRITE_ROLES):
        return forbidden("You do not have permission to edit production.")

    payload = request.get_json(silent=True) or {}
    entry = production_service.update_production(entry_id, **_payload_args(payload), actor_id=current_actor_id())
    return jsonify(_dump_with_warnings(entry))


@bp.delete("/<int:entry_id>")
@jwt_required()
def delete_entry(entry_id: int):
    if not require_role(*WRITE_ROLES):
        return forbidden("You do not have permission to delete production.")

    production_service.delete_production(entry_id, actor_id=current_actor_id())
    return jsonify({"ok": True})


@bp.get("/stock")
@jwt_required()
def yarn_stock():
    return jsonify(stock_schema.dump(stock_service.yarn_stock(request.args.get("yarn_count"))))
