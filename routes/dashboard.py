from flask import Blueprint, jsonify
from flask_jwt_extended import jwt_required

from ledger.reports import dashboard_summary
from routes.params import date_range_args
from schemas import DashboardSummarySchema

bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")

summary_schema = DashboardSummarySchema()


@bp.get("/summary")
@jwt_required()
def summary():
    start, end = date_range_args()
    return jsonify(summary_schema.dump(dashboard_summary(start=start, end=end)))
