"""Query-string helpers shared by the blueprints."""

from __future__ import annotations

from datetime import date
from typing import Dict, Optional, Tuple

from flask import request

from ledger.errors import InvalidInput
from ledger.validation import date_field


def date_range_args() -> Tuple[Optional[date], Optional[date]]:
    """Read ``start_date``/``end_date`` from the query string."""

    errors: Dict[str, str] = {}
    start = date_field(request.args.get("start_date"), "start_date", errors, required=False, allow_future=True)
    end = date_field(request.args.get("end_date"), "end_date", errors, required=False, allow_future=True)
    if start and end and start > end:
        errors["end_date"] = "End date must be on or after the start date."
    if errors:
        raise InvalidInput(errors)
    return start, end
