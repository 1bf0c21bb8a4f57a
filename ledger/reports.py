"""Read-only dashboard aggregates over the ledger."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import func

from extensions import db
from models import Batch, CostingEntry, Invoice, ProductionEntry

from .batches import consumed_by_batch
from .stock import yarn_stock
from .validation import CURRENCY_QUANT, KG_QUANT, ZERO, quantize, to_decimal


def _window(stmt, column, start: Optional[date], end: Optional[date]):
    if start:
        stmt = stmt.filter(column >= start)
    if end:
        stmt = stmt.filter(column <= end)
    return stmt


def dashboard_summary(*, start: Optional[date] = None, end: Optional[date] = None) -> Dict[str, Any]:
    """Headline figures for the mill.

    Cotton on hand and yarn stock are current balances; production, cost and
    invoicing figures cover ``start``..``end`` when given.
    """

    received_kg, bales = db.session.query(
        func.coalesce(func.sum(Batch.total_weight_kg), 0),
        func.coalesce(func.sum(Batch.bale_count), 0),
    ).one()
    consumed_kg = sum(consumed_by_batch().values(), ZERO)
    cotton_remaining = quantize(to_decimal(received_kg) - consumed_kg, KG_QUANT)

    produced, waste, consumed_window = _window(
        db.session.query(
            func.coalesce(func.sum(ProductionEntry.total_produced_kg), 0),
            func.coalesce(func.sum(ProductionEntry.total_waste_kg), 0),
            func.coalesce(func.sum(ProductionEntry.total_consumed_kg), 0),
        ),
        ProductionEntry.date,
        start,
        end,
    ).one()
    produced = quantize(to_decimal(produced), KG_QUANT)
    waste = quantize(to_decimal(waste), KG_QUANT)
    consumed_window = quantize(to_decimal(consumed_window), KG_QUANT)
    waste_rate = None
    if consumed_window > ZERO:
        waste_rate = quantize(waste / consumed_window * Decimal("100"), CURRENCY_QUANT)

    total_cost = _window(
        db.session.query(func.coalesce(func.sum(CostingEntry.total_cost), 0)),
        CostingEntry.date,
        start,
        end,
    ).scalar()

    invoiced, paid = _window(
        db.session.query(
            func.coalesce(func.sum(Invoice.total), 0),
            func.coalesce(func.sum(Invoice.amount_paid), 0),
        ),
        Invoice.date,
        start,
        end,
    ).one()

    stock_lines = yarn_stock()
    return {
        "start": start,
        "end": end,
        "cotton_remaining_kg": cotton_remaining,
        "total_bales_received": int(bales or 0),
        "yarn_stock_kg": quantize(sum((line.balance_kg for line in stock_lines), ZERO), KG_QUANT),
        "yarn_stock": stock_lines,
        "total_produced_kg": produced,
        "total_waste_kg": waste,
        "waste_rate_percent": waste_rate,
        "total_cost": quantize(to_decimal(total_cost), CURRENCY_QUANT),
        "invoiced_total": quantize(to_decimal(invoiced), CURRENCY_QUANT),
        "outstanding_receivables": quantize(to_decimal(invoiced) - to_decimal(paid), CURRENCY_QUANT),
    }
