"""Cost allocation: one cost line per date and category.

Each category has its own input type and validator. Electricity, employee,
packaging and maintenance lines are upserted on (date, category); expenses
are appended. Packaging and maintenance copy the day's production output into
``basis_output_kg`` when saved and never recompute it afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Any, Callable, ClassVar, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from extensions import db
from models import OUTPUT_BASED_CATEGORIES, CostCategory, CostingEntry, ProductionEntry

from . import audit
from .errors import InvalidInput, InvalidQuantity, NoProductionForDate, NotFound
from .production import production_output_kg
from .transactions import atomic, is_unique_violation, lock_for_update
from .validation import (
    CURRENCY_QUANT,
    KG_QUANT,
    RATE_QUANT,
    ZERO,
    date_field,
    decimal_field,
    id_field,
    int_field,
    name_field,
    quantize,
    strip_or_none,
    to_decimal,
)

logger = logging.getLogger(__name__)

COST_CEILING = Decimal("9999999")
MAX_SHIFTS = 3
MAX_WORKERS = 9999
MAX_UNITS = Decimal("9999999")
MAX_RATE = Decimal("999999")

UPSERT_CATEGORIES = frozenset(
    {CostCategory.ELECTRICITY, CostCategory.EMPLOYEE, CostCategory.PACKAGING, CostCategory.MAINTENANCE}
)


def _raise_if(errors: Dict[str, str]) -> None:
    if not errors:
        return
    numeric_only = all(key not in {"date", "title", "expense_type", "description"} for key in errors)
    raise (InvalidQuantity if numeric_only else InvalidInput)(errors)


def _check_total(total: Decimal, field: str = "total_cost") -> Decimal:
    total = quantize(total, CURRENCY_QUANT)
    if total <= ZERO:
        raise InvalidQuantity({field: "Total cost must be greater than 0."})
    if total > COST_CEILING:
        raise InvalidQuantity({field: f"Total cost cannot exceed {COST_CEILING}."})
    return total


@dataclass(frozen=True)
class ElectricityCost:
    category: ClassVar[CostCategory] = CostCategory.ELECTRICITY

    date: date
    units_consumed: Decimal
    rate_per_unit: Decimal
    shifts: int

    @property
    def total_cost(self) -> Decimal:
        return _check_total(self.units_consumed * self.rate_per_unit * self.shifts)

    def columns(self) -> Dict[str, Any]:
        return {
            "units_consumed": self.units_consumed,
            "rate_per_unit": self.rate_per_unit,
            "shifts": self.shifts,
            "details": f"{self.units_consumed} units x {self.rate_per_unit} x {self.shifts} shift(s)",
        }


@dataclass(frozen=True)
class EmployeeCost:
    category: ClassVar[CostCategory] = CostCategory.EMPLOYEE

    date: date
    workers: int
    rate_per_worker: Decimal
    shifts: int
    overtime: Decimal

    @property
    def total_cost(self) -> Decimal:
        return _check_total(self.workers * self.rate_per_worker * self.shifts + self.overtime)

    def columns(self) -> Dict[str, Any]:
        return {
            "workers": self.workers,
            "rate_per_worker": self.rate_per_worker,
            "shifts": self.shifts,
            "overtime": self.overtime,
            "details": f"{self.workers} workers x {self.rate_per_worker} x {self.shifts} shift(s)",
        }


@dataclass(frozen=True)
class PackagingCost:
    category: ClassVar[CostCategory] = CostCategory.PACKAGING

    date: date
    rate_per_kg: Decimal
    basis_output_kg: Decimal = ZERO

    @property
    def total_cost(self) -> Decimal:
        return _check_total(self.basis_output_kg * self.rate_per_kg)

    def columns(self) -> Dict[str, Any]:
        return {
            "rate_per_kg": self.rate_per_kg,
            "basis_output_kg": self.basis_output_kg,
            "is_manual_override": False,
            "basis_stale": False,
            "details": f"{self.basis_output_kg} kg x {self.rate_per_kg}",
        }


@dataclass(frozen=True)
class MaintenanceCost:
    category: ClassVar[CostCategory] = CostCategory.MAINTENANCE

    date: date
    rate_per_kg: Decimal
    manual_override_cost: Optional[Decimal] = None
    basis_output_kg: Decimal = ZERO

    @property
    def total_cost(self) -> Decimal:
        if self.manual_override_cost is not None:
            return _check_total(self.manual_override_cost)
        return _check_total(self.basis_output_kg * self.rate_per_kg)

    def columns(self) -> Dict[str, Any]:
        return {
            "rate_per_kg": self.rate_per_kg,
            "basis_output_kg": self.basis_output_kg,
            "is_manual_override": self.manual_override_cost is not None,
            "basis_stale": False,
            "details": (
                "Manual amount"
                if self.manual_override_cost is not None
                else f"{self.basis_output_kg} kg x {self.rate_per_kg}"
            ),
        }


@dataclass(frozen=True)
class ExpenseCost:
    category: ClassVar[CostCategory] = CostCategory.EXPENSE

    date: date
    title: str
    amount: Decimal
    expense_type: Optional[str] = None
    description: Optional[str] = None

    @property
    def total_cost(self) -> Decimal:
        return _check_total(self.amount, "amount")

    def columns(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "expense_type": self.expense_type,
            "description": self.description,
            "details": self.title,
        }


def electricity_cost(*, date: Any, units_consumed: Any, rate_per_unit: Any, shifts: Any) -> ElectricityCost:
    errors: Dict[str, str] = {}
    cost = ElectricityCost(
        date=date_field(date, "date", errors),
        units_consumed=decimal_field(
            units_consumed, "units_consumed", errors, exclusive_minimum=ZERO, maximum=MAX_UNITS, quantize_to=CURRENCY_QUANT
        ),
        rate_per_unit=decimal_field(
            rate_per_unit, "rate_per_unit", errors, exclusive_minimum=ZERO, maximum=MAX_RATE, quantize_to=CURRENCY_QUANT
        ),
        shifts=int_field(shifts, "shifts", errors, minimum=1, maximum=MAX_SHIFTS),
    )
    _raise_if(errors)
    return cost


def employee_cost(
    *,
    date: Any,
    workers: Any,
    rate_per_worker: Any,
    shifts: Any,
    overtime: Any = None,
) -> EmployeeCost:
    errors: Dict[str, str] = {}
    cost = EmployeeCost(
        date=date_field(date, "date", errors),
        workers=int_field(workers, "workers", errors, minimum=1, maximum=MAX_WORKERS),
        rate_per_worker=decimal_field(
            rate_per_worker, "rate_per_worker", errors, exclusive_minimum=ZERO, maximum=MAX_RATE, quantize_to=CURRENCY_QUANT
        ),
        shifts=int_field(shifts, "shifts", errors, minimum=1, maximum=MAX_SHIFTS),
        overtime=decimal_field(
            overtime, "overtime", errors, minimum=ZERO, maximum=COST_CEILING, quantize_to=CURRENCY_QUANT, default=ZERO
        ),
    )
    _raise_if(errors)
    return cost


def packaging_cost(*, date: Any, rate_per_kg: Any) -> PackagingCost:
    errors: Dict[str, str] = {}
    cost = PackagingCost(
        date=date_field(date, "date", errors),
        rate_per_kg=decimal_field(
            rate_per_kg, "rate_per_kg", errors, exclusive_minimum=ZERO, maximum=MAX_RATE, quantize_to=RATE_QUANT
        ),
    )
    _raise_if(errors)
    return cost


def maintenance_cost(*, date: Any, rate_per_kg: Any, manual_override_cost: Any = None) -> MaintenanceCost:
    errors: Dict[str, str] = {}
    override = None
    if manual_override_cost not in (None, ""):
        override = decimal_field(
            manual_override_cost,
            "manual_override_cost",
            errors,
            exclusive_minimum=ZERO,
            maximum=COST_CEILING,
            quantize_to=CURRENCY_QUANT,
        )
    cost = MaintenanceCost(
        date=date_field(date, "date", errors),
        rate_per_kg=decimal_field(
            rate_per_kg, "rate_per_kg", errors, exclusive_minimum=ZERO, maximum=MAX_RATE, quantize_to=RATE_QUANT
        ),
        manual_override_cost=override,
    )
    _raise_if(errors)
    return cost


def expense_cost(
    *,
    date: Any,
    title: Any,
    amount: Any,
    expense_type: Any = None,
    description: Any = None,
) -> ExpenseCost:
    errors: Dict[str, str] = {}
    cost = ExpenseCost(
        date=date_field(date, "date", errors),
        title=name_field(title, "title", errors, label="Title", max_length=120),
        amount=decimal_field(
            amount, "amount", errors, exclusive_minimum=ZERO, maximum=COST_CEILING, quantize_to=CURRENCY_QUANT
        ),
        expense_type=name_field(expense_type, "expense_type", errors, label="Expense type", max_length=60, required=False),
        description=strip_or_none(description),
    )
    _raise_if(errors)
    return cost


def _with_basis(cost):
    """Copy today's production output into an output-based cost line."""

    output = production_output_kg(cost.date)
    if output <= ZERO:
        if isinstance(cost, MaintenanceCost) and cost.manual_override_cost is not None:
            return replace(cost, basis_output_kg=ZERO)
        raise NoProductionForDate(
            errors={"date": f"No production output recorded for {cost.date.isoformat()}."}
        )
    return replace(cost, basis_output_kg=output)


# Per-category hook run inside the transaction before the row is written.
_PREPARE: Dict[CostCategory, Callable[[Any], Any]] = {
    CostCategory.ELECTRICITY: lambda cost: cost,
    CostCategory.EMPLOYEE: lambda cost: cost,
    CostCategory.PACKAGING: _with_basis,
    CostCategory.MAINTENANCE: _with_basis,
    CostCategory.EXPENSE: lambda cost: cost,
}


def _is_costing_key_race(exc: BaseException) -> bool:
    return isinstance(exc, IntegrityError) and (
        is_unique_violation(exc, "uq_costing_date_category")
        or is_unique_violation(exc, "costing_entries.date", "costing_entries.category")
    )


def save_cost(cost, *, actor_id: Optional[int] = None, audit_sink: Optional[audit.AuditSink] = None) -> CostingEntry:
    """Persist a validated cost line, upserting where the category is keyed by date."""

    category = cost.category

    def work():
        resolved = _PREPARE[category](cost)
        total = resolved.total_cost
        existing = None
        if category in UPSERT_CATEGORIES:
            existing = lock_for_update(
                CostingEntry.query.filter(CostingEntry.date == resolved.date, CostingEntry.category == category)
            ).one_or_none()

        entry = existing or CostingEntry(date=resolved.date, category=category, created_by=actor_id)
        entry.total_cost = total
        entry.updated_by = actor_id
        for key, value in resolved.columns().items():
            setattr(entry, key, value)
        if existing is None:
            db.session.add(entry)
        db.session.flush()
        return entry, existing is not None

    entry, updated = atomic(work, operation=f"record_{category.name.lower()}", retry_if=_is_costing_key_race)
    action = "costing.update" if updated else "costing.create"
    logger.info(
        {
            "event": "costing_saved",
            "category": category.value,
            "date": entry.date.isoformat(),
            "total_cost": str(entry.total_cost),
            "upserted": updated,
        }
    )
    audit.notify(
        action,
        "CostingEntry",
        entry.id,
        actor_id=actor_id,
        details={"category": category.value, "total_cost": str(entry.total_cost)},
        sink=audit_sink,
    )
    return entry


def record_electricity(*, date, units_consumed, rate_per_unit, shifts, actor_id=None, audit_sink=None) -> CostingEntry:
    cost = electricity_cost(date=date, units_consumed=units_consumed, rate_per_unit=rate_per_unit, shifts=shifts)
    return save_cost(cost, actor_id=actor_id, audit_sink=audit_sink)


def record_employee(
    *, date, workers, rate_per_worker, shifts, overtime=None, actor_id=None, audit_sink=None
) -> CostingEntry:
    cost = employee_cost(
        date=date, workers=workers, rate_per_worker=rate_per_worker, shifts=shifts, overtime=overtime
    )
    return save_cost(cost, actor_id=actor_id, audit_sink=audit_sink)


def record_packaging(*, date, rate_per_kg, actor_id=None, audit_sink=None) -> CostingEntry:
    cost = packaging_cost(date=date, rate_per_kg=rate_per_kg)
    return save_cost(cost, actor_id=actor_id, audit_sink=audit_sink)


def record_maintenance(
    *, date, rate_per_kg, manual_override_cost=None, actor_id=None, audit_sink=None
) -> CostingEntry:
    cost = maintenance_cost(date=date, rate_per_kg=rate_per_kg, manual_override_cost=manual_override_cost)
    return save_cost(cost, actor_id=actor_id, audit_sink=audit_sink)


def record_expense(
    *, date, title, amount, expense_type=None, description=None, actor_id=None, audit_sink=None
) -> CostingEntry:
    cost = expense_cost(
        date=date, title=title, amount=amount, expense_type=expense_type, description=description
    )
    return save_cost(cost, actor_id=actor_id, audit_sink=audit_sink)


def parse_category(value: Any) -> CostCategory:
    text = strip_or_none(value)
    if text:
        for category in CostCategory:
            if text.lower() in {category.value.lower(), category.name.lower()}:
                return category
    raise InvalidInput({"category": "Unknown cost category."})


def get_costing(entry_id: Any) -> CostingEntry:
    errors: Dict[str, str] = {}
    ident = id_field(entry_id, "id", errors)
    if errors:
        raise InvalidInput(errors)
    entry = db.session.get(CostingEntry, ident)
    if entry is None:
        raise NotFound("Costing entry not found.", {"id": "Costing entry not found."})
    return entry


def list_costing(
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
    category: Optional[CostCategory] = None,
) -> List[CostingEntry]:
    stmt = CostingEntry.query.order_by(CostingEntry.date.desc(), CostingEntry.id.desc())
    if start:
        stmt = stmt.filter(CostingEntry.date >= start)
    if end:
        stmt = stmt.filter(CostingEntry.date <= end)
    if category is not None:
        stmt = stmt.filter(CostingEntry.category == category)
    return list(stmt)


def delete_costing(entry_id: Any, *, actor_id: Optional[int] = None, audit_sink: Optional[audit.AuditSink] = None) -> None:
    ident = get_costing(entry_id).id

    def work() -> CostCategory:
        entry = db.session.get(CostingEntry, ident)
        if entry is None:
            raise NotFound("Costing entry not found.", {"id": "Costing entry not found."})
        category = entry.category
        db.session.delete(entry)
        return category

    category = atomic(work, operation="delete_costing")
    logger.info({"event": "costing_deleted", "costing_id": ident, "category": category.value})
    audit.notify(
        "costing.delete", "CostingEntry", ident, actor_id=actor_id, details={"category": category.value}, sink=audit_sink
    )


def _category_totals(start: Optional[date], end: Optional[date]) -> Dict[CostCategory, Decimal]:
    stmt = db.session.query(CostingEntry.category, func.coalesce(func.sum(CostingEntry.total_cost), 0))
    if start:
        stmt = stmt.filter(CostingEntry.date >= start)
    if end:
        stmt = stmt.filter(CostingEntry.date <= end)
    totals = {category: ZERO for category in CostCategory}
    for category, total in stmt.group_by(CostingEntry.category):
        totals[category] = quantize(to_decimal(total), CURRENCY_QUANT)
    return totals


def cost_summary(*, start: Optional[date] = None, end: Optional[date] = None) -> Dict[str, Any]:
    totals = _category_totals(start, end)
    return {
        "start": start,
        "end": end,
        "categories": {category.value: totals[category] for category in CostCategory},
        "grand_total": quantize(sum(totals.values(), ZERO), CURRENCY_QUANT),
    }


def daily_cost_summary(*, start: Optional[date] = None, end: Optional[date] = None) -> List[Dict[str, Any]]:
    stmt = db.session.query(
        CostingEntry.date,
        CostingEntry.category,
        func.coalesce(func.sum(CostingEntry.total_cost), 0),
    )
    if start:
        stmt = stmt.filter(CostingEntry.date >= start)
    if end:
        stmt = stmt.filter(CostingEntry.date <= end)
    rows = stmt.group_by(CostingEntry.date, CostingEntry.category).order_by(CostingEntry.date)

    days: Dict[date, Dict[str, Any]] = {}
    for entry_date, category, total in rows:
        day = days.setdefault(
            entry_date,
            {
                "date": entry_date,
                "categories": {item.value: ZERO for item in CostCategory},
                "total_cost": ZERO,
            },
        )
        amount = quantize(to_decimal(total), CURRENCY_QUANT)
        day["categories"][category.value] += amount
        day["total_cost"] += amount
    return [days[key] for key in sorted(days)]


def cost_per_kg(*, start: Optional[date] = None, end: Optional[date] = None) -> Dict[str, Any]:
    """Category cost divided by yarn produced in the same window."""

    totals = _category_totals(start, end)
    stmt = db.session.query(func.coalesce(func.sum(ProductionEntry.total_produced_kg), 0))
    if start:
        stmt = stmt.filter(ProductionEntry.date >= start)
    if end:
        stmt = stmt.filter(ProductionEntry.date <= end)
    produced = quantize(to_decimal(stmt.scalar()), KG_QUANT)

    def per_kg(amount: Decimal) -> Optional[Decimal]:
        if produced <= ZERO:
            return None
        return quantize(amount / produced, RATE_QUANT)

    grand_total = sum(totals.values(), ZERO)
    return {
        "start": start,
        "end": end,
        "produced_kg": produced,
        "categories": {category.value: per_kg(totals[category]) for category in CostCategory},
        "total_per_kg": per_kg(grand_total),
    }


def stale_entries() -> List[CostingEntry]:
    return list(
        CostingEntry.query.filter(
            CostingEntry.category.in_(list(OUTPUT_BASED_CATEGORIES)),
            CostingEntry.basis_stale.is_(True),
        ).order_by(CostingEntry.date)
    )
