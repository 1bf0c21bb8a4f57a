"""Yarn stock per count and finished-goods dispatch (outward entries).

Stock is never stored: a count's balance is the yarn produced for it minus
the yarn dispatched for it, read inside the same transaction that changes it.
Every movement locks and re-versions the count's ``YarnCount`` row so two
writers cannot both spend the same balance.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from extensions import db
from models import DispatchEntry, DispatchItem, ProductionOutput, YarnCount

from . import audit
from .errors import InsufficientYarnStock, InvalidInput, InvalidQuantity, NotFound
from .transactions import atomic, is_unique_violation, lock_for_update, touch
from .validation import (
    KG_QUANT,
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

BAG_WEIGHT_KG = Decimal("60")
MAX_LINE_WEIGHT_KG = Decimal("999999")
MAX_BAGS = 99999

VEHICLE_REGEX = re.compile(r"^[A-Z]{2}[ -]?[0-9]{1,2}[ -]?(?:[A-Z]{1,2}[ -]?)?[0-9]{4}$", re.IGNORECASE)


@dataclass
class YarnStockLine:
    yarn_count: str
    produced_kg: Decimal
    dispatched_kg: Decimal
    balance_kg: Decimal
    bags: int
    remainder_kg: Decimal


def bag_breakdown(weight_kg: Decimal) -> tuple[int, Decimal]:
    """Split a weight into full 60 kg bags and the loose remainder."""

    weight = Decimal(weight_kg)
    if weight <= ZERO:
        return 0, ZERO
    bags = int(weight // BAG_WEIGHT_KG)
    remainder = quantize(weight - BAG_WEIGHT_KG * bags, KG_QUANT)
    return bags, remainder


def normalize_count(value: Any) -> Optional[str]:
    text = strip_or_none(value)
    if text is None:
        return None
    return " ".join(text.split())


def lock_yarn_counts(codes: Iterable[str], *, create: bool = False) -> Dict[str, YarnCount]:
    """Lock the registry rows for ``codes`` (in id order) and bump their versions."""

    wanted = sorted(set(codes))
    if not wanted:
        return {}
    rows = lock_for_update(
        YarnCount.query.filter(YarnCount.code.in_(wanted)).order_by(YarnCount.id)
    ).all()
    found = {row.code: row for row in rows}
    touch(rows)

    if create:
        for code in wanted:
            if code not in found:
                row = YarnCount(code=code)
                db.session.add(row)
                found[code] = row
        db.session.flush()
    return found


def is_registry_race(exc: BaseException) -> bool:
    """Two writers registered the same new yarn count; the loser retries and finds it."""

    return isinstance(exc, IntegrityError) and is_unique_violation(exc, "yarn_counts")


def produced_by_count(
    codes: Optional[Iterable[str]] = None,
    *,
    exclude_production_id: Optional[int] = None,
) -> Dict[str, Decimal]:
    stmt = db.session.query(
        ProductionOutput.yarn_count,
        func.coalesce(func.sum(ProductionOutput.weight_kg), 0),
    )
    if codes is not None:
        stmt = stmt.filter(ProductionOutput.yarn_count.in_(list(codes)))
    if exclude_production_id is not None:
        stmt = stmt.filter(ProductionOutput.production_id != exclude_production_id)
    rows = stmt.group_by(ProductionOutput.yarn_count).all()
    return {code: quantize(to_decimal(total), KG_QUANT) for code, total in rows}


def dispatched_by_count(
    codes: Optional[Iterable[str]] = None,
    *,
    exclude_dispatch_id: Optional[int] = None,
) -> Dict[str, Decimal]:
    stmt = db.session.query(
        DispatchItem.yarn_count,
        func.coalesce(func.sum(DispatchItem.weight_kg), 0),
    )
    if codes is not None:
        stmt = stmt.filter(DispatchItem.yarn_count.in_(list(codes)))
    if exclude_dispatch_id is not None:
        stmt = stmt.filter(DispatchItem.dispatch_id != exclude_dispatch_id)
    rows = stmt.group_by(DispatchItem.yarn_count).all()
    return {code: quantize(to_decimal(total), KG_QUANT) for code, total in rows}


def yarn_balances(codes: Optional[Iterable[str]] = None) -> Dict[str, Decimal]:
    code_list = list(codes) if codes is not None else None
    produced = produced_by_count(code_list)
    dispatched = dispatched_by_count(code_list)
    keys = set(code_list) if code_list is not None else set(produced) | set(dispatched)
    return {
        code: quantize(produced.get(code, ZERO) - dispatched.get(code, ZERO), KG_QUANT)
        for code in keys
    }


def yarn_stock(yarn_count: Optional[str] = None) -> List[YarnStockLine]:
    codes = None
    if yarn_count:
        normalized = normalize_count(yarn_count)
        codes = [normalized] if normalized else None
    produced = produced_by_count(codes)
    dispatched = dispatched_by_count(codes)
    keys = sorted(set(codes or []) | set(produced) | set(dispatched))

    lines: List[YarnStockLine] = []
    for code in keys:
        made = produced.get(code, ZERO)
        shipped = dispatched.get(code, ZERO)
        balance = quantize(made - shipped, KG_QUANT)
        bags, remainder = bag_breakdown(balance)
        lines.append(
            YarnStockLine(
                yarn_count=code,
                produced_kg=made,
                dispatched_kg=shipped,
                balance_kg=balance,
                bags=bags,
                remainder_kg=remainder,
            )
        )
    return lines


def ensure_stock_covers(changes: Mapping[str, Decimal]) -> None:
    """Raise if applying the signed ``changes`` would leave any count negative.

    Callers must already hold the counts' locks.
    """

    if not changes:
        return
    balances = yarn_balances(changes.keys())
    errors: Dict[str, str] = {}
    for code, delta in sorted(changes.items()):
        after = quantize(balances.get(code, ZERO) + delta, KG_QUANT)
        if after < ZERO:
            errors[code] = f"Only {balances.get(code, ZERO)} kg of {code} in stock."
    if errors:
        raise InsufficientYarnStock(errors=errors)


def _parse_items(items: Any, errors: Dict[str, str]) -> List[Dict[str, Any]]:
    if not isinstance(items, Sequence) or isinstance(items, (str, bytes)) or not items:
        errors["items"] = "Add at least one item."
        return []

    parsed: List[Dict[str, Any]] = []
    for index, item in enumerate(items):
        prefix = f"items.{index}."
        if not isinstance(item, Mapping):
            errors[prefix + "yarn_count"] = "Invalid item."
            continue
        code = normalize_count(item.get("yarn_count"))
        if code is None:
            errors[prefix + "yarn_count"] = "Yarn count is required."
        bags = int_field(item.get("bags"), prefix + "bags", errors, minimum=1, maximum=MAX_BAGS)
        weight = decimal_field(
            item.get("weight_kg"),
            prefix + "weight_kg",
            errors,
            exclusive_minimum=ZERO,
            maximum=MAX_LINE_WEIGHT_KG,
            quantize_to=KG_QUANT,
        )
        if code is None or bags is None or weight is None:
            continue
        parsed.append({"yarn_count": code, "bags": bags, "weight_kg": weight})
    return parsed


def _validate_dispatch(
    *,
    dispatch_date: Any,
    customer: Any,
    vehicle_no: Any,
    driver_name: Any,
    items: Any,
) -> Dict[str, Any]:
    errors: Dict[str, str] = {}
    cleaned_date = date_field(dispatch_date, "date", errors)
    customer_name = name_field(customer, "customer", errors, label="Customer name")
    vehicle = strip_or_none(vehicle_no)
    if vehicle is None:
        errors["vehicle_no"] = "Vehicle number is required."
    elif not VEHICLE_REGEX.match(vehicle):
        errors["vehicle_no"] = "Invalid format. Use: TN 01 AB 1234"
    else:
        vehicle = vehicle.upper()
    driver = name_field(driver_name, "driver_name", errors, label="Driver name", required=False)
    lines = _parse_items(items, errors)

    if errors:
        numeric_only = all(key.endswith(("bags", "weight_kg")) for key in errors)
        raise (InvalidQuantity if numeric_only else InvalidInput)(errors)
    return {
        "date": cleaned_date,
        "customer_name": customer_name,
        "vehicle_no": vehicle,
        "driver_name": driver,
        "items": lines,
    }


def record_dispatch(
    *,
    date: Any,
    customer: Any,
    vehicle_no: Any,
    items: Any,
    driver_name: Any = None,
    actor_id: Optional[int] = None,
    audit_sink: Optional[audit.AuditSink] = None,
) -> DispatchEntry:
    cleaned = _validate_dispatch(
        dispatch_date=date,
        customer=customer,
        vehicle_no=vehicle_no,
        driver_name=driver_name,
        items=items,
    )
    demand: Dict[str, Decimal] = {}
    for line in cleaned["items"]:
        demand[line["yarn_count"]] = demand.get(line["yarn_count"], ZERO) - line["weight_kg"]

    def work() -> DispatchEntry:
        lock_yarn_counts(demand.keys())
        ensure_stock_covers(demand)
        entry = DispatchEntry(
            date=cleaned["date"],
            customer_name=cleaned["customer_name"],
            vehicle_no=cleaned["vehicle_no"],
            driver_name=cleaned["driver_name"],
            total_bags=sum(line["bags"] for line in cleaned["items"]),
            total_weight_kg=quantize(sum((line["weight_kg"] for line in cleaned["items"]), ZERO), KG_QUANT),
            created_by=actor_id,
        )
        for line in cleaned["items"]:
            entry.items.append(DispatchItem(**line))
        db.session.add(entry)
        db.session.flush()
        return entry

    entry = atomic(work, operation="record_dispatch")
    logger.info(
        {"event": "dispatch_recorded", "dispatch_id": entry.id, "weight_kg": str(entry.total_weight_kg)}
    )
    audit.notify(
        "dispatch.create",
        "DispatchEntry",
        entry.id,
        actor_id=actor_id,
        details={"customer": entry.customer_name, "total_weight_kg": str(entry.total_weight_kg)},
        sink=audit_sink,
    )
    return entry


def get_dispatch(dispatch_id: Any) -> DispatchEntry:
    errors: Dict[str, str] = {}
    ident = id_field(dispatch_id, "id", errors)
    if errors:
        raise InvalidInput(errors)
    entry = (
        DispatchEntry.query.options(selectinload(DispatchEntry.items))
        .filter(DispatchEntry.id == ident)
        .first()
    )
    if entry is None:
        raise NotFound("Dispatch entry not found.", {"id": "Dispatch entry not found."})
    return entry


def list_dispatches(*, start: Optional[date] = None, end: Optional[date] = None) -> List[DispatchEntry]:
    stmt = DispatchEntry.query.options(selectinload(DispatchEntry.items)).order_by(
        DispatchEntry.date.desc(), DispatchEntry.id.desc()
    )
    if start:
        stmt = stmt.filter(DispatchEntry.date >= start)
    if end:
        stmt = stmt.filter(DispatchEntry.date <= end)
    return list(stmt)


def delete_dispatch(
    dispatch_id: Any,
    *,
    actor_id: Optional[int] = None,
    audit_sink: Optional[audit.AuditSink] = None,
) -> None:
    ident = get_dispatch(dispatch_id).id

    def work() -> None:
        entry = db.session.get(DispatchEntry, ident)
        if entry is None:
            raise NotFound("Dispatch entry not found.", {"id": "Dispatch entry not found."})
        lock_yarn_counts(item.yarn_count for item in entry.items)
        db.session.delete(entry)

    atomic(work, operation="delete_dispatch")
    logger.info({"event": "dispatch_deleted", "dispatch_id": ident})
    audit.notify("dispatch.delete", "DispatchEntry", ident, actor_id=actor_id, sink=audit_sink)
