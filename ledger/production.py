"""Production reconciliation: cotton consumed in, yarn and waste out.

A production entry is accepted only when every batch it draws from still
holds the weight asked for, and when consumed weight equals produced yarn
plus waste within the shared tolerance band.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import selectinload

from extensions import db
from models import (
    OUTPUT_BASED_CATEGORIES,
    Batch,
    CostingEntry,
    ProductionConsumption,
    ProductionEntry,
    ProductionOutput,
)

from . import audit, stock
from .batches import consumed_by_batch
from .errors import (
    EfficiencyExceeded,
    InsufficientBatchBalance,
    InvalidInput,
    InvalidQuantity,
    MaterialBalanceMismatch,
    NotFound,
)
from .transactions import atomic, lock_for_update, touch
from .validation import (
    KG_QUANT,
    TOLERANCE,
    ZERO,
    date_field,
    decimal_field,
    id_field,
    quantize,
    to_decimal,
)

logger = logging.getLogger(__name__)

LOW_EFFICIENCY_PERCENT = Decimal("70")
MAX_LINE_WEIGHT_KG = Decimal("999999")

WASTE_COLUMNS = {
    "blow_room": "waste_blow_room_kg",
    "carding": "waste_carding_kg",
    "oe": "waste_oe_kg",
    "others": "waste_others_kg",
}


@dataclass
class ProductionDraft:
    """A validated, balanced production entry that has not touched the database."""

    date: date
    consumptions: Dict[int, Decimal]
    outputs: Dict[str, Decimal]
    waste: Dict[str, Decimal]
    total_consumed: Decimal
    total_produced: Decimal
    total_waste: Decimal
    warnings: List[str] = field(default_factory=list)

    @property
    def efficiency(self) -> Decimal:
        return efficiency_percent(self.total_produced, self.total_consumed)


def efficiency_percent(produced: Any, consumed: Any) -> Decimal:
    """Produced over consumed as a percentage, half-up to 0.01; zero when nothing was consumed."""

    consumed = Decimal(consumed or 0)
    if consumed <= ZERO:
        return ZERO
    ratio = Decimal(produced or 0) / consumed * Decimal("100")
    return ratio.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def efficiency_warning(efficiency: Decimal) -> Optional[str]:
    if efficiency and efficiency < LOW_EFFICIENCY_PERCENT:
        return f"Efficiency is low ({efficiency}%). Check waste figures."
    return None


def _is_list(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes))


def _parse_consumptions(items: Any, errors: Dict[str, str]) -> Dict[int, Decimal]:
    if not _is_list(items) or not items:
        errors["consumptions"] = "Select at least one batch."
        return {}

    merged: Dict[int, Decimal] = {}
    for index, item in enumerate(items):
        prefix = f"consumptions.{index}."
        if not isinstance(item, Mapping):
            errors[prefix + "batch_id"] = "Invalid consumption line."
            continue
        batch_id = id_field(item.get("batch_id"), prefix + "batch_id", errors)
        weight = decimal_field(
            item.get("weight_kg"),
            prefix + "weight_kg",
            errors,
            exclusive_minimum=ZERO,
            maximum=MAX_LINE_WEIGHT_KG,
            quantize_to=KG_QUANT,
        )
        if batch_id is None or weight is None:
            continue
        # The same batch listed twice draws once for the combined weight.
        merged[batch_id] = merged.get(batch_id, ZERO) + weight
    return merged


def _parse_outputs(items: Any, errors: Dict[str, str]) -> Dict[str, Decimal]:
    if not _is_list(items) or not items:
        errors["outputs"] = "Add at least one yarn output."
        return {}

    merged: Dict[str, Decimal] = {}
    for index, item in enumerate(items):
        prefix = f"outputs.{index}."
        if not isinstance(item, Mapping):
            errors[prefix + "yarn_count"] = "Invalid output line."
            continue
        code = stock.normalize_count(item.get("yarn_count"))
        if code is None:
            errors[prefix + "yarn_count"] = "Yarn count is required."
        weight = decimal_field(
            item.get("weight_kg"),
            prefix + "weight_kg",
            errors,
            exclusive_minimum=ZERO,
            maximum=MAX_LINE_WEIGHT_KG,
            quantize_to=KG_QUANT,
        )
        if code is None or weight is None:
            continue
        merged[code] = merged.get(code, ZERO) + weight
    return merged


def _parse_waste(waste: Any, errors: Dict[str, str]) -> Dict[str, Decimal]:
    if waste is None:
        waste = {}
    if not isinstance(waste, Mapping):
        errors["waste"] = "Waste must be an object."
        return {}
    return {
        key: decimal_field(
            waste.get(key),
            f"waste.{key}",
            errors,
            minimum=ZERO,
            maximum=MAX_LINE_WEIGHT_KG,
            quantize_to=KG_QUANT,
            default=ZERO,
        )
        for key in WASTE_COLUMNS
    }


def prepare_production(*, date: Any, consumptions: Any, outputs: Any, waste: Any = None) -> ProductionDraft:
    """Validate the payload and check its material balance.

    Raises ``InvalidInput``/``InvalidQuantity`` for malformed fields,
    ``EfficiencyExceeded`` when yarn out exceeds cotton in, and
    ``MaterialBalanceMismatch`` when consumed differs from produced plus waste.
    """

    errors: Dict[str, str] = {}
    entry_date = date_field(date, "date", errors)
    consumed = _parse_consumptions(consumptions, errors)
    produced = _parse_outputs(outputs, errors)
    waste_values = _parse_waste(waste, errors)

    if errors:
        numeric_only = all(key.endswith("_kg") or key.startswith("waste.") for key in errors)
        raise (InvalidQuantity if numeric_only else InvalidInput)(errors)

    total_consumed = quantize(sum(consumed.values(), ZERO), KG_QUANT)
    total_produced = quantize(sum(produced.values(), ZERO), KG_QUANT)
    total_waste = quantize(sum(waste_values.values(), ZERO), KG_QUANT)

    if total_produced > total_consumed + TOLERANCE:
        raise EfficiencyExceeded(
            errors={
                "outputs": f"Yarn produced ({total_produced} kg) exceeds cotton consumed ({total_consumed} kg)."
            }
        )
    difference = total_consumed - total_produced - total_waste
    if abs(difference) > TOLERANCE:
        raise MaterialBalanceMismatch(
            errors={
                "waste": (
                    f"Consumed {total_consumed} kg but produced {total_produced} kg "
                    f"+ waste {total_waste} kg (difference {difference} kg)."
                )
            }
        )

    draft = ProductionDraft(
        date=entry_date,
        consumptions=consumed,
        outputs=produced,
        waste=waste_values,
        total_consumed=total_consumed,
        total_produced=total_produced,
        total_waste=total_waste,
    )
    warning = efficiency_warning(draft.efficiency)
    if warning:
        draft.warnings.append(warning)
    return draft


def _lock_batches(batch_ids: Iterable[int]) -> Dict[int, Batch]:
    ids = sorted(set(batch_ids))
    if not ids:
        return {}
    rows = lock_for_update(Batch.query.filter(Batch.id.in_(ids)).order_by(Batch.id)).all()
    touch(rows)
    return {row.id: row for row in rows}


def _check_batch_balances(draft: ProductionDraft, *, exclude_production_id: Optional[int] = None) -> None:
    batches = _lock_batches(draft.consumptions)
    missing = [batch_id for batch_id in draft.consumptions if batch_id not in batches]
    if missing:
        raise NotFound(
            "Batch not found.",
            {f"batch_id.{batch_id}": "Batch not found." for batch_id in sorted(missing)},
        )

    consumed = consumed_by_batch(batches.keys(), exclude_production_id=exclude_production_id)
    errors: Dict[str, str] = {}
    for batch_id, weight in sorted(draft.consumptions.items()):
        batch = batches[batch_id]
        remaining = quantize(Decimal(batch.total_weight_kg) - consumed.get(batch_id, ZERO), KG_QUANT)
        if weight > remaining:
            errors[f"batch_id.{batch_id}"] = (
                f"Batch {batch.batch_code} has only {remaining} kg remaining; {weight} kg requested."
            )
    if errors:
        raise InsufficientBatchBalance(errors=errors)


def _build_children(entry: ProductionEntry, draft: ProductionDraft) -> None:
    entry.date = draft.date
    entry.total_consumed_kg = draft.total_consumed
    entry.total_produced_kg = draft.total_produced
    entry.total_waste_kg = draft.total_waste
    for key, column in WASTE_COLUMNS.items():
        setattr(entry, column, draft.waste[key])

    entry.consumptions = [
        ProductionConsumption(batch_id=batch_id, weight_kg=weight)
        for batch_id, weight in sorted(draft.consumptions.items())
    ]
    outputs = []
    for code, weight in draft.outputs.items():
        bags, remainder = stock.bag_breakdown(weight)
        outputs.append(ProductionOutput(yarn_count=code, weight_kg=weight, bags=bags, remainder_kg=remainder))
    entry.outputs = outputs


def _outputs_by_count(entry: ProductionEntry) -> Dict[str, Decimal]:
    totals: Dict[str, Decimal] = {}
    for output in entry.outputs:
        totals[output.yarn_count] = totals.get(output.yarn_count, ZERO) + Decimal(output.weight_kg)
    return totals


def mark_basis_stale(dates: Iterable[date]) -> int:
    """Flag output-based cost entries whose frozen basis no longer matches production."""

    wanted = sorted(set(dates))
    if not wanted:
        return 0
    rows = CostingEntry.query.filter(
        CostingEntry.date.in_(wanted),
        CostingEntry.category.in_(list(OUTPUT_BASED_CATEGORIES)),
        CostingEntry.basis_stale.is_(False),
    ).all()
    for row in rows:
        row.basis_stale = True
    if rows:
        logger.info(
            {
                "event": "costing_basis_stale",
                "dates": [value.isoformat() for value in wanted],
                "entries": [row.id for row in rows],
            }
        )
    return len(rows)


def production_output_kg(output_date: date) -> Decimal:
    """Total yarn produced on ``output_date`` across all production entries."""

    total = (
        db.session.query(func.coalesce(func.sum(ProductionEntry.total_produced_kg), 0))
        .filter(ProductionEntry.date == output_date)
        .scalar()
    )
    return quantize(to_decimal(total), KG_QUANT)


def get_production(production_id: Any) -> ProductionEntry:
    errors: Dict[str, str] = {}
    ident = id_field(production_id, "id", errors)
    if errors:
        raise InvalidInput(errors)
    entry = (
        ProductionEntry.query.options(
            selectinload(ProductionEntry.consumptions).selectinload(ProductionConsumption.batch),
            selectinload(ProductionEntry.outputs),
        )
        .filter(ProductionEntry.id == ident)
        .first()
    )
    if entry is None:
        raise NotFound("Production entry not found.", {"id": "Production entry not found."})
    return entry


def list_production(*, start: Optional[date] = None, end: Optional[date] = None) -> List[ProductionEntry]:
    stmt = ProductionEntry.query.options(
        selectinload(ProductionEntry.consumptions).selectinload(ProductionConsumption.batch),
        selectinload(ProductionEntry.outputs),
    ).order_by(ProductionEntry.date.desc(), ProductionEntry.id.desc())
    if start:
        stmt = stmt.filter(ProductionEntry.date >= start)
    if end:
        stmt = stmt.filter(ProductionEntry.date <= end)
    return list(stmt)


def record_production(
    *,
    date: Any,
    consumptions: Any,
    outputs: Any,
    waste: Any = None,
    actor_id: Optional[int] = None,
    audit_sink: Optional[audit.AuditSink] = None,
) -> ProductionEntry:
    draft = prepare_production(date=date, consumptions=consumptions, outputs=outputs, waste=waste)

    def work() -> ProductionEntry:
        _check_batch_balances(draft)
        stock.lock_yarn_counts(draft.outputs.keys(), create=True)
        entry = ProductionEntry(created_by=actor_id)
        _build_children(entry, draft)
        db.session.add(entry)
        mark_basis_stale([draft.date])
        db.session.flush()
        return entry

    entry = atomic(work, operation="record_production", retry_if=stock.is_registry_race)
    entry.warnings = list(draft.warnings)
    for warning in draft.warnings:
        logger.warning({"event": "production_efficiency_advisory", "production_id": entry.id, "message": warning})
    logger.info(
        {
            "event": "production_recorded",
            "production_id": entry.id,
            "consumed_kg": str(entry.total_consumed_kg),
            "produced_kg": str(entry.total_produced_kg),
        }
    )
    audit.notify(
        "production.create",
        "ProductionEntry",
        entry.id,
        actor_id=actor_id,
        details={"date": entry.date.isoformat(), "produced_kg": str(entry.total_produced_kg)},
        sink=audit_sink,
    )
    return entry


def update_production(
    production_id: Any,
    *,
    date: Any,
    consumptions: Any,
    outputs: Any,
    waste: Any = None,
    actor_id: Optional[int] = None,
    audit_sink: Optional[audit.AuditSink] = None,
) -> ProductionEntry:
    """Replace an entry's lines; balances are checked without the entry's own draw."""

    ident = get_production(production_id).id
    draft = prepare_production(date=date, consumptions=consumptions, outputs=outputs, waste=waste)

    def work() -> ProductionEntry:
        entry = db.session.get(ProductionEntry, ident)
        if entry is None:
            raise NotFound("Production entry not found.", {"id": "Production entry not found."})
        previous_date = entry.date
        previous_outputs = _outputs_by_count(entry)

        _check_batch_balances(draft, exclude_production_id=entry.id)
        codes = set(previous_outputs) | set(draft.outputs)
        stock.lock_yarn_counts(codes, create=True)
        stock.ensure_stock_covers(
            {
                code: draft.outputs.get(code, ZERO) - previous_outputs.get(code, ZERO)
                for code in codes
            }
        )

        _build_children(entry, draft)
        mark_basis_stale({previous_date, draft.date})
        db.session.flush()
        return entry

    entry = atomic(work, operation="update_production", retry_if=stock.is_registry_race)
    entry.warnings = list(draft.warnings)
    logger.info({"event": "production_updated", "production_id": entry.id})
    audit.notify(
        "production.update",
        "ProductionEntry",
        entry.id,
        actor_id=actor_id,
        details={"date": entry.date.isoformat(), "produced_kg": str(entry.total_produced_kg)},
        sink=audit_sink,
    )
    return entry


def delete_production(
    production_id: Any,
    *,
    actor_id: Optional[int] = None,
    audit_sink: Optional[audit.AuditSink] = None,
) -> None:
    """Remove an entry; its batch draw and yarn output disappear with it."""

    ident = get_production(production_id).id

    def work() -> date:
        entry = db.session.get(ProductionEntry, ident)
        if entry is None:
            raise NotFound("Production entry not found.", {"id": "Production entry not found."})
        produced = _outputs_by_count(entry)
        _lock_batches(line.batch_id for line in entry.consumptions)
        stock.lock_yarn_counts(produced.keys())
        stock.ensure_stock_covers({code: -weight for code, weight in produced.items()})

        entry_date = entry.date
        mark_basis_stale([entry_date])
        db.session.delete(entry)
        return entry_date

    entry_date = atomic(work, operation="delete_production")
    logger.info({"event": "production_deleted", "production_id": ident, "date": entry_date.isoformat()})
    audit.notify(
        "production.delete",
        "ProductionEntry",
        ident,
        actor_id=actor_id,
        details={"date": entry_date.isoformat()},
        sink=audit_sink,
    )
