"""Raw-cotton batch ledger: receipts and their remaining balances."""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional

from flask import current_app, has_app_context
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from extensions import db
from models import Batch, ProductionConsumption

from . import audit
from .errors import BatchInUse, CodeExhausted, InvalidInput, InvalidQuantity, NotFound
from .transactions import atomic, is_unique_violation, lock_for_update, touch
from .validation import (
    KG_QUANT,
    ZERO,
    date_field,
    decimal_field,
    int_field,
    name_field,
    quantize,
    to_decimal,
)

logger = logging.getLogger(__name__)

BATCH_CODE_ALPHABET = string.ascii_uppercase + string.digits
BATCH_CODE_SUFFIX_LENGTH = 3
DEFAULT_CODE_ATTEMPTS = 10

MAX_BALE_COUNT = 9999
MAX_BATCH_WEIGHT_KG = Decimal("999999")
MIN_AVG_BALE_KG = Decimal("10")
MAX_AVG_BALE_KG = Decimal("500")


@dataclass
class BatchBalance:
    batch: Batch
    consumed_kg: Decimal
    remaining_kg: Decimal


def random_suffix() -> str:
    return "".join(secrets.choice(BATCH_CODE_ALPHABET) for _ in range(BATCH_CODE_SUFFIX_LENGTH))


def _max_code_attempts() -> int:
    if has_app_context():
        try:
            return max(1, int(current_app.config.get("BATCH_CODE_MAX_ATTEMPTS", DEFAULT_CODE_ATTEMPTS)))
        except (TypeError, ValueError):
            return DEFAULT_CODE_ATTEMPTS
    return DEFAULT_CODE_ATTEMPTS


def generate_batch_code(
    batch_date: date,
    *,
    suffix_factory: Optional[Callable[[], str]] = None,
    max_attempts: Optional[int] = None,
    taken: Iterable[str] = (),
) -> str:
    """Return ``YYYYMM`` + a random suffix not used by another batch that month."""

    factory = suffix_factory or random_suffix
    attempts = max_attempts or _max_code_attempts()
    prefix = batch_date.strftime("%Y%m")
    existing = {
        code for (code,) in db.session.query(Batch.batch_code).filter(Batch.batch_code.like(f"{prefix}%"))
    }
    existing.update(taken)

    for _ in range(attempts):
        code = f"{prefix}{factory()}"
        if code not in existing:
            return code
        existing.add(code)

    logger.error({"event": "batch_code_exhausted", "prefix": prefix, "attempts": attempts})
    raise CodeExhausted()


def average_bale_weight_warning(bale_count: int, weight_kg: Decimal) -> Optional[str]:
    """Advisory only: flags implausible kg-per-bale without blocking the receipt."""

    if not bale_count or bale_count <= 0 or weight_kg <= 0:
        return None
    average = quantize(Decimal(weight_kg) / Decimal(bale_count), Decimal("0.1"))
    if average < MIN_AVG_BALE_KG:
        return f"Average bale weight is very low ({average} kg/bale)."
    if average > MAX_AVG_BALE_KG:
        return f"Average bale weight is very high ({average} kg/bale)."
    return None


def consumed_by_batch(
    batch_ids: Optional[Iterable[int]] = None,
    *,
    exclude_production_id: Optional[int] = None,
) -> Dict[int, Decimal]:
    stmt = db.session.query(
        ProductionConsumption.batch_id,
        func.coalesce(func.sum(ProductionConsumption.weight_kg), 0),
    )
    if batch_ids is not None:
        ids = list(batch_ids)
        if not ids:
            return {}
        stmt = stmt.filter(ProductionConsumption.batch_id.in_(ids))
    if exclude_production_id is not None:
        stmt = stmt.filter(ProductionConsumption.production_id != exclude_production_id)
    rows = stmt.group_by(ProductionConsumption.batch_id).all()
    return {batch_id: quantize(to_decimal(total), KG_QUANT) for batch_id, total in rows}


def _balance_for(batch: Batch, consumed: Dict[int, Decimal]) -> BatchBalance:
    used = consumed.get(batch.id, ZERO)
    remaining = quantize(Decimal(batch.total_weight_kg) - used, KG_QUANT)
    return BatchBalance(batch=batch, consumed_kg=used, remaining_kg=remaining)


def get_batch(batch_id: Any) -> Batch:
    errors: Dict[str, str] = {}
    try:
        ident = int(batch_id)
    except (TypeError, ValueError):
        errors["id"] = "Invalid batch identifier."
        raise InvalidInput(errors)
    batch = db.session.get(Batch, ident)
    if batch is None:
        raise NotFound("Batch not found.", {"id": "Batch not found."})
    return batch


def remaining_balance(batch_id: Any) -> Decimal:
    batch = get_batch(batch_id)
    return _balance_for(batch, consumed_by_batch([batch.id])).remaining_kg


def batch_balance(batch_id: Any) -> BatchBalance:
    batch = get_batch(batch_id)
    return _balance_for(batch, consumed_by_batch([batch.id]))


def list_batches(*, start: Optional[date] = None, end: Optional[date] = None) -> List[BatchBalance]:
    stmt = Batch.query.order_by(Batch.date.desc(), Batch.id.desc())
    if start:
        stmt = stmt.filter(Batch.date >= start)
    if end:
        stmt = stmt.filter(Batch.date <= end)
    batches = list(stmt)
    consumed = consumed_by_batch([batch.id for batch in batches])
    return [_balance_for(batch, consumed) for batch in batches]


def list_available() -> List[BatchBalance]:
    """Batches that still hold cotton, oldest first."""

    batches = list(Batch.query.order_by(Batch.date.asc(), Batch.id.asc()))
    consumed = consumed_by_batch([batch.id for batch in batches])
    balances = [_balance_for(batch, consumed) for batch in batches]
    return [balance for balance in balances if balance.remaining_kg > ZERO]


def _validate_receipt(
    *,
    batch_date: Any,
    supplier: Any,
    bale_count: Any,
    weight_kg: Any,
    partial: bool = False,
) -> Dict[str, Any]:
    errors: Dict[str, str] = {}
    cleaned: Dict[str, Any] = {}

    if not partial or batch_date is not None:
        cleaned["date"] = date_field(batch_date, "date", errors)
    if not partial or supplier is not None:
        cleaned["supplier"] = name_field(supplier, "supplier", errors, label="Supplier name")
    if not partial or bale_count is not None:
        cleaned["bale_count"] = int_field(
            bale_count, "bale_count", errors, minimum=1, maximum=MAX_BALE_COUNT
        )
    if not partial or weight_kg is not None:
        cleaned["total_weight_kg"] = decimal_field(
            weight_kg,
            "weight_kg",
            errors,
            exclusive_minimum=ZERO,
            maximum=MAX_BATCH_WEIGHT_KG,
            quantize_to=KG_QUANT,
        )

    if errors:
        numeric_only = set(errors) <= {"bale_count", "weight_kg"}
        raise (InvalidQuantity if numeric_only else InvalidInput)(errors)
    return cleaned


def create_batch(
    *,
    date: Any,
    supplier: Any,
    bale_count: Any,
    weight_kg: Any,
    actor_id: Optional[int] = None,
    suffix_factory: Optional[Callable[[], str]] = None,
    audit_sink: Optional[audit.AuditSink] = None,
) -> Batch:
    cleaned = _validate_receipt(batch_date=date, supplier=supplier, bale_count=bale_count, weight_kg=weight_kg)

    warning = average_bale_weight_warning(cleaned["bale_count"], cleaned["total_weight_kg"])
    if warning:
        logger.warning({"event": "batch_bale_weight_advisory", "message": warning})

    max_attempts = _max_code_attempts()
    rejected_codes: set[str] = set()
    attempts = 0

    while True:
        attempts += 1

        def work() -> Batch:
            code = generate_batch_code(
                cleaned["date"],
                suffix_factory=suffix_factory,
                max_attempts=max_attempts,
                taken=rejected_codes,
            )
            batch = Batch(batch_code=code, created_by=actor_id, **cleaned)
            db.session.add(batch)
            db.session.flush()
            return batch

        try:
            batch = atomic(work, operation="create_batch")
            break
        except IntegrityError as exc:
            if not is_unique_violation(exc, "batch_code"):
                raise
            # Another writer took the same code between our read and commit.
            if attempts >= max_attempts:
                raise CodeExhausted() from exc
            rejected_codes.update(
                code for (code,) in db.session.query(Batch.batch_code).filter(
                    Batch.batch_code.like(f"{cleaned['date'].strftime('%Y%m')}%")
                )
            )

    batch.warnings = [warning] if warning else []
    logger.info({"event": "batch_created", "batch_code": batch.batch_code, "weight_kg": str(batch.total_weight_kg)})
    audit.notify(
        "batch.create",
        "Batch",
        batch.id,
        actor_id=actor_id,
        details={"batch_code": batch.batch_code},
        sink=audit_sink,
    )
    return batch


def update_batch(
    batch_id: Any,
    *,
    date: Any = None,
    supplier: Any = None,
    bale_count: Any = None,
    weight_kg: Any = None,
    actor_id: Optional[int] = None,
    audit_sink: Optional[audit.AuditSink] = None,
) -> Batch:
    """Edit a receipt; weight is frozen once any production consumed from it."""

    ident = get_batch(batch_id).id
    cleaned = _validate_receipt(
        batch_date=date, supplier=supplier, bale_count=bale_count, weight_kg=weight_kg, partial=True
    )

    def work() -> Batch:
        batch = lock_for_update(Batch.query.filter(Batch.id == ident)).one_or_none()
        if batch is None:
            raise NotFound("Batch not found.", {"id": "Batch not found."})
        new_weight = cleaned.get("total_weight_kg")
        if new_weight is not None and new_weight != Decimal(batch.total_weight_kg):
            used = consumed_by_batch([batch.id]).get(batch.id, ZERO)
            if used > ZERO:
                raise BatchInUse(
                    "Batch weight cannot change after production has consumed it.",
                    {"weight_kg": f"{used} kg already consumed from {batch.batch_code}."},
                )
        for key, value in cleaned.items():
            setattr(batch, key, value)
        touch([batch])
        return batch

    batch = atomic(work, operation="update_batch")
    audit.notify(
        "batch.update",
        "Batch",
        batch.id,
        actor_id=actor_id,
        details={"fields": sorted(cleaned)},
        sink=audit_sink,
    )
    return batch


def delete_batch(
    batch_id: Any,
    *,
    actor_id: Optional[int] = None,
    audit_sink: Optional[audit.AuditSink] = None,
) -> None:
    ident = get_batch(batch_id).id

    def work() -> str:
        batch = lock_for_update(Batch.query.filter(Batch.id == ident)).one_or_none()
        if batch is None:
            raise NotFound("Batch not found.", {"id": "Batch not found."})
        balance = _balance_for(batch, consumed_by_batch([batch.id]))
        if balance.remaining_kg < Decimal(batch.total_weight_kg):
            raise BatchInUse(errors={"id": f"{balance.consumed_kg} kg consumed from {batch.batch_code}."})
        code = batch.batch_code
        db.session.delete(batch)
        return code

    code = atomic(work, operation="delete_batch")
    logger.info({"event": "batch_deleted", "batch_code": code})
    audit.notify("batch.delete", "Batch", ident, actor_id=actor_id, details={"batch_code": code}, sink=audit_sink)
