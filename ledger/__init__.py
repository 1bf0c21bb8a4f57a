"""Inventory ledger and production reconciliation core."""

from .errors import (
    BatchInUse,
    CodeExhausted,
    ConcurrentModification,
    DuplicateInvoiceNumber,
    EfficiencyExceeded,
    InsufficientBatchBalance,
    InsufficientYarnStock,
    InvalidInput,
    InvalidQuantity,
    InvoiceHasPayments,
    LedgerError,
    MaterialBalanceMismatch,
    NoProductionForDate,
    NotFound,
    PaymentExceedsBalance,
)
from .batches import (
    average_bale_weight_warning,
    batch_balance,
    create_batch,
    delete_batch,
    generate_batch_code,
    get_batch,
    list_available,
    list_batches,
    remaining_balance,
    update_batch,
)
from .production import (
    delete_production,
    get_production,
    list_production,
    production_output_kg,
    record_production,
    update_production,
)
from .stock import (
    bag_breakdown,
    delete_dispatch,
    get_dispatch,
    list_dispatches,
    record_dispatch,
    yarn_stock,
)
from .costing import (
    cost_per_kg,
    cost_summary,
    daily_cost_summary,
    delete_costing,
    list_costing,
    record_electricity,
    record_employee,
    record_expense,
    record_maintenance,
    record_packaging,
)
from .billing import (
    create_invoice,
    delete_invoice,
    delete_payment,
    derive_status,
    get_invoice,
    list_invoices,
    record_payment,
)
from .reports import dashboard_summary

__all__ = [
    "BatchInUse",
    "CodeExhausted",
    "ConcurrentModification",
    "DuplicateInvoiceNumber",
    "EfficiencyExceeded",
    "InsufficientBatchBalance",
    "InsufficientYarnStock",
    "InvalidInput",
    "InvalidQuantity",
    "InvoiceHasPayments",
    "LedgerError",
    "MaterialBalanceMismatch",
    "NoProductionForDate",
    "NotFound",
    "PaymentExceedsBalance",
    "average_bale_weight_warning",
    "bag_breakdown",
    "batch_balance",
    "cost_per_kg",
    "cost_summary",
    "create_batch",
    "create_invoice",
    "daily_cost_summary",
    "dashboard_summary",
    "delete_batch",
    "delete_costing",
    "delete_dispatch",
    "delete_invoice",
    "delete_payment",
    "delete_production",
    "derive_status",
    "generate_batch_code",
    "get_batch",
    "get_dispatch",
    "get_invoice",
    "get_production",
    "list_available",
    "list_batches",
    "list_costing",
    "list_dispatches",
    "list_invoices",
    "list_production",
    "production_output_kg",
    "record_dispatch",
    "record_electricity",
    "record_employee",
    "record_expense",
    "record_maintenance",
    "record_packaging",
    "record_payment",
    "remaining_balance",
    "update_batch",
    "update_production",
    "yarn_stock",
]
