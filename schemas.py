from marshmallow import Schema, fields

from models import CostCategory, InvoiceStatus, PaymentMethod, RoleEnum


class UserSchema(Schema):
    id = fields.Int()
    name = fields.Str()
    email = fields.Str()
    role = fields.Enum(RoleEnum, by_value=True)
    active = fields.Bool()


class BatchSchema(Schema):
    id = fields.Int()
    batch_code = fields.Str()
    date = fields.Date()
    supplier = fields.Str()
    bale_count = fields.Int()
    total_weight_kg = fields.Decimal(as_string=True)
    created_by = fields.Int(allow_none=True)
    created_at = fields.DateTime()
    updated_at = fields.DateTime()


class BatchBalanceSchema(Schema):
    """Dumps a ``BatchBalance``: the batch fields plus its running balance."""

    id = fields.Function(lambda obj: obj.batch.id)
    batch_code = fields.Function(lambda obj: obj.batch.batch_code)
    date = fields.Function(lambda obj: obj.batch.date.isoformat())
    supplier = fields.Function(lambda obj: obj.batch.supplier)
    bale_count = fields.Function(lambda obj: obj.batch.bale_count)
    total_weight_kg = fields.Function(lambda obj: str(obj.batch.total_weight_kg))
    consumed_kg = fields.Decimal(as_string=True)
    remaining_kg = fields.Decimal(as_string=True)


class ProductionConsumptionSchema(Schema):
    id = fields.Int()
    batch_id = fields.Int()
    batch_code = fields.Method("get_batch_code")
    weight_kg = fields.Decimal(as_string=True)

    def get_batch_code(self, obj):
        try:
            return obj.batch.batch_code
        except AttributeError:
            return None


class ProductionOutputSchema(Schema):
    id = fields.Int()
    yarn_count = fields.Str()
    weight_kg = fields.Decimal(as_string=True)
    bags = fields.Int()
    remainder_kg = fields.Decimal(as_string=True)


class ProductionEntrySchema(Schema):
    id = fields.Int()
    date = fields.Date()
    total_consumed_kg = fields.Decimal(as_string=True)
    total_produced_kg = fields.Decimal(as_string=True)
    total_waste_kg = fields.Decimal(as_string=True)
    waste = fields.Method("get_waste")
    created_by = fields.Int(allow_none=True)
    created_at = fields.DateTime()
    updated_at = fields.DateTime()

    consumptions = fields.Nested(ProductionConsumptionSchema, many=True)
    outputs = fields.Nested(ProductionOutputSchema, many=True)

    def get_waste(self, obj):
        return {
            "blow_room": str(obj.waste_blow_room_kg),
            "carding": str(obj.waste_carding_kg),
            "oe": str(obj.waste_oe_kg),
            "others": str(obj.waste_others_kg),
        }


class DispatchItemSchema(Schema):
    id = fields.Int()
    yarn_count = fields.Str()
    bags = fields.Int()
    weight_kg = fields.Decimal(as_string=True)


class DispatchEntrySchema(Schema):
    id = fields.Int()
    date = fields.Date()
    customer_name = fields.Str()
    vehicle_no = fields.Str()
    driver_name = fields.Str(allow_none=True)
    total_bags = fields.Int()
    total_weight_kg = fields.Decimal(as_string=True)
    created_by = fields.Int(allow_none=True)
    created_at = fields.DateTime()

    items = fields.Nested(DispatchItemSchema, many=True)


class YarnStockSchema(Schema):
    yarn_count = fields.Str()
    produced_kg = fields.Decimal(as_string=True)
    dispatched_kg = fields.Decimal(as_string=True)
    balance_kg = fields.Decimal(as_string=True)
    bags = fields.Int()
    remainder_kg = fields.Decimal(as_string=True)


class CostingEntrySchema(Schema):
    id = fields.Int()
    date = fields.Date()
    category = fields.Enum(CostCategory, by_value=True)
    total_cost = fields.Decimal(as_string=True)
    details = fields.Str(allow_none=True)
    units_consumed = fields.Decimal(as_string=True, allow_none=True)
    rate_per_unit = fields.Decimal(as_string=True, allow_none=True)
    shifts = fields.Int(allow_none=True)
    workers = fields.Int(allow_none=True)
    rate_per_worker = fields.Decimal(as_string=True, allow_none=True)
    overtime = fields.Decimal(as_string=True, allow_none=True)
    rate_per_kg = fields.Decimal(as_string=True, allow_none=True)
    basis_output_kg = fields.Decimal(as_string=True, allow_none=True)
    is_manual_override = fields.Bool()
    basis_stale = fields.Bool()
    title = fields.Str(allow_none=True)
    expense_type = fields.Str(allow_none=True)
    description = fields.Str(allow_none=True)
    created_by = fields.Int(allow_none=True)
    updated_by = fields.Int(allow_none=True)
    created_at = fields.DateTime()
    updated_at = fields.DateTime()


class CostSummarySchema(Schema):
    start = fields.Date(allow_none=True)
    end = fields.Date(allow_none=True)
    categories = fields.Dict(keys=fields.Str(), values=fields.Decimal(as_string=True))
    grand_total = fields.Decimal(as_string=True)


class DailyCostSchema(Schema):
    date = fields.Date()
    categories = fields.Dict(keys=fields.Str(), values=fields.Decimal(as_string=True))
    total_cost = fields.Decimal(as_string=True)


class CostPerKgSchema(Schema):
    start = fields.Date(allow_none=True)
    end = fields.Date(allow_none=True)
    produced_kg = fields.Decimal(as_string=True)
    categories = fields.Dict(keys=fields.Str(), values=fields.Decimal(as_string=True, allow_none=True))
    total_per_kg = fields.Decimal(as_string=True, allow_none=True)


class InvoiceLineSchema(Schema):
    id = fields.Int()
    yarn_count = fields.Str()
    bags = fields.Int()
    weight_kg = fields.Decimal(as_string=True)
    rate = fields.Decimal(as_string=True)
    amount = fields.Decimal(as_string=True)


class PaymentSchema(Schema):
    id = fields.Int()
    invoice_id = fields.Int()
    date = fields.Date()
    amount = fields.Decimal(as_string=True)
    method = fields.Enum(PaymentMethod, by_value=True)
    reference = fields.Str(allow_none=True)
    notes = fields.Str(allow_none=True)
    created_by = fields.Int(allow_none=True)
    created_at = fields.DateTime()


class InvoiceSchema(Schema):
    id = fields.Int()
    invoice_no = fields.Str()
    date = fields.Date()
    customer_name = fields.Str()
    subtotal = fields.Decimal(as_string=True)
    cgst = fields.Decimal(as_string=True)
    sgst = fields.Decimal(as_string=True)
    total = fields.Decimal(as_string=True)
    amount_paid = fields.Decimal(as_string=True)
    balance_due = fields.Decimal(as_string=True)
    status = fields.Enum(InvoiceStatus, by_value=True)
    created_by = fields.Int(allow_none=True)
    created_at = fields.DateTime()
    updated_at = fields.DateTime()

    lines = fields.Nested(InvoiceLineSchema, many=True)


class InvoiceDetailSchema(InvoiceSchema):
    payments = fields.Nested(PaymentSchema, many=True)


class DashboardSummarySchema(Schema):
    start = fields.Date(allow_none=True)
    end = fields.Date(allow_none=True)
    cotton_remaining_kg = fields.Decimal(as_string=True)
    total_bales_received = fields.Int()
    yarn_stock_kg = fields.Decimal(as_string=True)
    yarn_stock = fields.Nested(YarnStockSchema, many=True)
    total_produced_kg = fields.Decimal(as_string=True)
    total_waste_kg = fields.Decimal(as_string=True)
    waste_rate_percent = fields.Decimal(as_string=True, allow_none=True)
    total_cost = fields.Decimal(as_string=True)
    invoiced_total = fields.Decimal(as_string=True)
    outstanding_receivables = fields.Decimal(as_string=True)
