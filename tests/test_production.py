import unittest
from datetime import date
from decimal import Decimal

from ledger import (
    EfficiencyExceeded,
    InsufficientBatchBalance,
    InsufficientYarnStock,
    InvalidInput,
    InvalidQuantity,
    MaterialBalanceMismatch,
    NotFound,
    bag_breakdown,
    delete_production,
    get_production,
    list_available,
    list_production,
    production_output_kg,
    record_dispatch,
    record_production,
    remaining_balance,
    update_production,
    yarn_stock,
)
from ledger.production import efficiency_percent
from models import ProductionEntry

from mill_case import MillTestCase


def _stock_by_count():
    return {line.yarn_count: line.balance_kg for line in yarn_stock()}


def test_efficiency_percent_rounds_half_up():
    assert efficiency_percent(Decimal("12.345"), Decimal("100")) == Decimal("12.35")
    assert efficiency_percent(Decimal("2"), Decimal("3")) == Decimal("66.67")
    assert efficiency_percent(Decimal("950"), Decimal("1000")) == Decimal("95.00")
    assert efficiency_percent(Decimal("5"), Decimal("0")) == Decimal("0")


class ProductionReconciliationTestCase(MillTestCase):
    def test_full_draw_then_one_more_kilo_is_rejected(self):
        batch = self.make_batch(weight="1000")
        entry = record_production(
            date="2024-05-10",
            consumptions=[{"batch_id": batch.id, "weight_kg": 1000}],
            outputs=[{"yarn_count": "Count 20", "weight_kg": 950}],
            waste={"blow_room": 20, "carding": 15, "oe": 10, "others": 5},
        )

        self.assertEqual(Decimal(entry.total_consumed_kg), Decimal("1000.000"))
        self.assertEqual(Decimal(entry.total_produced_kg), Decimal("950.000"))
        self.assertEqual(Decimal(entry.total_waste_kg), Decimal("50.000"))
        self.assertEqual(remaining_balance(batch.id), Decimal("0.000"))

        with self.assertRaises(InsufficientBatchBalance) as ctx:
            record_production(
                date="2024-05-11",
                consumptions=[{"batch_id": batch.id, "weight_kg": 1}],
                outputs=[{"yarn_count": "Count 20", "weight_kg": 1}],
            )
        self.assertIn(f"batch_id.{batch.id}", ctx.exception.errors)
        self.assertEqual(ProductionEntry.query.count(), 1)
        self.assertEqual(remaining_balance(batch.id), Decimal("0.000"))
        self.assertEqual(list_available(), [])

    def test_material_balance_mismatch(self):
        batch = self.make_batch()
        with self.assertRaises(MaterialBalanceMismatch) as ctx:
            record_production(
                date="2024-05-10",
                consumptions=[{"batch_id": batch.id, "weight_kg": 100}],
                outputs=[{"yarn_count": "Count 20", "weight_kg": 90}],
                waste={"others": 5},
            )
        self.assertIs(type(ctx.exception), MaterialBalanceMismatch)
        self.assertIn("waste", ctx.exception.errors)
        self.assertEqual(ProductionEntry.query.count(), 0)

    def test_balance_within_tolerance_is_accepted(self):
        batch = self.make_batch()
        entry = record_production(
            date="2024-05-10",
            consumptions=[{"batch_id": batch.id, "weight_kg": "100"}],
            outputs=[{"yarn_count": "Count 20", "weight_kg": "90"}],
            waste={"others": "9.995"},
        )
        self.assertEqual(Decimal(entry.total_waste_kg), Decimal("9.995"))

    def test_output_above_consumption_is_efficiency_exceeded(self):
        batch = self.make_batch()
        with self.assertRaises(EfficiencyExceeded) as ctx:
            record_production(
                date="2024-05-10",
                consumptions=[{"batch_id": batch.id, "weight_kg": "100"}],
                outputs=[{"yarn_count": "Count 20", "weight_kg": "100.5"}],
            )
        self.assertIsInstance(ctx.exception, MaterialBalanceMismatch)
        self.assertIn("outputs", ctx.exception.errors)

    def test_low_efficiency_is_only_a_warning(self):
        batch = self.make_batch()
        entry = self.produce(batch, "100", {"Count 20": "60"})
        self.assertEqual(len(entry.warnings), 1)
        self.assertIn("60.00%", entry.warnings[0])

        healthy = self.produce(batch, "100", {"Count 20": "92"})
        self.assertEqual(healthy.warnings, [])

    def test_bag_breakdown_uses_sixty_kilo_bags(self):
        self.assertEqual(bag_breakdown(Decimal("950")), (15, Decimal("50.000")))
        self.assertEqual(bag_breakdown(Decimal("120")), (2, Decimal("0.000")))
        self.assertEqual(bag_breakdown(Decimal("59.999")), (0, Decimal("59.999")))
        self.assertEqual(bag_breakdown(Decimal("0")), (0, Decimal("0")))

        batch = self.make_batch()
        entry = self.produce(batch, "1000", {"Count 20": "950"})
        output = get_production(entry.id).outputs[0]
        self.assertEqual(output.bags, 15)
        self.assertEqual(Decimal(output.remainder_kg), Decimal("50.000"))

    def test_duplicate_batch_lines_are_merged_before_balance_check(self):
        batch = self.make_batch(weight="400")
        with self.assertRaises(InsufficientBatchBalance):
            record_production(
                date="2024-05-10",
                consumptions=[
                    {"batch_id": batch.id, "weight_kg": 300},
                    {"batch_id": batch.id, "weight_kg": 200},
                ],
                outputs=[{"yarn_count": "Count 20", "weight_kg": 480}],
                waste={"others": 20},
            )

        entry = record_production(
            date="2024-05-10",
            consumptions=[
                {"batch_id": batch.id, "weight_kg": 250},
                {"batch_id": batch.id, "weight_kg": 150},
            ],
            outputs=[
                {"yarn_count": "Count 20", "weight_kg": 200},
                {"yarn_count": "Count  20 ", "weight_kg": 0.5},
                {"yarn_count": "Count 20", "weight_kg": 180},
            ],
            waste={"others": 19.5},
        )
        loaded = get_production(entry.id)
        self.assertEqual(len(loaded.consumptions), 1)
        self.assertEqual(Decimal(loaded.consumptions[0].weight_kg), Decimal("400.000"))
        self.assertEqual(len(loaded.outputs), 1)
        self.assertEqual(loaded.outputs[0].yarn_count, "Count 20")
        self.assertEqual(Decimal(loaded.outputs[0].weight_kg), Decimal("380.500"))

    def test_unknown_batch_rolls_back_whole_entry(self):
        batch = self.make_batch(weight="500")
        with self.assertRaises(NotFound) as ctx:
            record_production(
                date="2024-05-10",
                consumptions=[
                    {"batch_id": batch.id, "weight_kg": 100},
                    {"batch_id": 999, "weight_kg": 100},
                ],
                outputs=[{"yarn_count": "Count 20", "weight_kg": 190}],
                waste={"others": 10},
            )
        self.assertIn("batch_id.999", ctx.exception.errors)
        self.assertEqual(ProductionEntry.query.count(), 0)
        self.assertEqual(remaining_balance(batch.id), Decimal("500.000"))
        self.assertEqual(yarn_stock(), [])

    def test_payload_validation(self):
        with self.assertRaises(InvalidInput) as ctx:
            record_production(date="2024-05-10", consumptions=[], outputs=[{"yarn_count": "Count 20", "weight_kg": 1}])
        self.assertIn("consumptions", ctx.exception.errors)

        batch = self.make_batch()
        with self.assertRaises(InvalidQuantity) as ctx:
            record_production(
                date="2024-05-10",
                consumptions=[{"batch_id": batch.id, "weight_kg": 100}],
                outputs=[{"yarn_count": "Count 20", "weight_kg": 100}],
                waste={"others": -1},
            )
        self.assertIn("waste.others", ctx.exception.errors)

        with self.assertRaises(InvalidQuantity):
            record_production(
                date="2024-05-10",
                consumptions=[{"batch_id": batch.id, "weight_kg": 0}],
                outputs=[{"yarn_count": "Count 20", "weight_kg": 1}],
            )

    def test_delete_and_recreate_restores_balances(self):
        batch = self.make_batch(weight="1000")
        payload = dict(
            date="2024-05-10",
            consumptions=[{"batch_id": batch.id, "weight_kg": "640"}],
            outputs=[
                {"yarn_count": "Count 20", "weight_kg": "400"},
                {"yarn_count": "Count 30", "weight_kg": "200"},
            ],
            waste={"carding": "25", "others": "15"},
        )
        first = record_production(**payload)
        balance_after = remaining_balance(batch.id)
        stock_after = _stock_by_count()

        delete_production(first.id)
        self.assertEqual(remaining_balance(batch.id), Decimal("1000.000"))
        self.assertEqual(_stock_by_count(), {})
        with self.assertRaises(NotFound):
            get_production(first.id)

        record_production(**payload)
        self.assertEqual(remaining_balance(batch.id), balance_after)
        self.assertEqual(_stock_by_count(), stock_after)
        self.assertEqual(
            self.audit.actions(),
            ["batch.create", "production.create", "production.delete", "production.create"],
        )

    def test_update_checks_balance_without_its_own_draw(self):
        batch = self.make_batch(weight="1000")
        entry = self.produce(batch, "400", {"Count 20": "380"})

        updated = update_production(
            entry.id,
            date="2024-05-12",
            consumptions=[{"batch_id": batch.id, "weight_kg": "900"}],
            outputs=[{"yarn_count": "Count 20", "weight_kg": "850"}],
            waste={"others": "50"},
        )
        self.assertEqual(updated.id, entry.id)
        self.assertEqual(updated.date, date(2024, 5, 12))
        self.assertEqual(remaining_balance(batch.id), Decimal("100.000"))
        self.assertEqual(_stock_by_count(), {"Count 20": Decimal("850.000")})

        with self.assertRaises(InsufficientBatchBalance):
            update_production(
                entry.id,
                date="2024-05-12",
                consumptions=[{"batch_id": batch.id, "weight_kg": "1001"}],
                outputs=[{"yarn_count": "Count 20", "weight_kg": "950"}],
                waste={"others": "51"},
            )
        self.assertEqual(remaining_balance(batch.id), Decimal("100.000"))

    def test_dispatched_yarn_blocks_delete_and_shrinking_edit(self):
        batch = self.make_batch(weight="1000")
        entry = self.produce(batch, "520", {"Count 20": "500"})
        record_dispatch(
            date="2024-05-11",
            customer="Tiruppur Knits",
            vehicle_no="TN 39 AB 1234",
            items=[{"yarn_count": "Count 20", "bags": 5, "weight_kg": "300"}],
        )

        with self.assertRaises(InsufficientYarnStock):
            delete_production(entry.id)
        with self.assertRaises(InsufficientYarnStock):
            update_production(
                entry.id,
                date="2024-05-10",
                consumptions=[{"batch_id": batch.id, "weight_kg": "520"}],
                outputs=[{"yarn_count": "Count 20", "weight_kg": "200"}],
                waste={"others": "320"},
            )

        self.assertEqual(get_production(entry.id).outputs[0].weight_kg, Decimal("500.000"))
        self.assertEqual(_stock_by_count(), {"Count 20": Decimal("200.000")})

    def test_output_by_date_and_history(self):
        batch = self.make_batch(weight="2000")
        self.produce(batch, "500", {"Count 20": "470"}, date="2024-05-10")
        self.produce(batch, "300", {"Count 30": "280"}, date="2024-05-10")
        self.produce(batch, "200", {"Count 20": "190"}, date="2024-05-11")

        self.assertEqual(production_output_kg(date(2024, 5, 10)), Decimal("750.000"))
        self.assertEqual(production_output_kg(date(2024, 5, 9)), Decimal("0.000"))

        history = list_production(start=date(2024, 5, 11))
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0].date, date(2024, 5, 11))
        self.assertEqual(len(list_production()), 3)


if __name__ == "__main__":
    unittest.main()
