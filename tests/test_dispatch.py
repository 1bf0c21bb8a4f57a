import unittest
from datetime import date
from decimal import Decimal

from ledger import (
    InsufficientYarnStock,
    InvalidInput,
    InvalidQuantity,
    NotFound,
    delete_dispatch,
    get_dispatch,
    list_dispatches,
    record_dispatch,
    yarn_stock,
)
from models import DispatchEntry

from mill_case import MillTestCase


class DispatchTestCase(MillTestCase):
    def setUp(self):
        super().setUp()
        batch = self.make_batch(weight="1000")
        self.produce(batch, "1000", {"Count 20": "600", "Count 30": "350"})

    def _dispatch(self, items, **overrides):
        payload = {
            "date": "2024-05-12",
            "customer": "Tiruppur Knits",
            "vehicle_no": "TN 39 AB 1234",
            "driver_name": "Murugan",
            "items": items,
        }
        payload.update(overrides)
        return record_dispatch(**payload)

    def test_stock_is_produced_minus_dispatched(self):
        entry = self._dispatch([{"yarn_count": "Count 20", "bags": 5, "weight_kg": "300"}])
        self.assertEqual(entry.total_bags, 5)
        self.assertEqual(Decimal(entry.total_weight_kg), Decimal("300.000"))

        lines = {line.yarn_count: line for line in yarn_stock()}
        self.assertEqual(lines["Count 20"].produced_kg, Decimal("600.000"))
        self.assertEqual(lines["Count 20"].dispatched_kg, Decimal("300.000"))
        self.assertEqual(lines["Count 20"].balance_kg, Decimal("300.000"))
        self.assertEqual((lines["Count 20"].bags, lines["Count 20"].remainder_kg), (5, Decimal("0.000")))
        self.assertEqual(lines["Count 30"].balance_kg, Decimal("350.000"))
        self.assertEqual((lines["Count 30"].bags, lines["Count 30"].remainder_kg), (5, Decimal("50.000")))

        only = yarn_stock("Count 30")
        self.assertEqual([line.yarn_count for line in only], ["Count 30"])

    def test_dispatch_beyond_stock_is_rejected(self):
        with self.assertRaises(InsufficientYarnStock) as ctx:
            self._dispatch(
                [
                    {"yarn_count": "Count 20", "bags": 5, "weight_kg": "300"},
                    {"yarn_count": "Count 30", "bags": 7, "weight_kg": "400"},
                ]
            )
        self.assertEqual(list(ctx.exception.errors), ["Count 30"])
        self.assertEqual(DispatchEntry.query.count(), 0)

        with self.assertRaises(InsufficientYarnStock):
            self._dispatch([{"yarn_count": "Count 60", "bags": 1, "weight_kg": "60"}])

    def test_split_lines_for_one_count_share_the_balance(self):
        with self.assertRaises(InsufficientYarnStock):
            self._dispatch(
                [
                    {"yarn_count": "Count 30", "bags": 3, "weight_kg": "180"},
                    {"yarn_count": "Count 30", "bags": 3, "weight_kg": "180"},
                ]
            )
        entry = self._dispatch(
            [
                {"yarn_count": "Count 30", "bags": 3, "weight_kg": "180"},
                {"yarn_count": "Count 30", "bags": 2, "weight_kg": "170"},
            ]
        )
        self.assertEqual(len(entry.items), 2)
        self.assertEqual(yarn_stock("Count 30")[0].balance_kg, Decimal("0.000"))

    def test_delete_dispatch_restores_stock(self):
        entry = self._dispatch([{"yarn_count": "Count 20", "bags": 10, "weight_kg": "600"}])
        self.assertEqual(yarn_stock("Count 20")[0].balance_kg, Decimal("0.000"))

        delete_dispatch(entry.id)
        self.assertEqual(yarn_stock("Count 20")[0].balance_kg, Decimal("600.000"))
        with self.assertRaises(NotFound):
            get_dispatch(entry.id)
        self.assertEqual(self.audit.actions()[-2:], ["dispatch.create", "dispatch.delete"])

    def test_vehicle_number_format(self):
        entry = self._dispatch(
            [{"yarn_count": "Count 20", "bags": 1, "weight_kg": "60"}],
            vehicle_no="tn01ab1234",
        )
        self.assertEqual(entry.vehicle_no, "TN01AB1234")

        for bad in ("12345", "TN 01 AB 12", ""):
            with self.subTest(vehicle_no=bad):
                with self.assertRaises(InvalidInput) as ctx:
                    self._dispatch(
                        [{"yarn_count": "Count 20", "bags": 1, "weight_kg": "60"}],
                        vehicle_no=bad,
                    )
                self.assertIn("vehicle_no", ctx.exception.errors)

    def test_item_validation(self):
        with self.assertRaises(InvalidQuantity) as ctx:
            self._dispatch([{"yarn_count": "Count 20", "bags": 0, "weight_kg": "60"}])
        self.assertIn("items.0.bags", ctx.exception.errors)

        with self.assertRaises(InvalidQuantity) as ctx:
            self._dispatch([{"yarn_count": "Count 20", "bags": 1, "weight_kg": "-5"}])
        self.assertIn("items.0.weight_kg", ctx.exception.errors)

        with self.assertRaises(InvalidInput) as ctx:
            self._dispatch([])
        self.assertIn("items", ctx.exception.errors)

        with self.assertRaises(InvalidInput) as ctx:
            self._dispatch([{"yarn_count": "Count 20", "bags": 1, "weight_kg": "60"}], customer=" ")
        self.assertIn("customer", ctx.exception.errors)

    def test_list_dispatches_by_date(self):
        self._dispatch([{"yarn_count": "Count 20", "bags": 1, "weight_kg": "60"}], date="2024-05-12")
        later = self._dispatch([{"yarn_count": "Count 20", "bags": 1, "weight_kg": "60"}], date="2024-05-20")

        self.assertEqual([entry.id for entry in list_dispatches(start=date(2024, 5, 15))], [later.id])
        self.assertEqual(len(list_dispatches()), 2)
        self.assertEqual(get_dispatch(later.id).items[0].yarn_count, "Count 20")


if __name__ == "__main__":
    unittest.main()
