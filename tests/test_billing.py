import unittest
from decimal import Decimal

import pytest

from ledger import (
    DuplicateInvoiceNumber,
    InvalidInput,
    InvalidQuantity,
    InvoiceHasPayments,
    NotFound,
    PaymentExceedsBalance,
    create_invoice,
    delete_invoice,
    delete_payment,
    derive_status,
    get_invoice,
    list_invoices,
    record_payment,
)
from ledger.billing import get_next_invoice_number, outstanding_total
from models import InvoiceStatus

from mill_case import MillTestCase


@pytest.mark.parametrize(
    "paid, total, expected",
    [
        ("0", "11800", InvoiceStatus.UNPAID),
        ("5000", "11800", InvoiceStatus.PARTIAL),
        ("11799.98", "11800", InvoiceStatus.PARTIAL),
        ("11799.99", "11800", InvoiceStatus.PAID),
        ("11800.01", "11800", InvoiceStatus.PAID),
    ],
)
def test_derive_status(paid, total, expected):
    assert derive_status(Decimal(paid), Decimal(total)) == expected


class InvoiceLedgerTestCase(MillTestCase):
    def _invoice(self, weight="1000", rate="10", **kwargs):
        payload = {
            "date": "2024-05-15",
            "customer": "Tiruppur Knits",
            "line_items": [{"yarn_count": "Count 20", "bags": 16, "weight_kg": weight, "rate": rate}],
        }
        payload.update(kwargs)
        return create_invoice(**payload)

    def _pay(self, invoice, amount, method="BANK"):
        return record_payment(invoice.id, date="2024-05-20", amount=amount, method=method)

    def test_invoice_totals_include_cgst_and_sgst(self):
        invoice = self._invoice()
        self.assertEqual(invoice.invoice_no, "INV-00001")
        self.assertEqual(Decimal(invoice.subtotal), Decimal("10000.00"))
        self.assertEqual(Decimal(invoice.cgst), Decimal("900.00"))
        self.assertEqual(Decimal(invoice.sgst), Decimal("900.00"))
        self.assertEqual(Decimal(invoice.total), Decimal("11800.00"))
        self.assertEqual(invoice.status, InvoiceStatus.UNPAID)

    def test_line_amounts_round_to_paise(self):
        invoice = self._invoice(weight="123.456", rate="187.35")
        self.assertEqual(Decimal(invoice.lines[0].amount), Decimal("23129.48"))
        self.assertEqual(Decimal(invoice.cgst), Decimal("2081.65"))
        self.assertEqual(Decimal(invoice.total), Decimal("27292.78"))

    def test_subtotal_rounds_once_over_many_lines(self):
        line = {"yarn_count": "Count 30", "bags": 1, "weight_kg": "60.001", "rate": "245.00"}
        invoice = self._invoice(line_items=[dict(line) for _ in range(4)])

        self.assertEqual([Decimal(row.amount) for row in invoice.lines], [Decimal("14700.25")] * 4)
        self.assertEqual(Decimal(invoice.subtotal), Decimal("58800.98"))
        self.assertEqual(Decimal(invoice.cgst), Decimal("5292.09"))
        self.assertEqual(Decimal(invoice.total), Decimal("69385.16"))

        exact_total = Decimal("60.001") * Decimal("245.00") * 4 * Decimal("1.18")
        self.assertLessEqual(abs(Decimal(invoice.total) - exact_total), Decimal("0.01"))

    def test_payments_walk_status_to_paid(self):
        invoice = self._invoice()

        self._pay(invoice, "5000")
        invoice = get_invoice(invoice.id)
        self.assertEqual(invoice.status, InvoiceStatus.PARTIAL)
        self.assertEqual(invoice.balance_due, Decimal("6800.00"))

        self._pay(invoice, "6800", method="upi")
        invoice = get_invoice(invoice.id)
        self.assertEqual(invoice.status, InvoiceStatus.PAID)
        self.assertEqual(Decimal(invoice.amount_paid), Decimal("11800.00"))

        with self.assertRaises(PaymentExceedsBalance):
            self._pay(invoice, "1")
        self.assertEqual(len(get_invoice(invoice.id).payments), 2)

    def test_payment_within_tolerance_of_total(self):
        invoice = self._invoice()
        self._pay(invoice, "11800.01")
        refreshed = get_invoice(invoice.id)
        self.assertEqual(refreshed.status, InvoiceStatus.PAID)
        self.assertLessEqual(Decimal(refreshed.amount_paid), Decimal(refreshed.total) + Decimal("0.01"))

        other = self._invoice()
        with self.assertRaises(PaymentExceedsBalance):
            self._pay(other, "11800.02")

    def test_deleting_payments_moves_status_back(self):
        invoice = self._invoice()
        first = self._pay(invoice, "5000")
        second = self._pay(invoice, "6800")

        after = delete_payment(second.id)
        self.assertEqual(after.status, InvoiceStatus.PARTIAL)
        self.assertEqual(Decimal(after.amount_paid), Decimal("5000.00"))

        after = delete_payment(first.id)
        self.assertEqual(after.status, InvoiceStatus.UNPAID)
        self.assertEqual(Decimal(after.amount_paid), Decimal("0.00"))

        with self.assertRaises(NotFound):
            delete_payment(first.id)

    def test_invoice_with_payments_cannot_be_deleted(self):
        invoice = self._invoice()
        payment = self._pay(invoice, "100", method="CASH")

        with self.assertRaises(InvoiceHasPayments):
            delete_invoice(invoice.id)

        delete_payment(payment.id)
        delete_invoice(invoice.id)
        with self.assertRaises(NotFound):
            get_invoice(invoice.id)

    def test_duplicate_invoice_number(self):
        self._invoice(invoice_no="EG/24-25/001")
        with self.assertRaises(DuplicateInvoiceNumber):
            self._invoice(invoice_no="EG/24-25/001")
        self.assertEqual(len(list_invoices()), 1)

    def test_next_number_follows_highest_sequence(self):
        self._invoice()
        self._invoice(invoice_no="EG/24-25/777")
        self.assertEqual(get_next_invoice_number(), "INV-00002")
        self.assertEqual(self._invoice().invoice_no, "INV-00002")

    def test_line_item_validation(self):
        with self.assertRaises(InvalidInput) as ctx:
            self._invoice(line_items=[])
        self.assertIn("line_items", ctx.exception.errors)

        for field, value in (("rate", "0"), ("rate", "10000"), ("weight_kg", "-1"), ("bags", -1)):
            line = {"yarn_count": "Count 20", "bags": 1, "weight_kg": "10", "rate": "10"}
            line[field] = value
            with self.subTest(field=field, value=value):
                with self.assertRaises(InvalidQuantity) as ctx:
                    self._invoice(line_items=[line])
                self.assertIn(f"line_items.0.{field}", ctx.exception.errors)

        no_bags = self._invoice(line_items=[{"yarn_count": "Count 20", "weight_kg": "10", "rate": "10"}])
        self.assertEqual(no_bags.lines[0].bags, 0)

    def test_payment_validation(self):
        invoice = self._invoice()
        with self.assertRaises(InvalidQuantity):
            self._pay(invoice, "0")
        with self.assertRaises(InvalidInput) as ctx:
            self._pay(invoice, "10", method="CARD")
        self.assertIn("method", ctx.exception.errors)
        with self.assertRaises(NotFound):
            record_payment(999, date="2024-05-20", amount="10", method="CASH")

    def test_list_by_status_and_outstanding(self):
        paid = self._invoice()
        self._pay(paid, "11800")
        self._invoice(weight="500")

        self.assertEqual([row.id for row in list_invoices(status=InvoiceStatus.PAID)], [paid.id])
        self.assertEqual(len(list_invoices(status=InvoiceStatus.UNPAID)), 1)
        self.assertEqual(outstanding_total(), Decimal("5900.00"))
        self.assertEqual(
            self.audit.actions(),
            ["invoice.create", "payment.create", "invoice.create"],
        )


if __name__ == "__main__":
    unittest.main()
