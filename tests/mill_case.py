import importlib
import os
import sys
import unittest

from ledger.audit import MemoryAuditSink


class MillTestCase(unittest.TestCase):
    """Fresh app on an in-memory database with an in-memory audit sink."""

    def setUp(self):
        os.environ["DATABASE_URL"] = "sqlite:///:memory:"
        if "app" in sys.modules:
            self.app_module = importlib.reload(sys.modules["app"])
        else:
            self.app_module = importlib.import_module("app")

        self.audit = MemoryAuditSink()
        self.app = self.app_module.create_app(audit_sink=self.audit)
        self.app.testing = True
        self.ctx = self.app.app_context()
        self.ctx.push()
        self.db = self.app_module.db
        self.db.create_all()

    def tearDown(self):
        self.db.session.remove()
        self.db.drop_all()
        self.ctx.pop()
        os.environ.pop("DATABASE_URL", None)
        if "app" in sys.modules:
            del sys.modules["app"]

    def make_batch(self, weight="1000", bales=5, date="2024-05-01", supplier="Salem Cotton Traders", **kwargs):
        from ledger import create_batch

        return create_batch(date=date, supplier=supplier, bale_count=bales, weight_kg=weight, **kwargs)

    def produce(self, batch, consumed, outputs, waste=None, date="2024-05-10"):
        """Record a run drawing ``consumed`` kg from one batch.

        ``outputs`` maps yarn count to kg; ``waste`` defaults to the balancing
        figure booked under ``others``.
        """

        from decimal import Decimal

        from ledger import record_production

        if waste is None:
            produced = sum((Decimal(str(value)) for value in outputs.values()), Decimal("0"))
            waste = {"others": str(Decimal(str(consumed)) - produced)}
        return record_production(
            date=date,
            consumptions=[{"batch_id": batch.id, "weight_kg": str(consumed)}],
            outputs=[{"yarn_count": code, "weight_kg": str(weight)} for code, weight in outputs.items()],
            waste=waste,
        )
