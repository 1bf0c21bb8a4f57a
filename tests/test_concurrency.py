import importlib
import os
import sys
import tempfile
import threading
import unittest
from decimal import Decimal
from unittest.mock import patch

from ledger import production as production_module
from ledger.audit import MemoryAuditSink


class ConcurrentProductionTestCase(unittest.TestCase):
    """Two writers on a file-backed database, released together past the balance read."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(self.tmpdir.name, "mill.db")
        if "app" in sys.modules:
            self.app_module = importlib.reload(sys.modules["app"])
        else:
            self.app_module = importlib.import_module("app")

        self.audit = MemoryAuditSink()
        self.app = self.app_module.create_app(audit_sink=self.audit)
        self.app.testing = True
        self.app.config["TRANSACTION_MAX_ATTEMPTS"] = 10
        self.ctx = self.app.app_context()
        self.ctx.push()
        self.db = self.app_module.db
        self.db.create_all()

    def tearDown(self):
        self.db.session.remove()
        self.db.drop_all()
        self.db.engine.dispose()
        self.ctx.pop()
        with self.app_module.app.app_context():
            self.db.engine.dispose()
        os.environ.pop("DATABASE_URL", None)
        if "app" in sys.modules:
            del sys.modules["app"]
        self.tmpdir.cleanup()

    def _run_two_writers(self, batch_id, weight_kg):
        barrier = threading.Barrier(2, timeout=10)
        first_read = threading.local()
        original = production_module.consumed_by_batch

        def consumed_after_both_arrive(*args, **kwargs):
            # Only the first attempt of each writer waits; retries run straight through.
            if not getattr(first_read, "done", False):
                first_read.done = True
                barrier.wait()
            return original(*args, **kwargs)

        results = []
        lock = threading.Lock()

        def writer():
            with self.app.app_context():
                try:
                    production_module.record_production(
                        date="2024-05-10",
                        consumptions=[{"batch_id": batch_id, "weight_kg": weight_kg}],
                        outputs=[{"yarn_count": "Count 20", "weight_kg": weight_kg}],
                    )
                    outcome = "ok"
                except Exception as exc:
                    outcome = type(exc).__name__
                finally:
                    self.db.session.remove()
            with lock:
                results.append(outcome)

        with patch("ledger.production.consumed_by_batch", consumed_after_both_arrive):
            threads = [threading.Thread(target=writer) for _ in range(2)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(timeout=30)
        return results

    def test_same_batch_cannot_be_drawn_twice_against_a_stale_balance(self):
        from ledger import create_batch, remaining_balance
        from models import ProductionEntry

        batch = create_batch(date="2024-05-01", supplier="Salem Cotton Traders", bale_count=5, weight_kg="1000")

        with self.assertLogs("ledger.transactions", level="WARNING") as logs:
            results = self._run_two_writers(batch.id, "600")

        self.assertEqual(len(results), 2, results)
        self.assertEqual(results.count("ok"), 1, results)
        loser = [outcome for outcome in results if outcome != "ok"][0]
        self.assertIn(loser, {"InsufficientBatchBalance", "ConcurrentModification"})
        self.assertTrue(any("transaction_retry" in line for line in logs.output))

        self.db.session.expire_all()
        self.assertEqual(remaining_balance(batch.id), Decimal("400.000"))
        self.assertEqual(ProductionEntry.query.count(), 1)
        self.assertEqual(self.audit.actions(), ["batch.create", "production.create"])


if __name__ == "__main__":
    unittest.main()
