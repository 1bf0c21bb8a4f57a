import importlib
import os
import sys
import unittest


class AdminSeedTestCase(unittest.TestCase):
    def setUp(self):
        os.environ["DATABASE_URL"] = "sqlite:///:memory:"
        for var in ("RUN_SEED_ADMIN", "ADMIN_EMAIL", "ADMIN_PASSWORD", "ADMIN_NAME"):
            os.environ.pop(var, None)

        if "app" in sys.modules:
            self.app_module = importlib.reload(sys.modules["app"])
        else:
            self.app_module = importlib.import_module("app")

        self.app = self.app_module.create_app()
        self.app.testing = True
        self.ctx = self.app.app_context()
        self.ctx.push()
        self.app_module.db.create_all()

    def tearDown(self):
        self.app_module.db.session.remove()
        self.app_module.db.drop_all()
        self.ctx.pop()
        for var in ("DATABASE_URL", "RUN_SEED_ADMIN", "ADMIN_EMAIL", "ADMIN_PASSWORD", "ADMIN_NAME"):
            os.environ.pop(var, None)
        if "app" in sys.modules:
            del sys.modules["app"]

    def test_default_admin_created_and_login_succeeds(self):
        status, email = self.app_module._ensure_admin_user(flask_app=self.app)
        self.assertEqual(status, "created")
        self.assertEqual(email, "admin@evergreen-mill.in")

        admin = self.app_module.User.query.filter_by(role=self.app_module.RoleEnum.admin).one()
        self.assertTrue(admin.check_password("Admin@123"))

        client = self.app.test_client()
        response = client.post(
            "/api/auth/login",
            json={"email": email, "password": "Admin@123"},
        )
        self.assertEqual(response.status_code, 200)
        data = response.get_json()
        self.assertIn("access_token", data)
        self.assertEqual(data["user"]["role"], "admin")

    def test_second_call_is_idempotent(self):
        self.app_module._ensure_admin_user(flask_app=self.app)
        status, _ = self.app_module._ensure_admin_user(flask_app=self.app)
        self.assertEqual(status, "skipped")

        status, _ = self.app_module._ensure_admin_user(flask_app=self.app, email="second@evergreen-mill.in")
        self.assertEqual(status, "skipped")
        self.assertEqual(self.app_module.User.query.count(), 1)

    def test_force_reset_updates_password(self):
        status, email = self.app_module._ensure_admin_user(flask_app=self.app)
        self.assertEqual(status, "created")

        admin = self.app_module.User.query.filter_by(email=email).one()
        admin.set_password("OldPassword!1")
        self.app_module.db.session.commit()

        status, _ = self.app_module._ensure_admin_user(
            flask_app=self.app,
            password="NewPassword!2",
            force_reset=True,
        )
        self.assertEqual(status, "reset")

        refreshed = self.app_module.db.session.get(self.app_module.User, admin.id)
        self.assertTrue(refreshed.check_password("NewPassword!2"))

    def test_seed_admin_cli(self):
        runner = self.app.test_cli_runner()
        result = runner.invoke(
            self.app_module.seed_admin,
            ["--email", "Owner@Evergreen-Mill.in", "--password", "Mill#2024", "--name", "Owner"],
        )
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("owner@evergreen-mill.in", result.output)

        owner = self.app_module.User.query.filter_by(email="owner@evergreen-mill.in").one()
        self.assertTrue(owner.check_password("Mill#2024"))
        self.assertEqual(owner.name, "Owner")


if __name__ == "__main__":
    unittest.main()
