import os
from typing import Optional, Tuple

import click
from alembic import command
from alembic.config import Config as AlembicConfig
from alembic.script import ScriptDirectory
from flask import Flask, current_app, jsonify
from sqlalchemy import create_engine, func, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import OperationalError, ProgrammingError

from config import Config, current_database_url
from extensions import db, migrate, jwt
from ledger.audit import init_audit
from ledger.errors import LedgerError
from models import RoleEnum, User
from routes import (
    auth,
    batches,
    billing,
    costing,
    dashboard,
    dispatch,
    production,
)


if os.name != "nt":  # pragma: no cover - platform dependent import
    import fcntl  # type: ignore[import-not-found]
else:  # pragma: no cover - Windows fallback
    fcntl = None  # type: ignore[assignment]


def _ensure_database_exists(database_url: str | None) -> None:
    if not database_url:
        return

    url = make_url(database_url)
    backend = (url.get_backend_name() or "").lower()

    if backend.startswith("sqlite"):
        database_path = url.database
        if database_path and database_path not in {":memory:", ""}:
            directory = os.path.dirname(os.path.abspath(database_path))
            if directory:
                os.makedirs(directory, exist_ok=True)
        return

    database_name = url.database
    if not database_name:
        return

    engine = create_engine(url)
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return
    except OperationalError:
        pass
    finally:
        engine.dispose()

    if not backend.startswith("postgresql"):
        return

    admin_url = url.set(database="postgres")
    admin_engine = create_engine(admin_url, isolation_level="AUTOCOMMIT")
    try:
        with admin_engine.connect() as connection:
            exists = connection.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :name"),
                {"name": database_name},
            ).scalar()
            if not exists:
                connection.execute(text(f'CREATE DATABASE "{database_name}"'))
    finally:
        admin_engine.dispose()


def _run_database_migrations(app: Flask) -> None:
    """Apply Alembic migrations if the schema is not up-to-date."""

    database_uri = app.config.get("SQLALCHEMY_DATABASE_URI")
    if not database_uri:
        return

    if database_uri.startswith("sqlite") and ":memory:" in database_uri:
        return

    migrations_dir = os.path.join(app.root_path, "migrations")
    alembic_ini = os.path.join(migrations_dir, "alembic.ini")
    if not os.path.exists(alembic_ini):
        return

    config = AlembicConfig(alembic_ini)
    config.set_main_option("script_location", migrations_dir)
    config.set_main_option("sqlalchemy.url", database_uri)

    script = ScriptDirectory.from_config(config)
    head_revision = script.get_current_head()
    if not head_revision:
        return

    def _current_revision() -> str | None:
        try:
            with db.engine.connect() as connection:
                return connection.execute(text("SELECT version_num FROM alembic_version")).scalar()
        except (OperationalError, ProgrammingError):
            return None

    with app.app_context():
        if _current_revision() == head_revision:
            return

        lock_path = os.path.join(app.instance_path, "alembic.lock")
        os.makedirs(app.instance_path, exist_ok=True)
        lock_file = open(lock_path, "w")
        try:
            if fcntl is not None:
                fcntl.flock(lock_file, fcntl.LOCK_EX)

            if _current_revision() == head_revision:
                return

            app.logger.info({"event": "migrations_apply", "head": head_revision})
            try:
                command.upgrade(config, "head")
            except Exception:
                if _current_revision() != head_revision:
                    raise
        finally:
            if fcntl is not None:
                fcntl.flock(lock_file, fcntl.LOCK_UN)
            lock_file.close()


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(LedgerError)
    def handle_ledger_error(exc: LedgerError):
        if exc.http_status >= 500:
            app.logger.error({"event": "ledger_error", "error": exc.code, "message": exc.message})
        else:
            app.logger.info({"event": "ledger_rejected", "error": exc.code, "errors": exc.errors})
        return jsonify(exc.to_dict()), exc.http_status


def create_app(audit_sink=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    database_url = current_database_url()
    _ensure_database_exists(database_url)
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    db.init_app(app)
    migrate.init_app(app, db)
    _run_database_migrations(app)
    jwt.init_app(app)
    init_audit(app, audit_sink)
    _register_error_handlers(app)

    @jwt.additional_claims_loader
    def add_claims(identity):
        u = db.session.get(User, int(identity)) if str(identity).isdigit() else None
        return {"role": u.role.value if u else None}

    app.register_blueprint(auth.bp)
    app.register_blueprint(batches.bp)
    app.register_blueprint(production.bp)
    app.register_blueprint(dispatch.bp)
    app.register_blueprint(costing.bp)
    app.register_blueprint(billing.bp)
    app.register_blueprint(dashboard.bp)

    @app.get("/api/health")
    def health(): return jsonify({"ok": True})

    return app


app = create_app()


def _normalize_email(value: str) -> str:
    return (value or "").strip().lower()


def _ensure_admin_user(
    flask_app=None,
    *,
    email: Optional[str] = None,
    password: Optional[str] = None,
    name: Optional[str] = None,
    ensure_if_missing: bool = True,
    force_reset: bool = False,
    allow_multiple: bool = False,
) -> Tuple[str, str]:
    """Ensure an admin user exists and optionally reset its password.

    Returns a tuple of (status, normalized_email) where status is one of
    ``{"created", "reset", "updated", "skipped"}``.
    """

    target_app = flask_app or globals().get("app")
    if target_app is None:
        return "skipped", _normalize_email(email)

    normalized_email = _normalize_email(email or os.getenv("ADMIN_EMAIL", "admin@evergreen-mill.in"))
    password = password or os.getenv("ADMIN_PASSWORD", "Admin@123")
    provided_name = name if name is not None else os.getenv("ADMIN_NAME")
    target_name = (provided_name or "").strip() or None

    with target_app.app_context():
        try:
            admin = User.query.filter(func.lower(User.email) == normalized_email).first()
        except (OperationalError, ProgrammingError):
            # Tables might not be ready yet (e.g. before migrations run)
            db.session.rollback()
            return "skipped", normalized_email

        if admin:
            status = "skipped"
            if admin.role != RoleEnum.admin:
                admin.role = RoleEnum.admin
                status = "updated"
            if target_name and admin.name != target_name:
                admin.name = target_name
                status = "updated"
            if force_reset:
                admin.set_password(password)
                status = "reset"

            if status != "skipped":
                db.session.commit()
            return status, normalized_email

        if not ensure_if_missing:
            return "skipped", normalized_email

        if not force_reset and not allow_multiple:
            # Avoid creating duplicate admins when one already exists
            existing_admin = User.query.filter_by(role=RoleEnum.admin).first()
            if existing_admin:
                return "skipped", normalized_email

        admin = User(
            name=target_name or "Admin",
            email=normalized_email,
            role=RoleEnum.admin,
            active=True,
        )
        admin.set_password(password)
        db.session.add(admin)
        db.session.commit()
        return "created", normalized_email


def _bootstrap_admin_user(flask_app=None):
    status, normalized_email = _ensure_admin_user(
        flask_app=flask_app,
        force_reset=os.getenv("RUN_SEED_ADMIN") == "1",
    )
    if status != "skipped":
        (flask_app or app).logger.info({"event": "admin_bootstrap", "status": status, "email": normalized_email})


# Call the hook at startup (idempotent)
_bootstrap_admin_user(flask_app=app)


# ---- CLI: seed or reset admin ----
@app.cli.command("seed-admin")
@click.option("--email", default="admin@evergreen-mill.in", help="Admin email")
@click.option("--password", default="Admin@123", help="Admin password")
@click.option("--name", default="Admin", help="Admin display name")
def seed_admin(email, password, name):
    """Create or reset the admin user."""
    status, normalized_email = _ensure_admin_user(
        flask_app=current_app._get_current_object(),
        email=email,
        password=password,
        name=name,
        ensure_if_missing=True,
        force_reset=True,
    )

    if status == "created":
        click.echo(f"✅ Admin created: {normalized_email}")
    elif status == "reset":
        click.echo(f"✅ Admin password reset: {normalized_email}")
    elif status == "updated":
        click.echo(f"✅ Admin role updated: {normalized_email}")
    else:
        click.echo(f"ℹ️ Admin already up-to-date: {normalized_email}")


# ---- CLI: yarn stock report ----
@app.cli.command("yarn-stock")
@click.option("--count", "yarn_count", default=None, help="Only this yarn count")
def yarn_stock_report(yarn_count):
    """Print produced, dispatched and balance kg per yarn count."""

    from ledger.stock import yarn_stock

    lines = yarn_stock(yarn_count)
    if not lines:
        click.echo("No yarn produced yet.")
        return
    for line in lines:
        click.echo(
            f"{line.yarn_count}: produced {line.produced_kg} kg, dispatched {line.dispatched_kg} kg, "
            f"balance {line.balance_kg} kg ({line.bags} bags + {line.remainder_kg} kg)"
        )


if __name__ == "__main__":
    app.run(debug=True, port=int(os.getenv("PORT", 5000)))
