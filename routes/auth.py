from flask import Blueprint, request, jsonify
from extensions import db
from models import User, RoleEnum
from flask_jwt_extended import (
    create_access_token,
    get_jwt,
    get_jwt_identity,
    jwt_required,
)
from sqlalchemy import func

from schemas import UserSchema

bp = Blueprint("auth", __name__, url_prefix="/api/auth")

user_schema = UserSchema()


def require_role(*roles: RoleEnum) -> bool:
    """Return ``True`` if the current JWT belongs to one of the roles."""

    claims = get_jwt()
    try:
        current_role = RoleEnum(claims.get("role"))
    except (ValueError, TypeError):
        return False
    return current_role in roles


def current_actor_id():
    identity = get_jwt_identity()
    try:
        return int(identity)
    except (TypeError, ValueError):
        return None


def forbidden(message: str):
    return jsonify({"ok": False, "error": "Forbidden", "message": message}), 403


@bp.post("/register")
@jwt_required()  # only admins can register
def register():
    if not require_role(RoleEnum.admin):
        return jsonify({"msg": "Admins only"}), 403

    data = request.get_json() or {}
    email = (data.get("email") or "").strip().lower()
    name = (data.get("name") or "").strip()
    role = data.get("role")
    password = data.get("password")

    if not email or not name or not role or not password:
        return jsonify({"msg": "Name, email, role, and password are required"}), 400

    try:
        role_enum = RoleEnum(role)
    except ValueError:
        return jsonify({"msg": "Invalid role"}), 400

    if User.query.filter(func.lower(User.email) == email).first() is not None:
        return jsonify({"msg": "Email already registered"}), 409

    u = User(name=name, email=email, role=role_enum)
    u.set_password(password)
    db.session.add(u)
    db.session.commit()
    return jsonify({"id": u.id}), 201


@bp.post("/login")
def login():
    payload = request.get_json(silent=True)
    if not payload:
        payload = request.form.to_dict() if request.form else {}

    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""

    if not email or not password:
        return jsonify({"msg": "Email and password are required"}), 400

    u = User.query.filter(func.lower(User.email) == email).first()
    if not u or not u.check_password(password) or not u.active:
        return jsonify({"msg": "Invalid email or password"}), 401

    token = create_access_token(identity=str(u.id), additional_claims={"role": u.role.value})
    return jsonify(access_token=token, user=user_schema.dump(u))


@bp.get("/me")
@jwt_required()
def me():
    u = db.session.get(User, current_actor_id())
    if u is None:
        return jsonify({"msg": "User not found"}), 404
    return jsonify(user_schema.dump(u))
