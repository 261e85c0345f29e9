"""
Authentication routes for the Agency Console.

Provides endpoints for registering new users and logging in to obtain
JSON Web Tokens (JWTs). The token identity is the user id; the role and
e-mail travel as additional claims so the console can stamp ownership
and decide who may administer an agency without another lookup.
"""

from __future__ import annotations

from flask import Blueprint, request
from flask_jwt_extended import create_access_token

from .. import db
from ..models import User, Role
from ..schemas import UserSchema


auth_bp = Blueprint("auth", __name__)

# super admins are never self-registered
SELF_SERVICE_ROLES = (Role.USER, Role.AGENCY_ADMIN)


@auth_bp.route("/register", methods=["POST"])
def register() -> tuple[dict, int]:
    """Register a new user.

    Expects JSON with ``email``, ``password`` and optional ``full_name``
    and ``role`` (``user`` or ``agency_admin``). If no role is provided,
    ``user`` is used. Emails must be unique.
    """
    data = request.get_json() or {}
    required_fields = {"email", "password"}
    missing = required_fields - data.keys()
    if missing:
        return {"error": f"Missing fields: {', '.join(sorted(missing))}"}, 400

    email = data.get("email").strip().lower()
    if User.query.filter_by(email=email).first():
        return {"error": "A user with that email already exists."}, 409

    role_str = (data.get("role") or Role.USER.value).lower()
    try:
        role = Role(role_str)
    except ValueError:
        role = None
    if role not in SELF_SERVICE_ROLES:
        return {"error": "Invalid role. Choose 'user' or 'agency_admin'."}, 400

    user = User(email=email, full_name=(data.get("full_name") or "").strip() or None, role=role)
    user.set_password(data.get("password"))
    db.session.add(user)
    db.session.commit()
    return UserSchema().dump(user), 201


@auth_bp.route("/login", methods=["POST"])
def login() -> tuple[dict, int]:
    """Authenticate a user and return a JWT.

    Expects JSON with ``email`` and ``password``. Returns a JWT
    containing the user's ID, role and e-mail. Invalid credentials
    return 401.
    """
    data = request.get_json() or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password):
        return {"error": "Invalid email or password."}, 401

    additional_claims = {"role": user.role.value, "email": user.email}
    access_token = create_access_token(identity=str(user.id), additional_claims=additional_claims)
    return {"access_token": access_token, "user": UserSchema().dump(user)}, 200
