from datetime import datetime
from typing import Dict, Optional

import bcrypt
from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import create_access_token, get_jwt_identity, jwt_required

from .audit import record_audit_log
from .database import get_db
from .helpers import isoformat, is_valid_email, normalize_email

auth_bp = Blueprint("auth", __name__)

ALLOWED_USER_ROLES = {"admin", "artisan", "buyer"}
SELF_SERVICE_ROLES = {"artisan", "buyer"}
ADDRESS_FIELDS = ("line1", "line2", "city", "state", "pincode", "phone")
REQUIRED_ADDRESS_FIELDS = ("line1", "city", "state", "pincode")
MIN_PASSWORD_LENGTH = 6


def default_admin_email() -> str:
    return normalize_email(current_app.config.get("DEFAULT_ADMIN_EMAIL"))


def normalize_role(value: Optional[str]) -> str:
    normalized = str(value or "").strip().lower()
    return normalized if normalized in ALLOWED_USER_ROLES else "buyer"


def get_user_role(user_document) -> str:
    if not user_document:
        return "buyer"

    if normalize_email(user_document.get("email")) == default_admin_email():
        return "admin"

    return normalize_role(user_document.get("role", "buyer"))


def is_admin(user_document) -> bool:
    return get_user_role(user_document) == "admin"


def is_verified_artisan(user_document) -> bool:
    if not user_document:
        return False
    return get_user_role(user_document) == "artisan" and bool(
        user_document.get("is_verified_artisan")
    )


def current_user():
    current_email = normalize_email(get_jwt_identity())
    if not current_email:
        return None
    return get_db().users.find_one({"email": current_email})


def require_role(*roles: str):
    """Return ``(user, None)`` when the caller holds one of ``roles``.

    Admins pass every check. An empty role list only requires a live account.
    """
    allowed = {normalize_role(role) for role in roles if role}

    user_document = current_user()
    if not user_document:
        return (
            None,
            (jsonify({"message": "Your session is no longer valid. Please sign in again."}), 401),
        )

    user_role = get_user_role(user_document)
    if user_role == "admin" or not allowed or user_role in allowed:
        return user_document, None

    return (
        None,
        (
            jsonify(
                {"message": "You need additional permissions to perform this action."}
            ),
            403,
        ),
    )


def require_admin_user():
    return require_role("admin")


def require_verified_artisan():
    user_document, permission_error = require_role("artisan")
    if permission_error:
        return None, permission_error

    if is_admin(user_document) or is_verified_artisan(user_document):
        return user_document, None

    return (
        None,
        (
            jsonify(
                {
                    "message": "Your artisan account must be verified before you can manage listings."
                }
            ),
            403,
        ),
    )


def normalize_address_payload(payload: Optional[Dict]) -> Dict[str, str]:
    if not isinstance(payload, dict):
        return {}
    normalized: Dict[str, str] = {}
    for field in ADDRESS_FIELDS:
        value = str(payload.get(field) or "").strip()
        if value:
            normalized[field] = value
    return normalized


def is_complete_address(payload: Optional[Dict]) -> bool:
    normalized = normalize_address_payload(payload)
    return all(normalized.get(field) for field in REQUIRED_ADDRESS_FIELDS)


def serialize_user_profile(user_document) -> Dict[str, object]:
    role = get_user_role(user_document)
    return {
        "id": str(user_document.get("_id")),
        "email": user_document.get("email", ""),
        "name": user_document.get("name", "") or "",
        "phone": user_document.get("phone", "") or "",
        "role": role,
        "is_admin": role == "admin",
        "is_verified_artisan": is_verified_artisan(user_document),
        "shipping_address": normalize_address_payload(
            user_document.get("shipping_address")
        ),
        "created_at": isoformat(user_document.get("created_at")),
    }


@auth_bp.route("/api/auth/register", methods=["POST"])
def register():
    db = get_db()
    payload = request.get_json(silent=True) or {}
    email = normalize_email(payload.get("email"))
    name = str(payload.get("name", "")).strip()
    password = str(payload.get("password", ""))
    phone = str(payload.get("phone", "")).strip()
    requested_role = str(payload.get("role") or "buyer").strip().lower()

    if not email or not name or not password:
        return (
            jsonify(
                {"message": "Email, name, and password are required to create an account."}
            ),
            400,
        )

    if not is_valid_email(email):
        return jsonify({"message": "Please provide a valid email address."}), 400

    if len(password) < MIN_PASSWORD_LENGTH:
        return (
            jsonify(
                {"message": f"Password must be at least {MIN_PASSWORD_LENGTH} characters."}
            ),
            400,
        )

    if requested_role not in SELF_SERVICE_ROLES:
        return jsonify({"message": "Role must be 'buyer' or 'artisan'."}), 400

    if db.users.find_one({"email": email}):
        return jsonify({"message": "An account with this email already exists."}), 400

    hashed_pw = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())
    assigned_role = "admin" if email == default_admin_email() else requested_role

    user_document = {
        "email": email,
        "name": name,
        "password": hashed_pw,
        "created_at": datetime.utcnow(),
        "role": assigned_role,
        "is_verified_artisan": False,
        "cart": [],
    }
    if phone:
        user_document["phone"] = phone

    insert_result = db.users.insert_one(user_document)
    user_document["_id"] = insert_result.inserted_id

    record_audit_log(
        email,
        "Registered new account",
        {"user_id": str(insert_result.inserted_id), "role": assigned_role},
    )

    token = create_access_token(identity=email)
    return (
        jsonify(
            {
                "message": "Account created.",
                "access_token": token,
                "user": serialize_user_profile(user_document),
            }
        ),
        201,
    )


@auth_bp.route("/api/auth/login", methods=["POST"])
def login():
    db = get_db()
    payload = request.get_json(silent=True) or {}
    email = normalize_email(payload.get("email"))
    password = str(payload.get("password", ""))

    if not email or not password:
        return jsonify({"message": "Email and password are required."}), 400

    user = db.users.find_one({"email": email})
    if not user or not bcrypt.checkpw(password.encode("utf-8"), user["password"]):
        return jsonify({"message": "Invalid credentials"}), 401

    updates: Dict[str, object] = {"last_login_at": datetime.utcnow()}
    if email == default_admin_email() and user.get("role") != "admin":
        updates["role"] = "admin"
        updates["name"] = user.get("name") or current_app.config["DEFAULT_ADMIN_NAME"]
    db.users.update_one({"_id": user["_id"]}, {"$set": updates})
    user = db.users.find_one({"_id": user["_id"]})

    record_audit_log(
        email,
        "Signed in",
        {"ip": request.headers.get("X-Forwarded-For", request.remote_addr)},
    )

    token = create_access_token(identity=email)
    return jsonify({"access_token": token, "user": serialize_user_profile(user)})


@auth_bp.route("/api/auth/me", methods=["GET"])
@jwt_required()
def get_profile():
    user_document, permission_error = require_role()
    if permission_error:
        return permission_error
    return jsonify({"user": serialize_user_profile(user_document)})


@auth_bp.route("/api/auth/me", methods=["PUT"])
@jwt_required()
def update_profile():
    user_document, permission_error = require_role()
    if permission_error:
        return permission_error

    payload = request.get_json(silent=True) or {}
    updates: Dict[str, object] = {}

    if "name" in payload:
        name_value = str(payload.get("name") or "").strip()
        if not name_value:
            return jsonify({"message": "Name cannot be empty."}), 400
        updates["name"] = name_value

    if "phone" in payload:
        updates["phone"] = str(payload.get("phone") or "").strip()

    if not updates:
        return jsonify({"message": "Nothing to update."}), 400

    db = get_db()
    db.users.update_one({"_id": user_document["_id"]}, {"$set": updates})
    updated_user = db.users.find_one({"_id": user_document["_id"]})
    return jsonify(
        {"message": "Profile updated.", "user": serialize_user_profile(updated_user)}
    )


@auth_bp.route("/api/auth/me/address", methods=["PUT"])
@jwt_required()
def update_shipping_address():
    user_document, permission_error = require_role()
    if permission_error:
        return permission_error

    payload = request.get_json(silent=True) or {}
    if not is_complete_address(payload):
        return (
            jsonify(
                {"message": "Address line 1, city, state, and pincode are required."}
            ),
            400,
        )

    db = get_db()
    db.users.update_one(
        {"_id": user_document["_id"]},
        {"$set": {"shipping_address": normalize_address_payload(payload)}},
    )
    updated_user = db.users.find_one({"_id": user_document["_id"]})
    return jsonify(
        {
            "message": "Shipping address saved.",
            "user": serialize_user_profile(updated_user),
        }
    )
