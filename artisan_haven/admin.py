import math
import re
from datetime import datetime
from typing import Dict

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from .audit import record_audit_log, serialize_audit_log
from .auth import (
    ALLOWED_USER_ROLES,
    default_admin_email,
    require_admin_user,
    serialize_user_profile,
)
from .catalog import serialize_product
from .database import get_db
from .helpers import (
    isoformat,
    load_document,
    normalize_email,
    parse_iso_date,
    parse_page_size,
    safe_positive_int,
)

admin_bp = Blueprint("admin", __name__)

LOGS_PER_PAGE = 50
MAX_LOGS_PER_PAGE = 200

PRODUCT_STATUS_FILTERS = {
    "pending": {"is_verified": {"$ne": True}},
    "verified": {"is_verified": True},
    "all": {},
}


def serialize_admin_user(user_document) -> Dict[str, object]:
    profile = serialize_user_profile(user_document)
    profile["last_login_at"] = isoformat(user_document.get("last_login_at"))
    return profile


def build_log_date_filter(start_param, end_param) -> Dict[str, datetime]:
    start_date = parse_iso_date(start_param)
    end_date = parse_iso_date(end_param, end_of_day=True)
    created_filter: Dict[str, datetime] = {}
    if start_date:
        created_filter["$gte"] = start_date
    if end_date:
        created_filter["$lt"] = end_date
    return created_filter


@admin_bp.route("/api/admin/products", methods=["GET"])
@jwt_required()
def list_products_for_review():
    _, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    status = str(request.args.get("status") or "pending").strip().lower()
    if status not in PRODUCT_STATUS_FILTERS:
        return jsonify({"message": "Status must be 'pending', 'verified', or 'all'."}), 400

    cursor = get_db().products.find(PRODUCT_STATUS_FILTERS[status]).sort(
        [("created_at", 1), ("_id", 1)]
    )
    return jsonify({"products": [serialize_product(document) for document in cursor]})


@admin_bp.route("/api/admin/products/<product_id>/verify", methods=["PUT"])
@jwt_required()
def set_product_verification(product_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    db = get_db()
    product_document, load_error = load_document(db.products, product_id, "product")
    if load_error:
        return load_error

    payload = request.get_json(silent=True) or {}
    desired_state = payload.get("verified", True)
    if not isinstance(desired_state, bool):
        return jsonify({"message": "'verified' must be true or false."}), 400

    db.products.update_one(
        {"_id": product_document["_id"]},
        {"$set": {"is_verified": desired_state, "verified_at": datetime.utcnow() if desired_state else None}},
    )
    updated_product = db.products.find_one({"_id": product_document["_id"]})

    record_audit_log(
        admin_user.get("email"),
        "Approved product" if desired_state else "Unlisted product",
        {"product_id": product_id, "product_name": product_document.get("name", "")},
    )

    return jsonify(
        {
            "message": "Product is now live." if desired_state else "Product removed from the catalog.",
            "product": serialize_product(updated_product),
        }
    )


@admin_bp.route("/api/admin/users", methods=["GET"])
@jwt_required()
def list_users():
    _, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    cursor = get_db().users.find().sort("created_at", -1)
    return jsonify({"users": [serialize_admin_user(user) for user in cursor]})


@admin_bp.route("/api/admin/users/<user_id>/role", methods=["PUT"])
@jwt_required()
def update_user_role(user_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    payload = request.get_json(silent=True) or {}
    desired_role = str(payload.get("role", "")).strip().lower()
    if desired_role not in ALLOWED_USER_ROLES:
        return jsonify({"message": "Role must be 'admin', 'artisan', or 'buyer'."}), 400

    db = get_db()
    user_to_update, load_error = load_document(db.users, user_id, "user")
    if load_error:
        return load_error

    target_email = normalize_email(user_to_update.get("email"))
    if target_email == default_admin_email() and desired_role != "admin":
        return jsonify({"message": "The default administrator must remain an admin."}), 400

    updates: Dict[str, object] = {"role": desired_role}
    if desired_role != "artisan":
        updates["is_verified_artisan"] = False
    db.users.update_one({"_id": user_to_update["_id"]}, {"$set": updates})
    updated_user = db.users.find_one({"_id": user_to_update["_id"]})

    record_audit_log(
        admin_user.get("email"),
        "Updated user role",
        {"target_email": target_email, "new_role": desired_role},
    )

    return jsonify(
        {"message": f"Role updated to {desired_role}.", "user": serialize_admin_user(updated_user)}
    )


@admin_bp.route("/api/admin/logs", methods=["GET"])
@jwt_required()
def admin_list_logs():
    _, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    search_term = (request.args.get("search") or "").strip()
    page = max(safe_positive_int(request.args.get("page"), 1), 1)
    limit = parse_page_size(request.args.get("limit"), LOGS_PER_PAGE, MAX_LOGS_PER_PAGE)

    query: Dict[str, object] = {}
    if search_term:
        regex = re.compile(re.escape(search_term), re.IGNORECASE)
        query["$or"] = [
            {"user_email": regex},
            {"user_name": regex},
            {"action": regex},
        ]

    created_filter = build_log_date_filter(
        request.args.get("start") or request.args.get("from"),
        request.args.get("end") or request.args.get("to"),
    )
    if created_filter:
        query["created_at"] = created_filter

    audit_logs = get_db().audit_logs
    cursor = (
        audit_logs.find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    )
    logs = [serialize_audit_log(document) for document in cursor]
    total = audit_logs.count_documents(query)

    return jsonify(
        {
            "logs": logs,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit) if total else 0,
            },
        }
    )


@admin_bp.route("/api/admin/logs", methods=["DELETE"])
@jwt_required()
def admin_delete_logs():
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    payload = request.get_json(silent=True) or {}
    created_filter = build_log_date_filter(
        payload.get("from") or payload.get("start"),
        payload.get("to") or payload.get("end"),
    )
    delete_query = {"created_at": created_filter} if created_filter else {}

    result = get_db().audit_logs.delete_many(delete_query)

    record_audit_log(
        admin_user.get("email"),
        "Deleted audit logs",
        {"count": result.deleted_count, "range": "filtered" if delete_query else "all"},
    )

    return jsonify(
        {
            "message": f"Removed {result.deleted_count} audit log entries.",
            "deleted": result.deleted_count,
        }
    )
