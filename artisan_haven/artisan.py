import math
from datetime import datetime
from typing import Dict

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required

from .assistant import MISSING_KEY_MESSAGE, analysis_response, get_llm_client
from .audit import record_audit_log
from .auth import is_admin, require_verified_artisan
from .catalog import PRODUCT_CATEGORIES, normalize_category, serialize_product
from .database import get_db
from .helpers import load_document, normalize_email, safe_float, safe_positive_int
from .media import collect_uploads, remove_media, save_media_files
from .orders import artisan_line_items

artisan_bp = Blueprint("artisan", __name__)

MEDIA_FIELD = "media"
MIN_PRODUCT_NAME_LENGTH = 3


def can_manage_product(product_document, user_document) -> bool:
    if not product_document or not user_document:
        return False
    if is_admin(user_document):
        return True
    return product_document.get("artisan_id") == str(user_document.get("_id"))


def load_owned_product(product_id: str, user_document):
    product_document, load_error = load_document(get_db().products, product_id, "product")
    if load_error:
        return None, load_error
    if not can_manage_product(product_document, user_document):
        return None, (jsonify({"message": "Product not found."}), 404)
    return product_document, None


def request_payload() -> Dict[str, object]:
    payload = request.form.to_dict() if request.form else {}
    if not payload and request.is_json:
        payload = request.get_json(silent=True) or {}
    return payload


def validate_product_fields(payload, partial: bool = False):
    """Return ``(fields, error_message)`` for the editable listing fields."""
    fields: Dict[str, object] = {}

    if not partial or "name" in payload:
        name_value = str(payload.get("name") or "").strip()
        if len(name_value) < MIN_PRODUCT_NAME_LENGTH:
            return None, f"Product name must be at least {MIN_PRODUCT_NAME_LENGTH} characters."
        fields["name"] = name_value

    if not partial or "description" in payload:
        description_value = str(payload.get("description") or "").strip()
        if not description_value:
            return None, "A product description is required."
        fields["description"] = description_value

    if not partial or "price" in payload:
        try:
            price_value = float(payload.get("price"))
        except (TypeError, ValueError):
            return None, "Price must be a valid number."
        if not math.isfinite(price_value):
            return None, "Price must be a valid number."
        price_value = round(price_value, 2)
        if not price_value > 0:
            return None, "Price must be greater than zero."
        fields["price"] = price_value

    if not partial or "category" in payload:
        category_value = normalize_category(payload.get("category"))
        if category_value not in PRODUCT_CATEGORIES:
            return None, f"Category must be one of: {', '.join(PRODUCT_CATEGORIES)}."
        fields["category"] = category_value

    return fields, None


def product_performance(product_document, orders) -> Dict[str, object]:
    product_id = str(product_document["_id"])
    revenue = 0.0
    for order_document in orders:
        for item in order_document.get("items") or []:
            if isinstance(item, dict) and item.get("product_id") == product_id:
                revenue += safe_float(item.get("price")) * safe_positive_int(item.get("quantity"), 0)
    return {
        "views": safe_positive_int(product_document.get("views"), 0),
        "sales": safe_positive_int(product_document.get("sales"), 0),
        "revenue": round(revenue, 2),
    }


@artisan_bp.route("/api/artisan/dashboard", methods=["GET"])
@jwt_required()
def artisan_dashboard():
    user_document, permission_error = require_verified_artisan()
    if permission_error:
        return permission_error

    db = get_db()
    artisan_id = str(user_document["_id"])

    total_products = db.products.count_documents({"artisan_id": artisan_id})
    active_products = db.products.count_documents(
        {"artisan_id": artisan_id, "is_verified": True}
    )

    revenue = 0.0
    sales = 0
    for order_document in db.orders.find({"artisan_ids": artisan_id}):
        for item in artisan_line_items(order_document, artisan_id):
            quantity = safe_positive_int(item.get("quantity"), 0)
            revenue += safe_float(item.get("price")) * quantity
            sales += quantity

    return jsonify(
        {
            "total_revenue": round(revenue, 2),
            "total_sales": sales,
            "active_products": active_products,
            "total_products": total_products,
        }
    )


@artisan_bp.route("/api/artisan/products", methods=["GET"])
@jwt_required()
def list_artisan_products():
    user_document, permission_error = require_verified_artisan()
    if permission_error:
        return permission_error

    cursor = get_db().products.find({"artisan_id": str(user_document["_id"])}).sort(
        [("created_at", -1), ("_id", -1)]
    )
    return jsonify({"products": [serialize_product(document) for document in cursor]})


@artisan_bp.route("/api/artisan/products", methods=["POST"])
@jwt_required()
def create_product():
    user_document, permission_error = require_verified_artisan()
    if permission_error:
        return permission_error

    payload = request_payload()
    fields, validation_error = validate_product_fields(payload)
    if validation_error:
        return jsonify({"message": validation_error}), 400

    uploads = collect_uploads(MEDIA_FIELD)
    if not uploads:
        return jsonify({"message": "Please upload at least one image or video."}), 400

    artisan_id = str(user_document["_id"])
    media, media_error = save_media_files(uploads, f"products/{artisan_id}")
    if media_error:
        return jsonify({"message": media_error}), 400
    if not media:
        return jsonify({"message": "Please upload at least one image or video."}), 400

    product_document = {
        **fields,
        "media": media,
        "artisan_id": artisan_id,
        "artisan_name": user_document.get("name", "") or "",
        "created_by": normalize_email(user_document.get("email")),
        "created_at": datetime.utcnow(),
        "is_verified": False,
        "views": 0,
        "sales": 0,
    }
    db = get_db()
    result = db.products.insert_one(product_document)
    created_product = db.products.find_one({"_id": result.inserted_id})

    record_audit_log(
        user_document.get("email"),
        "Created product",
        {"product_id": str(result.inserted_id), "product_name": fields["name"]},
    )

    return (
        jsonify(
            {
                "message": "Product submitted. It will appear in the catalog once approved.",
                "product": serialize_product(created_product),
            }
        ),
        201,
    )


@artisan_bp.route("/api/artisan/products/<product_id>", methods=["GET"])
@jwt_required()
def get_artisan_product(product_id: str):
    user_document, permission_error = require_verified_artisan()
    if permission_error:
        return permission_error

    product_document, load_error = load_owned_product(product_id, user_document)
    if load_error:
        return load_error

    orders = get_db().orders.find({"items.product_id": str(product_document["_id"])})
    return jsonify(
        {
            "product": serialize_product(product_document),
            "performance": product_performance(product_document, orders),
        }
    )


@artisan_bp.route("/api/artisan/products/<product_id>", methods=["PUT"])
@jwt_required()
def update_product(product_id: str):
    user_document, permission_error = require_verified_artisan()
    if permission_error:
        return permission_error

    product_document, load_error = load_owned_product(product_id, user_document)
    if load_error:
        return load_error

    payload = request_payload()
    updates, validation_error = validate_product_fields(payload, partial=True)
    if validation_error:
        return jsonify({"message": validation_error}), 400

    new_media, media_error = save_media_files(
        collect_uploads(MEDIA_FIELD), f"products/{product_document.get('artisan_id')}"
    )
    if media_error:
        return jsonify({"message": media_error}), 400

    if not updates and not new_media:
        return jsonify({"message": "Nothing to update."}), 400

    update_operation: Dict[str, object] = {
        "$set": {**updates, "updated_at": datetime.utcnow()}
    }
    if new_media:
        update_operation["$push"] = {"media": {"$each": new_media}}

    db = get_db()
    db.products.update_one({"_id": product_document["_id"]}, update_operation)
    updated_product = db.products.find_one({"_id": product_document["_id"]})

    record_audit_log(
        user_document.get("email"),
        "Updated product",
        {
            "product_id": str(product_document["_id"]),
            "fields": ",".join(sorted(updates)),
            "new_media": len(new_media),
        },
    )

    return jsonify(
        {"message": "Product updated.", "product": serialize_product(updated_product)}
    )


@artisan_bp.route("/api/artisan/products/<product_id>/media/<int:index>", methods=["DELETE"])
@jwt_required()
def remove_product_media(product_id: str, index: int):
    user_document, permission_error = require_verified_artisan()
    if permission_error:
        return permission_error

    product_document, load_error = load_owned_product(product_id, user_document)
    if load_error:
        return load_error

    media = list(product_document.get("media") or [])
    if index >= len(media):
        return jsonify({"message": "Media item not found."}), 404
    if len(media) == 1:
        return jsonify({"message": "A product needs at least one image or video."}), 400

    removed = media.pop(index)
    db = get_db()
    db.products.update_one(
        {"_id": product_document["_id"]},
        {"$set": {"media": media, "updated_at": datetime.utcnow()}},
    )
    remove_media(removed)

    updated_product = db.products.find_one({"_id": product_document["_id"]})
    return jsonify(
        {"message": "Media removed.", "product": serialize_product(updated_product)}
    )


@artisan_bp.route("/api/artisan/products/<product_id>", methods=["DELETE"])
@jwt_required()
def delete_product(product_id: str):
    user_document, permission_error = require_verified_artisan()
    if permission_error:
        return permission_error

    product_document, load_error = load_owned_product(product_id, user_document)
    if load_error:
        return load_error

    get_db().products.delete_one({"_id": product_document["_id"]})
    remove_media(product_document.get("media") or [])

    record_audit_log(
        user_document.get("email"),
        "Deleted product",
        {
            "product_id": str(product_document["_id"]),
            "product_name": product_document.get("name", ""),
        },
    )

    return jsonify({"message": "Product removed successfully."})


@artisan_bp.route("/api/artisan/products/<product_id>/analysis", methods=["POST"])
@jwt_required()
def analyze_owned_product(product_id: str):
    user_document, permission_error = require_verified_artisan()
    if permission_error:
        return permission_error

    product_document, load_error = load_owned_product(product_id, user_document)
    if load_error:
        return load_error

    client = get_llm_client()
    if client is None:
        return jsonify({"message": MISSING_KEY_MESSAGE}), 500

    current_app.logger.info("Generating AI analysis for product %s", product_id)
    return analysis_response(
        client,
        product_document.get("name", ""),
        product_document.get("description", ""),
        safe_float(product_document.get("price")),
        product_document.get("views"),
        product_document.get("sales"),
    )
