from typing import Dict, List

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from .auth import require_role
from .catalog import serialize_product
from .database import get_db
from .helpers import normalize_object_id_value, parse_quantity

cart_bp = Blueprint("cart", __name__)

MAX_LINE_QUANTITY = 99


def stored_cart_entries(user_document) -> List[Dict[str, object]]:
    entries: List[Dict[str, object]] = []
    raw_cart = user_document.get("cart") if user_document else None
    if not isinstance(raw_cart, list):
        return entries
    for raw in raw_cart:
        if not isinstance(raw, dict):
            continue
        quantity = parse_quantity(raw.get("quantity"))
        product_id = str(raw.get("product_id") or "").strip()
        if product_id and quantity:
            entries.append({"product_id": product_id, "quantity": quantity})
    return entries


def resolve_cart_lines(entries) -> List[Dict[str, object]]:
    """Join cart entries with verified products, dropping anything no longer sold."""
    object_ids = [
        object_id
        for object_id in (normalize_object_id_value(entry["product_id"]) for entry in entries)
        if object_id
    ]
    if not object_ids:
        return []

    products = {
        str(document["_id"]): document
        for document in get_db().products.find(
            {"_id": {"$in": object_ids}, "is_verified": True}
        )
    }

    lines: List[Dict[str, object]] = []
    for entry in entries:
        product_document = products.get(entry["product_id"])
        if not product_document:
            continue
        lines.append({"product": product_document, "quantity": entry["quantity"]})
    return lines


def summarize_cart(lines) -> Dict[str, object]:
    items = []
    cart_count = 0
    total_price = 0.0
    for line in lines:
        product = serialize_product(line["product"])
        quantity = line["quantity"]
        line_total = round(product["price"] * quantity, 2)
        items.append(
            {
                "product_id": product["id"],
                "name": product["name"],
                "price": product["price"],
                "image_url": product["image_url"],
                "artisan_id": product["artisan_id"],
                "artisan_name": product["artisan_name"],
                "quantity": quantity,
                "line_total": line_total,
            }
        )
        cart_count += quantity
        total_price += line_total
    return {
        "items": items,
        "cart_count": cart_count,
        "total_price": round(total_price, 2),
    }


def save_cart(user_document, entries):
    get_db().users.update_one(
        {"_id": user_document["_id"]}, {"$set": {"cart": list(entries)}}
    )


def cart_response(entries, message=None, status=200):
    payload = {"cart": summarize_cart(resolve_cart_lines(entries))}
    if message:
        payload["message"] = message
    return jsonify(payload), status


@cart_bp.route("/api/cart", methods=["GET"])
@jwt_required()
def get_cart():
    user_document, permission_error = require_role()
    if permission_error:
        return permission_error
    return cart_response(stored_cart_entries(user_document))


@cart_bp.route("/api/cart/items", methods=["POST"])
@jwt_required()
def add_cart_item():
    user_document, permission_error = require_role()
    if permission_error:
        return permission_error

    payload = request.get_json(silent=True) or {}
    product_id = str(payload.get("product_id") or payload.get("productId") or "").strip()
    quantity = parse_quantity(payload.get("quantity", 1))

    object_id = normalize_object_id_value(product_id)
    if not object_id:
        return jsonify({"message": "Invalid product identifier."}), 400
    if not quantity:
        return jsonify({"message": "Quantity must be a positive whole number."}), 400

    product_document = get_db().products.find_one({"_id": object_id, "is_verified": True})
    if not product_document:
        return jsonify({"message": "Product not found."}), 404

    entries = stored_cart_entries(user_document)
    for entry in entries:
        if entry["product_id"] == product_id:
            entry["quantity"] = min(entry["quantity"] + quantity, MAX_LINE_QUANTITY)
            break
    else:
        entries.append(
            {"product_id": product_id, "quantity": min(quantity, MAX_LINE_QUANTITY)}
        )

    save_cart(user_document, entries)
    return cart_response(entries, "Added to cart.")


@cart_bp.route("/api/cart/items/<product_id>", methods=["PUT"])
@jwt_required()
def update_cart_item(product_id: str):
    user_document, permission_error = require_role()
    if permission_error:
        return permission_error

    payload = request.get_json(silent=True) or {}
    quantity = parse_quantity(payload.get("quantity"))
    if quantity is None:
        return jsonify({"message": "Quantity must be a whole number."}), 400

    entries = stored_cart_entries(user_document)
    if not any(entry["product_id"] == product_id for entry in entries):
        return jsonify({"message": "That product is not in your cart."}), 404

    if quantity == 0:
        entries = [entry for entry in entries if entry["product_id"] != product_id]
    else:
        for entry in entries:
            if entry["product_id"] == product_id:
                entry["quantity"] = min(quantity, MAX_LINE_QUANTITY)

    save_cart(user_document, entries)
    return cart_response(entries, "Cart updated.")


@cart_bp.route("/api/cart/items/<product_id>", methods=["DELETE"])
@jwt_required()
def remove_cart_item(product_id: str):
    user_document, permission_error = require_role()
    if permission_error:
        return permission_error

    entries = [
        entry
        for entry in stored_cart_entries(user_document)
        if entry["product_id"] != product_id
    ]
    save_cart(user_document, entries)
    return cart_response(entries, "Removed from cart.")


@cart_bp.route("/api/cart", methods=["DELETE"])
@jwt_required()
def clear_cart():
    user_document, permission_error = require_role()
    if permission_error:
        return permission_error

    save_cart(user_document, [])
    return cart_response([], "Cart cleared.")
