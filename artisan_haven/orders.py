from datetime import datetime
from typing import Dict, List, Optional

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required
from pymongo.errors import PyMongoError

from .audit import record_audit_log
from .auth import is_admin, is_complete_address, normalize_address_payload, require_role
from .cart import resolve_cart_lines, stored_cart_entries
from .catalog import serialize_product
from .database import get_db
from .helpers import (
    isoformat,
    load_document,
    normalize_email,
    parse_quantity,
    safe_float,
    unique_preserve,
)
from .notifications import send_order_confirmation_email

orders_bp = Blueprint("orders", __name__)

ORDER_STATUSES = ("Packaging", "Shipped", "Delivered", "Cancelled")
INITIAL_ORDER_STATUS = "Packaging"


def normalize_checkout_items(raw_items) -> Optional[List[Dict[str, object]]]:
    """Merge ``{product_id, quantity}`` entries; None when any entry is malformed."""
    if not isinstance(raw_items, list):
        return None
    merged: Dict[str, int] = {}
    for raw in raw_items:
        if not isinstance(raw, dict):
            return None
        product_id = str(raw.get("product_id") or raw.get("id") or "").strip()
        quantity = parse_quantity(raw.get("quantity", 1))
        if not product_id or not quantity:
            return None
        merged[product_id] = merged.get(product_id, 0) + quantity
    return [
        {"product_id": product_id, "quantity": quantity}
        for product_id, quantity in merged.items()
    ]


def build_order_items(lines) -> List[Dict[str, object]]:
    items: List[Dict[str, object]] = []
    for line in lines:
        product = serialize_product(line["product"])
        items.append(
            {
                "product_id": product["id"],
                "name": product["name"],
                "price": product["price"],
                "quantity": line["quantity"],
                "image_url": product["image_url"],
                "artisan_id": product["artisan_id"],
            }
        )
    return items


def calculate_order_totals(items, delivery_charge: float) -> Dict[str, float]:
    subtotal = round(
        sum(safe_float(item.get("price")) * item.get("quantity", 0) for item in items), 2
    )
    delivery = round(delivery_charge, 2)
    return {
        "subtotal": subtotal,
        "delivery_charge": delivery,
        "total_amount": round(subtotal + delivery, 2),
    }


def artisan_line_items(order_document, artisan_id: str) -> List[Dict]:
    return [
        item
        for item in order_document.get("items") or []
        if isinstance(item, dict) and item.get("artisan_id") == artisan_id
    ]


def serialize_order(order_document, artisan_id: Optional[str] = None):
    items = order_document.get("items") or []
    serialized = {
        "id": str(order_document.get("_id")),
        "buyer_id": order_document.get("buyer_id", ""),
        "artisan_ids": list(order_document.get("artisan_ids") or []),
        "shipping_address": order_document.get("shipping_address") or {},
        "items": items,
        "subtotal": order_document.get("subtotal", 0),
        "delivery_charge": order_document.get("delivery_charge", 0),
        "total_amount": order_document.get("total_amount", 0),
        "currency": order_document.get("currency", ""),
        "status": order_document.get("status", INITIAL_ORDER_STATUS),
        "payment_method": order_document.get("payment_method", ""),
        "payment_status": order_document.get("payment_status", ""),
        "created_at": isoformat(order_document.get("created_at")),
        "updated_at": isoformat(order_document.get("updated_at")),
    }
    if artisan_id is not None:
        own_items = artisan_line_items(order_document, artisan_id)
        serialized["items"] = own_items
        serialized["artisan_subtotal"] = round(
            sum(safe_float(item.get("price")) * item.get("quantity", 0) for item in own_items),
            2,
        )
    return serialized


def can_view_order(order_document, user_document) -> bool:
    if is_admin(user_document):
        return True
    user_id = str(user_document.get("_id"))
    return order_document.get("buyer_id") == user_id or user_id in (
        order_document.get("artisan_ids") or []
    )


@orders_bp.route("/api/checkout", methods=["POST"])
@jwt_required()
def checkout():
    user_document, permission_error = require_role()
    if permission_error:
        return permission_error

    db = get_db()
    payload = request.get_json(silent=True) or {}

    shipping_address = normalize_address_payload(user_document.get("shipping_address"))
    if not is_complete_address(shipping_address):
        return (
            jsonify({"message": "Please add a shipping address before placing your order."}),
            400,
        )

    explicit_items = "items" in payload
    if explicit_items:
        entries = normalize_checkout_items(payload.get("items"))
        if entries is None:
            return jsonify({"message": "Each item needs a product and a positive quantity."}), 400
    else:
        entries = stored_cart_entries(user_document)

    if not entries:
        return jsonify({"message": "Your cart is empty."}), 400

    lines = resolve_cart_lines(entries)
    if explicit_items and len(lines) != len(entries):
        return jsonify({"message": "Some items are no longer available."}), 400
    if not lines:
        return jsonify({"message": "None of the items in your cart are available anymore."}), 400

    items = build_order_items(lines)
    totals = calculate_order_totals(items, current_app.config["DELIVERY_CHARGE"])
    buyer_id = str(user_document["_id"])

    order_document = {
        "buyer_id": buyer_id,
        "buyer_email": normalize_email(user_document.get("email")),
        "artisan_ids": unique_preserve([item["artisan_id"] for item in items]),
        "shipping_address": {**shipping_address, "name": user_document.get("name", "")},
        "items": items,
        **totals,
        "currency": current_app.config["CURRENCY"],
        "status": INITIAL_ORDER_STATUS,
        "payment_method": "Manual",
        "payment_status": "Paid",
        "created_at": datetime.utcnow(),
    }
    insert_result = db.orders.insert_one(order_document)
    order_document["_id"] = insert_result.inserted_id

    for line in lines:
        try:
            db.products.update_one(
                {"_id": line["product"]["_id"]}, {"$inc": {"sales": line["quantity"]}}
            )
        except PyMongoError as exc:
            current_app.logger.error(
                "Unable to update sales for product %s on order %s: %s",
                line["product"]["_id"],
                insert_result.inserted_id,
                exc,
            )
    db.users.update_one({"_id": user_document["_id"]}, {"$set": {"cart": []}})

    record_audit_log(
        user_document.get("email"),
        "Placed order",
        {"order_id": str(insert_result.inserted_id), "total": totals["total_amount"]},
    )

    email_sent, email_error = send_order_confirmation_email(
        order_document, user_document.get("email")
    )

    response_payload = {
        "message": "Order placed successfully.",
        "order": serialize_order(order_document),
        "email_sent": email_sent,
    }
    if email_error:
        response_payload["email_error"] = email_error
    return jsonify(response_payload), 201


@orders_bp.route("/api/orders", methods=["GET"])
@jwt_required()
def list_orders():
    user_document, permission_error = require_role()
    if permission_error:
        return permission_error

    cursor = get_db().orders.find({"buyer_id": str(user_document["_id"])}).sort(
        [("created_at", -1), ("_id", -1)]
    )
    return jsonify({"orders": [serialize_order(document) for document in cursor]})


@orders_bp.route("/api/orders/<order_id>", methods=["GET"])
@jwt_required()
def get_order(order_id: str):
    user_document, permission_error = require_role()
    if permission_error:
        return permission_error

    order_document, load_error = load_document(get_db().orders, order_id, "order")
    if load_error:
        return load_error

    if not can_view_order(order_document, user_document):
        return jsonify({"message": "Order not found."}), 404

    user_id = str(user_document["_id"])
    if (
        not is_admin(user_document)
        and order_document.get("buyer_id") != user_id
    ):
        return jsonify({"order": serialize_order(order_document, artisan_id=user_id)})
    return jsonify({"order": serialize_order(order_document)})


@orders_bp.route("/api/artisan/orders", methods=["GET"])
@jwt_required()
def list_artisan_orders():
    user_document, permission_error = require_role("artisan")
    if permission_error:
        return permission_error

    artisan_id = str(user_document["_id"])
    cursor = get_db().orders.find({"artisan_ids": artisan_id}).sort(
        [("created_at", -1), ("_id", -1)]
    )
    return jsonify(
        {"orders": [serialize_order(document, artisan_id=artisan_id) for document in cursor]}
    )


@orders_bp.route("/api/orders/<order_id>/status", methods=["PUT"])
@jwt_required()
def update_order_status(order_id: str):
    user_document, permission_error = require_role("artisan")
    if permission_error:
        return permission_error

    db = get_db()
    order_document, load_error = load_document(db.orders, order_id, "order")
    if load_error:
        return load_error

    user_id = str(user_document["_id"])
    if not is_admin(user_document) and user_id not in (order_document.get("artisan_ids") or []):
        return jsonify({"message": "You do not have permission to update this order."}), 403

    payload = request.get_json(silent=True) or {}
    requested_status = str(payload.get("status") or "").strip().capitalize()
    if requested_status not in ORDER_STATUSES:
        return (
            jsonify({"message": f"Status must be one of: {', '.join(ORDER_STATUSES)}."}),
            400,
        )

    db.orders.update_one(
        {"_id": order_document["_id"]},
        {"$set": {"status": requested_status, "updated_at": datetime.utcnow()}},
    )
    updated_order = db.orders.find_one({"_id": order_document["_id"]})

    record_audit_log(
        user_document.get("email"),
        "Updated order status",
        {"order_id": order_id, "status": requested_status},
    )

    return jsonify(
        {"message": f"Order marked as {requested_status}.", "order": serialize_order(updated_order)}
    )
