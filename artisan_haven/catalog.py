import math
import re
from typing import Dict

from flask import Blueprint, jsonify, request
from flask_jwt_extended import verify_jwt_in_request

from .auth import current_user, is_admin
from .database import get_db
from .helpers import (
    isoformat,
    normalize_object_id_value,
    parse_page_size,
    safe_float,
    safe_positive_int,
)
from .media import serialize_media

catalog_bp = Blueprint("catalog", __name__)

PRODUCT_CATEGORIES = ("pottery", "textiles", "woodwork", "jewelry", "other")
PRODUCTS_PER_PAGE = 12
MAX_PER_PAGE = 60
PRICE_FILTER_CEILING = 10000
SORT_OPTIONS = {
    "newest": [("created_at", -1), ("_id", -1)],
    "price-asc": [("price", 1), ("_id", 1)],
    "price-desc": [("price", -1), ("_id", -1)],
}


def normalize_category(value) -> str:
    return str(value or "").strip().lower()


def serialize_product(product_document) -> Dict[str, object]:
    media = serialize_media(product_document.get("media"))
    image_urls = [entry["url"] for entry in media if entry["type"] == "image"]
    return {
        "id": str(product_document.get("_id")),
        "name": product_document.get("name", ""),
        "description": product_document.get("description", ""),
        "price": round(safe_float(product_document.get("price"), 0.0), 2),
        "category": product_document.get("category", ""),
        "media": media,
        "image_urls": image_urls,
        "image_url": image_urls[0] if image_urls else "",
        "artisan_id": product_document.get("artisan_id", ""),
        "artisan_name": product_document.get("artisan_name", ""),
        "is_verified": bool(product_document.get("is_verified")),
        "views": safe_positive_int(product_document.get("views"), 0),
        "sales": safe_positive_int(product_document.get("sales"), 0),
        "created_at": isoformat(product_document.get("created_at")),
    }


def build_catalog_query(args) -> Dict[str, object]:
    query: Dict[str, object] = {"is_verified": True}

    search_term = str(args.get("q") or "").strip()
    if search_term:
        query["name"] = re.compile(re.escape(search_term), re.IGNORECASE)

    category = normalize_category(args.get("category"))
    if category and category != "all":
        query["category"] = category

    # The ceiling value means "no upper bound".
    max_price = safe_float(args.get("max_price"), PRICE_FILTER_CEILING)
    if max_price < PRICE_FILTER_CEILING:
        query["price"] = {"$lte": max_price}

    return query


def can_view_product(product_document, user_document) -> bool:
    if product_document.get("is_verified"):
        return True
    if not user_document:
        return False
    if is_admin(user_document):
        return True
    return product_document.get("artisan_id") == str(user_document.get("_id"))


@catalog_bp.route("/api/categories", methods=["GET"])
def list_categories():
    return jsonify({"categories": list(PRODUCT_CATEGORIES)})


@catalog_bp.route("/api/products", methods=["GET"])
def list_products():
    db = get_db()
    query = build_catalog_query(request.args)
    sort_key = str(request.args.get("sort") or "newest").strip().lower()
    sort_spec = SORT_OPTIONS.get(sort_key, SORT_OPTIONS["newest"])

    page = max(safe_positive_int(request.args.get("page"), 1), 1)
    per_page = parse_page_size(request.args.get("per_page"), PRODUCTS_PER_PAGE, MAX_PER_PAGE)

    total = db.products.count_documents(query)
    cursor = (
        db.products.find(query)
        .sort(sort_spec)
        .skip((page - 1) * per_page)
        .limit(per_page)
    )
    products = [serialize_product(document) for document in cursor]

    return jsonify(
        {
            "products": products,
            "total": total,
            "page": page,
            "per_page": per_page,
            "total_pages": math.ceil(total / per_page) if total else 0,
        }
    )


@catalog_bp.route("/api/products/<product_id>", methods=["GET"])
def get_product(product_id: str):
    object_id = normalize_object_id_value(product_id)
    if not object_id:
        return jsonify({"message": "Invalid product identifier."}), 400

    product_document = get_db().products.find_one({"_id": object_id})
    if not product_document:
        return jsonify({"message": "Product not found."}), 404

    viewer = None
    if not product_document.get("is_verified"):
        verify_jwt_in_request(optional=True)
        viewer = current_user()
    if not can_view_product(product_document, viewer):
        return jsonify({"message": "Product not found."}), 404

    return jsonify({"product": serialize_product(product_document)})


@catalog_bp.route("/api/track-view", methods=["POST"])
def track_view():
    payload = request.get_json(silent=True) or {}
    product_id = payload.get("productId") or payload.get("product_id")
    if not product_id:
        return jsonify({"message": "Product ID is required"}), 400

    object_id = normalize_object_id_value(product_id)
    if not object_id:
        return jsonify({"message": "Invalid product identifier."}), 400

    result = get_db().products.update_one({"_id": object_id}, {"$inc": {"views": 1}})
    if not result.matched_count:
        return jsonify({"message": "Product not found."}), 404

    return jsonify({"success": True})
