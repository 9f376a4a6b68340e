from flask import current_app
from pymongo import ASCENDING, DESCENDING

DB_EXTENSION_KEY = "artisan_haven_db"


def get_db():
    return current_app.extensions[DB_EXTENSION_KEY]


def ensure_indexes(db, logger):
    index_plan = [
        (db.users, [("email", ASCENDING)], {"unique": True}),
        (db.products, [("is_verified", ASCENDING), ("created_at", DESCENDING)], {}),
        (db.products, [("artisan_id", ASCENDING)], {}),
        (db.orders, [("buyer_id", ASCENDING), ("created_at", DESCENDING)], {}),
        (db.orders, [("artisan_ids", ASCENDING)], {}),
        (db.verification_submissions, [("status", ASCENDING), ("created_at", ASCENDING)], {}),
        (db.audit_logs, [("created_at", DESCENDING)], {}),
    ]
    for collection, keys, options in index_plan:
        try:
            collection.create_index(keys, **options)
        except Exception as exc:
            logger.warning(
                "Unable to ensure index %s on %s: %s", keys, collection.name, exc
            )
