from datetime import datetime
from typing import Dict, Optional

from flask import current_app

from .database import get_db
from .helpers import isoformat, normalize_email, sanitize_metadata


def record_audit_log(
    actor_email: Optional[str], action: str, metadata: Optional[Dict] = None
):
    if not action:
        return
    db = get_db()
    try:
        normalized_email = normalize_email(actor_email)
        log_document = {
            "user_email": normalized_email or None,
            "user_name": "",
            "action": action,
            "metadata": sanitize_metadata(metadata),
            "created_at": datetime.utcnow(),
        }
        if normalized_email:
            user_document = db.users.find_one({"email": normalized_email})
            if user_document:
                log_document["user_name"] = user_document.get("name", "") or ""
                log_document["metadata"].setdefault(
                    "user_role", str(user_document.get("role") or "buyer")
                )
        db.audit_logs.insert_one(log_document)
    except Exception as exc:
        current_app.logger.warning("Unable to record audit log: %s", exc)


def serialize_audit_log(document):
    if not document:
        return {}
    metadata = document.get("metadata")
    return {
        "id": str(document.get("_id")),
        "user_email": document.get("user_email") or "",
        "user_name": document.get("user_name") or "",
        "action": document.get("action") or "",
        "metadata": metadata if isinstance(metadata, dict) else {},
        "created_at": isoformat(document.get("created_at")),
    }
