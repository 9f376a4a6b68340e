from datetime import datetime
from typing import Dict, List

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from .audit import record_audit_log
from .auth import is_verified_artisan, require_admin_user, require_role
from .database import get_db
from .helpers import isoformat, load_document, normalize_email
from .media import DOCUMENT_EXTENSIONS, media_url, remove_media, save_media_file
from .notifications import send_verification_decision_email

verification_bp = Blueprint("verification", __name__)

DOCUMENT_FIELDS = ("aadhaar", "pan", "address_proof", "work_proof")


def serialize_submission(document) -> Dict[str, object]:
    documents = document.get("documents") or {}
    return {
        "id": str(document.get("_id")),
        "user_id": document.get("user_id", ""),
        "email": document.get("email", ""),
        "name": document.get("name", ""),
        "full_name": document.get("full_name", ""),
        "craft": document.get("craft", ""),
        "status": document.get("status", "pending"),
        "documents": {
            field: media_url(documents.get(field)) for field in DOCUMENT_FIELDS
        },
        "rejection_reason": document.get("rejection_reason", ""),
        "reviewed_by": document.get("reviewed_by", ""),
        "reviewed_at": isoformat(document.get("reviewed_at")),
        "created_at": isoformat(document.get("created_at")),
    }


def load_pending_submission(submission_id: str):
    submission, load_error = load_document(
        get_db().verification_submissions, submission_id, "submission"
    )
    if load_error:
        return None, load_error
    if submission.get("status") != "pending":
        return (
            None,
            (jsonify({"message": "This submission has already been reviewed."}), 409),
        )
    return submission, None


def finish_review(submission, admin_user, status: str, extra_fields=None):
    fields = {
        "status": status,
        "reviewed_by": normalize_email(admin_user.get("email")),
        "reviewed_at": datetime.utcnow(),
        **(extra_fields or {}),
    }
    db = get_db()
    db.verification_submissions.update_one({"_id": submission["_id"]}, {"$set": fields})
    return db.verification_submissions.find_one({"_id": submission["_id"]})


@verification_bp.route("/api/verification", methods=["POST"])
@jwt_required()
def submit_verification():
    user_document, permission_error = require_role()
    if permission_error:
        return permission_error

    if is_verified_artisan(user_document):
        return jsonify({"message": "Your artisan account is already verified."}), 400

    db = get_db()
    user_id = str(user_document["_id"])
    if db.verification_submissions.find_one({"user_id": user_id, "status": "pending"}):
        return (
            jsonify({"message": "You already have a verification request under review."}),
            409,
        )

    missing = [field for field in DOCUMENT_FIELDS if not request.files.get(field)]
    if missing:
        return (
            jsonify({"message": f"Please upload all documents. Missing: {', '.join(missing)}."}),
            400,
        )

    saved: List[Dict[str, str]] = []
    documents: Dict[str, str] = {}
    for field in DOCUMENT_FIELDS:
        entry, upload_error = save_media_file(
            request.files[field], f"verification/{user_id}", DOCUMENT_EXTENSIONS
        )
        if upload_error:
            remove_media(saved)
            return jsonify({"message": f"{field}: {upload_error}"}), 400
        saved.append(entry)
        documents[field] = entry["filename"]

    submission = {
        "user_id": user_id,
        "email": normalize_email(user_document.get("email")),
        "name": user_document.get("name", ""),
        "full_name": str(request.form.get("full_name") or "").strip(),
        "craft": str(request.form.get("craft") or "").strip(),
        "documents": documents,
        "status": "pending",
        "created_at": datetime.utcnow(),
    }
    result = db.verification_submissions.insert_one(submission)
    submission["_id"] = result.inserted_id

    record_audit_log(
        user_document.get("email"),
        "Submitted artisan verification",
        {"submission_id": str(result.inserted_id)},
    )

    return (
        jsonify(
            {
                "message": "Verification submitted. An admin will review your documents.",
                "submission": serialize_submission(submission),
            }
        ),
        201,
    )


@verification_bp.route("/api/verification", methods=["GET"])
@jwt_required()
def get_verification_status():
    user_document, permission_error = require_role()
    if permission_error:
        return permission_error

    latest = get_db().verification_submissions.find_one(
        {"user_id": str(user_document["_id"])}, sort=[("created_at", -1), ("_id", -1)]
    )
    return jsonify(
        {
            "is_verified_artisan": is_verified_artisan(user_document),
            "submission": serialize_submission(latest) if latest else None,
        }
    )


@verification_bp.route("/api/admin/verification", methods=["GET"])
@jwt_required()
def list_pending_submissions():
    _, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    cursor = get_db().verification_submissions.find({"status": "pending"}).sort(
        [("created_at", 1), ("_id", 1)]
    )
    return jsonify({"submissions": [serialize_submission(document) for document in cursor]})


@verification_bp.route("/api/admin/verification/<submission_id>/approve", methods=["POST"])
@jwt_required()
def approve_submission(submission_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    submission, load_error = load_pending_submission(submission_id)
    if load_error:
        return load_error

    db = get_db()
    applicant, applicant_error = load_document(db.users, submission.get("user_id"), "user")
    if applicant_error:
        return applicant_error

    db.users.update_one(
        {"_id": applicant["_id"]},
        {"$set": {"role": "artisan", "is_verified_artisan": True, "verified_at": datetime.utcnow()}},
    )
    updated_submission = finish_review(submission, admin_user, "approved")

    record_audit_log(
        admin_user.get("email"),
        "Approved artisan verification",
        {"submission_id": submission_id, "target_email": applicant.get("email")},
    )
    email_sent, _ = send_verification_decision_email(
        applicant.get("email"), applicant.get("name", ""), approved=True
    )

    return jsonify(
        {
            "message": "Artisan approved.",
            "submission": serialize_submission(updated_submission),
            "email_sent": email_sent,
        }
    )


@verification_bp.route("/api/admin/verification/<submission_id>/reject", methods=["POST"])
@jwt_required()
def reject_submission(submission_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    submission, load_error = load_pending_submission(submission_id)
    if load_error:
        return load_error

    payload = request.get_json(silent=True) or {}
    reason = str(payload.get("reason") or "").strip()
    updated_submission = finish_review(
        submission, admin_user, "rejected", {"rejection_reason": reason}
    )

    record_audit_log(
        admin_user.get("email"),
        "Rejected artisan verification",
        {"submission_id": submission_id, "target_email": submission.get("email")},
    )
    email_sent, _ = send_verification_decision_email(
        submission.get("email"), submission.get("name", ""), approved=False, reason=reason
    )

    return jsonify(
        {
            "message": "Submission rejected.",
            "submission": serialize_submission(updated_submission),
            "email_sent": email_sent,
        }
    )
