import os
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import urljoin
from uuid import uuid4

from flask import Blueprint, current_app, request, send_from_directory
from werkzeug.utils import secure_filename

media_bp = Blueprint("media", __name__)

IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}
VIDEO_EXTENSIONS = {"mp4", "webm", "mov"}
PRODUCT_MEDIA_EXTENSIONS = IMAGE_EXTENSIONS | VIDEO_EXTENSIONS
DOCUMENT_EXTENSIONS = IMAGE_EXTENSIONS | {"pdf"}


def file_extension(filename: str) -> str:
    return os.path.splitext(filename)[1].lower().lstrip(".")


def media_type_for(filename: str) -> str:
    extension = file_extension(filename)
    if extension in VIDEO_EXTENSIONS:
        return "video"
    if extension == "pdf":
        return "document"
    return "image"


def upload_root() -> str:
    return current_app.config["UPLOAD_FOLDER"]


def save_media_file(upload, folder: str, allowed_extensions):
    if not upload or not getattr(upload, "filename", ""):
        return None, "A file is required."

    original_filename = secure_filename(upload.filename)
    if not original_filename:
        return None, "Please choose a valid file name."

    extension = file_extension(original_filename)
    if not extension or extension not in allowed_extensions:
        readable = ", ".join(sorted(ext.upper() for ext in allowed_extensions))
        return None, f"Unsupported file format. Upload {readable} files."

    destination_folder = os.path.join(upload_root(), folder)
    os.makedirs(destination_folder, exist_ok=True)
    stored_name = f"{uuid4().hex}.{extension}"

    try:
        upload.save(os.path.join(destination_folder, stored_name))
    except OSError as exc:
        current_app.logger.error("Unable to store upload %s: %s", original_filename, exc)
        return None, "We could not store the uploaded file. Please try again."

    relative_path = f"{folder}/{stored_name}" if folder else stored_name
    return {"filename": relative_path, "type": media_type_for(stored_name)}, None


def save_media_files(
    uploads: Iterable, folder: str, allowed_extensions=PRODUCT_MEDIA_EXTENSIONS
) -> Tuple[List[Dict[str, str]], Optional[str]]:
    """Store a batch of uploads in order; on any failure nothing is kept."""
    saved: List[Dict[str, str]] = []
    for upload in uploads or []:
        if not upload or not getattr(upload, "filename", ""):
            continue
        entry, error = save_media_file(upload, folder, allowed_extensions)
        if error:
            remove_media(saved)
            return [], error
        saved.append(entry)
    return saved, None


def remove_media(entries):
    if not entries:
        return

    if isinstance(entries, dict):
        entries = [entries]

    for entry in entries:
        filename = entry.get("filename") if isinstance(entry, dict) else entry
        if not filename:
            continue
        target = os.path.join(upload_root(), str(filename))
        try:
            os.remove(target)
        except FileNotFoundError:
            continue
        except OSError as exc:
            current_app.logger.warning("Unable to remove media %s: %s", filename, exc)


def media_url(filename: Optional[str]) -> str:
    if not filename:
        return ""
    sanitized = str(filename).strip().lstrip("/")
    if not sanitized:
        return ""
    return urljoin(request.host_url, f"uploads/{sanitized}")


def serialize_media(entries) -> List[Dict[str, str]]:
    serialized: List[Dict[str, str]] = []
    if not isinstance(entries, list):
        return serialized
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("filename"):
            continue
        serialized.append(
            {
                "url": media_url(entry["filename"]),
                "type": entry.get("type") or media_type_for(entry["filename"]),
                "filename": entry["filename"],
            }
        )
    return serialized


def collect_uploads(field_name: str) -> List:
    if not request.files:
        return []
    return [upload for upload in request.files.getlist(field_name) if upload]


@media_bp.route("/uploads/<path:filename>")
def serve_uploaded_file(filename: str):
    return send_from_directory(upload_root(), filename)
