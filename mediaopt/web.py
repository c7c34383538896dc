from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from pathlib import Path
from typing import List, Optional

from flask import Blueprint, Flask, abort, current_app, jsonify, request, send_from_directory
from werkzeug.utils import secure_filename

from .batch import run_batch
from .engine import FORMAT_TO_EXT, SUPPORTED_EXTS
from .logs import configure_logging, error_response
from .report import optimize_payload, stats_payload
from .settings import PipelineConfig
from .stats import run_stats
from .upload import SavedUpload, optimize_uploads_after_save

logger = logging.getLogger(__name__)

# Authorization is applied in front of these routes by the hosting app.
admin_images_bp = Blueprint("admin_images", __name__, url_prefix="/admin/images")

# Anything the pipeline can read or write; other files are never served back.
SERVED_EXTS = SUPPORTED_EXTS | set(FORMAT_TO_EXT.values())


def _state() -> dict:
    return current_app.extensions["mediaopt"]


def _config() -> PipelineConfig:
    return _state()["config"]


@admin_images_bp.route("/optimize", methods=["POST"])
def optimize_images():
    config = _config()
    state = _state()

    cancel_event = threading.Event()
    with state["lock"]:
        state["cancel_event"] = cancel_event

    logger.info("Batch optimization requested, root=%s", config.uploads_root)
    try:
        summary = run_batch(config, cancel_event=cancel_event)
    except OSError as e:
        logger.error("Error optimizing images: %s", e)
        return error_response(f"Error optimizing images: {e}", 500)
    finally:
        with state["lock"]:
            if state["cancel_event"] is cancel_event:
                state["cancel_event"] = None

    return jsonify(optimize_payload(summary))


@admin_images_bp.route("/optimize/cancel", methods=["POST"])
def cancel_optimize():
    state = _state()
    with state["lock"]:
        event: Optional[threading.Event] = state["cancel_event"]
        if event is not None:
            event.set()

    logger.info("Batch cancel requested (running=%s)", event is not None)
    return jsonify({"success": True, "cancelled": event is not None})


@admin_images_bp.route("/stats", methods=["GET"])
def image_stats():
    try:
        summary = run_stats(_config())
    except OSError as e:
        logger.error("Error reading image stats: %s", e)
        return error_response(f"Error reading image stats: {e}", 500)

    return jsonify(stats_payload(summary))


def _is_image_upload(file) -> bool:
    suffix = Path(file.filename).suffix.lower()
    return suffix in SUPPORTED_EXTS and (file.mimetype or "").startswith("image/")


@admin_images_bp.route("/upload/<category>", methods=["POST"])
def upload_images(category: str):
    config = _config()
    if category not in config.subdirectories:
        return error_response(f"Unknown upload category: {category}", 404)

    files = [f for key in request.files for f in request.files.getlist(key) if f and f.filename]
    if not files:
        return error_response("No image file provided.", 400)

    # Reject the whole request before anything touches disk.
    for file in files:
        if not _is_image_upload(file):
            logger.warning("Rejected upload %s (%s)", file.filename, file.mimetype)
            return error_response(f"Not an image file: {file.filename}", 400)

    dest_dir = config.uploads_root / category
    dest_dir.mkdir(parents=True, exist_ok=True)

    saved: List[SavedUpload] = []
    for file in files:
        original_name = secure_filename(file.filename) or "upload"
        stem, ext = Path(original_name).stem, Path(original_name).suffix.lower()
        filename = f"{stem}-{uuid.uuid4().hex[:12]}{ext}"
        path = dest_dir / filename
        file.save(path)
        saved.append(SavedUpload(path=path, filename=filename, size=path.stat().st_size, original_name=file.filename))
        logger.info("Saved upload %s as %s", file.filename, path)

    asyncio.run(optimize_uploads_after_save(saved, config.upload_options))

    prefix = config.upload_url_prefix.rstrip("/")
    body = []
    for u in saved:
        entry = {
            "url": f"{prefix}/{category}/{u.filename}",
            "filename": u.filename,
            "size": u.size,
            "originalName": u.original_name,
        }
        if u.image_info is not None:
            # Points at the pre-transform file, which no longer exists once converted.
            entry["fallbackUrl"] = f"{prefix}/{category}/{u.image_info.original_path.name}"
        body.append(entry)

    return jsonify({"success": True, "files": body})


def create_app(config: Optional[PipelineConfig] = None) -> Flask:
    config = config or PipelineConfig.from_env()
    configure_logging(config.log_level, config.log_file)

    app = Flask(__name__)
    app.extensions["mediaopt"] = {
        "config": config,
        "cancel_event": None,
        "lock": threading.Lock(),
    }
    app.register_blueprint(admin_images_bp)

    uploads_root = Path(config.uploads_root).resolve()

    def serve_upload(filename: str):
        if Path(filename).suffix.lower() not in SERVED_EXTS:
            abort(404)
        return send_from_directory(uploads_root, filename)

    app.add_url_rule(f"{config.upload_url_prefix.rstrip('/')}/<path:filename>", "uploads", serve_upload)
    return app
