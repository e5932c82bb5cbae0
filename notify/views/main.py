"""
Operational routes: health check and stored file downloads.
"""

from flask import Blueprint, jsonify, send_file

from notify import get_services
from notify.models.entities import utcnow
from notify.services.blob_storage import BlobStorageError
from notify.utils.logging_config import get_logger

main_bp = Blueprint("main", __name__)


@main_bp.route("/health")
def health_check():
    """Health check endpoint"""
    services = get_services()
    healthy = services.store.health_check()
    body = {
        "status": "healthy" if healthy else "unhealthy",
        "store": "connected" if healthy else "disconnected",
        "providers": {
            "payment": services.gateway.configured,
            "email": services.email_client.configured,
            "messaging": services.messaging_client.configured,
            "text_generation": services.text_client.configured,
        },
        "timestamp": utcnow().isoformat(),
    }
    return jsonify(body), 200 if healthy else 500


@main_bp.route("/files/<path:path>")
def stored_file(path):
    """Serve a PDF or evidence file from the blob store"""
    blobs = get_services().blobs
    try:
        if not blobs.exists(path):
            return jsonify({"success": False, "error": "not_found"}), 404
        return send_file(blobs.local_path(path))
    except BlobStorageError as e:
        get_logger("views.files").warning(
            "Rejected file path", extra={"event": "file_path_rejected", "path": path, "error": str(e)}
        )
        return jsonify({"success": False, "error": "not_found"}), 404
