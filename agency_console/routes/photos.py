"""
Routes for agency photos.

Photos are uploaded as multipart form data (``file`` and optional
``caption``), validated as images of at most 5MB, stored, and attached
to the agency. The first photo of an agency becomes its cover.
"""

from __future__ import annotations

from flask import Blueprint, request
from flask_jwt_extended import jwt_required

from .common import run_console, uploaded_file


photos_bp = Blueprint("photos", __name__)


@photos_bp.route("/agencies/<int:agency_id>/photos", methods=["POST"])
@jwt_required()
def add_photo(agency_id: int) -> tuple[dict, int]:
    """Upload a photo and attach it to the agency."""
    data, filename, content_type = uploaded_file()
    caption = request.form.get("caption")
    return run_console(
        agency_id, lambda console: console.add_photo(data, filename, content_type, caption)
    ), 201


@photos_bp.route("/agencies/<int:agency_id>/photos/<int:photo_id>", methods=["DELETE"])
@jwt_required()
def delete_photo(agency_id: int, photo_id: int) -> tuple[dict, int]:
    """Delete a photo together with its stored file."""
    return run_console(agency_id, lambda console: console.delete_photo(photo_id)), 200


@photos_bp.route("/agencies/<int:agency_id>/photos/<int:photo_id>/cover", methods=["PUT"])
@jwt_required()
def set_cover_photo(agency_id: int, photo_id: int) -> tuple[dict, int]:
    """Make a photo the agency's only cover photo.

    If the cover could be cleared but not set, a 502 is returned and the
    agency has no cover until the request is retried.
    """
    return run_console(agency_id, lambda console: console.set_cover_photo(photo_id)), 200
