"""
Routes for agencies and their console view.

The console endpoint selects an agency for the signed-in administrator,
loads its dependent collections and returns the whole aggregate:
services, photos, reviews with their responses, the trust score
breakdown, and a per-collection error map for anything that failed to
load. The profile, verification, status and brochure endpoints apply a
change and return the refreshed aggregate the same way.
"""

from __future__ import annotations

import asyncio

from flask import Blueprint
from flask_jwt_extended import jwt_required

from .. import db
from ..errors import ValidationError
from ..models import User
from .common import console_services, current_actor, json_body, run_console, uploaded_file


agencies_bp = Blueprint("agencies", __name__)


@agencies_bp.route("/agencies", methods=["GET"])
@jwt_required()
def list_agencies() -> tuple[list[dict], int]:
    """List the agencies the current user may administer.

    Super admins see every agency; everyone else sees the agencies they own.
    """
    console = console_services().console_for(current_actor())
    agencies = asyncio.run(console.load_agencies())
    return [dict(row) for row in agencies], 200


@agencies_bp.route("/agencies", methods=["POST"])
@jwt_required()
def create_agency() -> tuple[dict, int]:
    """Create a new agency owned by the current user.

    Requires ``name``; accepts the other profile fields. New agencies
    start ``pending`` and unverified with a trust score of 0.
    """
    console = console_services().console_for(current_actor())
    agency = asyncio.run(console.create_agency(json_body()))
    return dict(agency), 201


@agencies_bp.route("/agencies/<int:agency_id>/console", methods=["GET"])
@jwt_required()
def get_console(agency_id: int) -> tuple[dict, int]:
    """Select an agency and return its full aggregate."""
    return run_console(agency_id), 200


@agencies_bp.route("/agencies/<int:agency_id>", methods=["PUT"])
@jwt_required()
def update_agency(agency_id: int) -> tuple[dict, int]:
    """Update an agency's profile fields.

    Derived and administrative fields (trust score, verification,
    status, owner) cannot be changed through this endpoint.
    """
    data = json_body()
    return run_console(agency_id, lambda console: console.update_agency(data)), 200


@agencies_bp.route("/agencies/<int:agency_id>/verification", methods=["PUT"])
@jwt_required()
def set_verification(agency_id: int) -> tuple[dict, int]:
    """Verify or unverify an agency. Super admins only; the score is recomputed."""
    data = json_body()
    if not isinstance(data.get("is_verified"), bool):
        raise ValidationError("is_verified must be a boolean.", {"is_verified": ["Not a valid boolean."]})
    return run_console(agency_id, lambda console: console.set_verification(data["is_verified"])), 200


@agencies_bp.route("/agencies/<int:agency_id>/status", methods=["PUT"])
@jwt_required()
def set_status(agency_id: int) -> tuple[dict, int]:
    """Approve or reject an agency listing. Super admins only.

    Approving notifies the owner by e-mail.
    """
    data = json_body()
    status = data.get("status")

    async def intent(console):
        owner_id = console.state.agency.get("owner_id")
        owner = db.session.get(User, owner_id) if owner_id else None
        await console.set_agency_status(
            status,
            owner_email=owner.email if owner else None,
            owner_name=owner.full_name if owner else None,
        )

    return run_console(agency_id, intent), 200


@agencies_bp.route("/agencies/<int:agency_id>/trust-score", methods=["POST"])
@jwt_required()
def recalculate_trust_score(agency_id: int) -> tuple[dict, int]:
    """Recompute and persist the agency's trust score."""
    return run_console(agency_id, lambda console: console.recalculate_trust_score()), 200


@agencies_bp.route("/agencies/<int:agency_id>/brochure", methods=["POST"])
@jwt_required()
def upload_brochure(agency_id: int) -> tuple[dict, int]:
    """Attach a PDF brochure (multipart ``file``, at most 10MB)."""
    data, filename, content_type = uploaded_file()
    return run_console(
        agency_id, lambda console: console.upload_brochure(data, filename, content_type)
    ), 200


@agencies_bp.route("/agencies/<int:agency_id>/brochure", methods=["DELETE"])
@jwt_required()
def delete_brochure(agency_id: int) -> tuple[dict, int]:
    """Remove the agency's brochure and its stored file."""
    return run_console(agency_id, lambda console: console.delete_brochure()), 200
