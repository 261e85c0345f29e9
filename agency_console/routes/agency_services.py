"""
Routes for the services an agency offers.

Each service counts towards the agency's trust score, so adding or
deleting one recomputes and persists the score before the refreshed
aggregate is returned.
"""

from __future__ import annotations

from flask import Blueprint
from flask_jwt_extended import jwt_required

from .common import json_body, run_console


services_bp = Blueprint("agency_services", __name__)


@services_bp.route("/agencies/<int:agency_id>/services", methods=["POST"])
@jwt_required()
def add_service(agency_id: int) -> tuple[dict, int]:
    """Add a service. Requires ``name``; ``description`` is optional."""
    data = json_body()
    return run_console(
        agency_id, lambda console: console.add_service(data.get("name"), data.get("description"))
    ), 201


@services_bp.route("/agencies/<int:agency_id>/services/<int:service_id>", methods=["DELETE"])
@jwt_required()
def delete_service(agency_id: int, service_id: int) -> tuple[dict, int]:
    """Delete a service. Deleting one that is already gone is not an error."""
    return run_console(agency_id, lambda console: console.delete_service(service_id)), 200
