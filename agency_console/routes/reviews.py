"""
Routes for customer reviews and administrator responses.

Any signed-in user may review an agency; the review starts ``pending``
and does not affect the trust score until an administrator approves
it. Deciding a review recomputes the score and notifies the author.
Each review may carry a single administrator response.
"""

from __future__ import annotations

import asyncio

from flask import Blueprint
from flask_jwt_extended import jwt_required

from .common import console_services, current_actor, json_body, run_console


reviews_bp = Blueprint("reviews", __name__)


@reviews_bp.route("/agencies/<int:agency_id>/reviews", methods=["POST"])
@jwt_required()
def submit_review(agency_id: int) -> tuple[dict, int]:
    """Submit a review. Requires ``rating`` (1-5) and ``content``."""
    data = json_body()
    coordinator = console_services().coordinator()
    review = asyncio.run(
        coordinator.submit_review(agency_id, current_actor(), data.get("rating"), data.get("content"))
    )
    return review, 201


@reviews_bp.route("/agencies/<int:agency_id>/reviews/<int:review_id>/status", methods=["PUT"])
@jwt_required()
def decide_review(agency_id: int, review_id: int) -> tuple[dict, int]:
    """Approve or reject a review. Accepts ``status`` of ``approved`` or ``rejected``."""
    status = json_body().get("status")
    return run_console(agency_id, lambda console: console.decide_review(review_id, status)), 200


@reviews_bp.route("/agencies/<int:agency_id>/reviews/<int:review_id>/response", methods=["POST"])
@jwt_required()
def respond_to_review(agency_id: int, review_id: int) -> tuple[dict, int]:
    """Respond to a review. Returns 409 if the review already has a response."""
    content = json_body().get("content")
    return run_console(agency_id, lambda console: console.respond_to_review(review_id, content)), 201
