"""
Helpers shared by the console blueprints.

Route handlers stay synchronous like the rest of the API; each request
builds a fresh ``AdminConsole`` for the signed-in user and drives it
with ``asyncio.run``, selecting the agency (which loads its aggregate)
before applying the requested change.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from flask import current_app, request
from flask_jwt_extended import get_jwt, get_jwt_identity

from ..errors import ValidationError
from ..models import Role
from ..services import Actor, AdminConsole, ConsoleServices


def console_services() -> ConsoleServices:
    return current_app.extensions["agency_console"]


def current_actor() -> Actor:
    """Build the acting user from the JWT identity and claims."""
    claims = get_jwt()
    try:
        role = Role(claims.get("role", Role.USER.value))
    except ValueError:
        role = Role.USER
    return Actor(user_id=int(get_jwt_identity()), role=role, email=claims.get("email"))


def run_console(
    agency_id: int,
    intent: Optional[Callable[[AdminConsole], Awaitable[object]]] = None,
) -> dict:
    """Select ``agency_id``, optionally apply ``intent``, and return the snapshot."""
    console = console_services().console_for(current_actor())

    async def flow() -> dict:
        await console.select_agency(agency_id)
        if intent is not None:
            await intent(console)
        return console.snapshot()

    return asyncio.run(flow())


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def uploaded_file(field: str = "file") -> tuple[bytes, str, str]:
    """Return ``(data, filename, content_type)`` of a multipart upload."""
    upload = request.files.get(field)
    if upload is None or not upload.filename:
        raise ValidationError(f"{field} is required.", {field: ["No file uploaded."]})
    return upload.read(), upload.filename, upload.mimetype or ""
