"""
Flask CLI commands for maintaining the Agency Console.

``flask recalculate-trust-scores`` walks every agency (or the ones given
with ``--agency-id``), loads its aggregate the same way the console does
and persists the recomputed score. It is useful after bulk imports or
manual database edits that bypassed the console.
"""

from __future__ import annotations

import asyncio
import logging

import click
from flask import Flask, current_app

from .errors import ConsoleError
from .gateway import AGENCIES, REVIEWS, SERVICES
from .models import Role
from .services import Actor
from .services.state import TRUST_SCORE

logger = logging.getLogger(__name__)

# acts with super admin rights; never stamped on any row
MAINTENANCE_ACTOR = Actor(user_id=0, role=Role.SUPER_ADMIN, name="maintenance")
# a failure in any of these means the stored score was not refreshed
SCORE_INPUTS = (SERVICES, REVIEWS, TRUST_SCORE)


async def recalculate_all(services, agency_ids=()) -> list[tuple[int, dict]]:
    """Recompute the trust score of each agency.

    Returns ``(agency_id, snapshot)`` pairs; the snapshot's ``errors``
    tell whether the score could be persisted.
    """
    console = services.console_for(MAINTENANCE_ACTOR)
    if not agency_ids:
        rows = (await services.gateway.fetch_collection(AGENCIES, order_by="id")).unwrap()
        agency_ids = [row["id"] for row in rows]
    outcomes = []
    for agency_id in agency_ids:
        try:
            await console.select_agency(agency_id)
        except ConsoleError as exc:
            logger.warning("Skipping agency %s: %s", agency_id, exc.message)
            outcomes.append((agency_id, {"errors": {"agency": exc.payload()}, "agency": None}))
            continue
        outcomes.append((agency_id, console.snapshot()))
    return outcomes


def register_commands(app: Flask) -> None:
    """Attach the console's CLI commands to ``app``."""

    @app.cli.command("recalculate-trust-scores")
    @click.option("--agency-id", "agency_ids", type=int, multiple=True, help="Only these agencies.")
    def recalculate_trust_scores(agency_ids: tuple[int, ...]) -> None:
        """Recompute and persist agency trust scores."""
        services = current_app.extensions["agency_console"]
        failed = 0
        for agency_id, snapshot in asyncio.run(recalculate_all(services, agency_ids)):
            problems = ", ".join(sorted(set(snapshot["errors"]) & set(SCORE_INPUTS + ("agency",))))
            if problems:
                failed += 1
                click.echo(f"agency {agency_id}: not updated ({problems})", err=True)
            else:
                click.echo(f"agency {agency_id}: trust score {snapshot['agency']['trust_score']}")
        if failed:
            raise click.ClickException(f"{failed} agencies could not be updated.")
