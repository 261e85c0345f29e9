"""Seed script for initial data.

Running this script will populate the database with demonstration
accounts (a super admin, an agency admin and a reviewer) and two
agencies with services and reviews, then compute their trust scores
through the console so the cached scores match the seeded data. It can
be executed with ``python -m seed.seed`` from the repository root.
"""
from __future__ import annotations

import asyncio

from agency_console import create_app, db
from agency_console.commands import recalculate_all
from agency_console.models import (
    Agency,
    AgencyService,
    AgencyStatus,
    Review,
    ReviewStatus,
    Role,
    User,
)


def run_seeds() -> None:
    """Insert demo users, agencies, services and reviews into the database."""
    app = create_app()
    with app.app_context():
        db.create_all()
        admin = User(email="admin@example.com", full_name="Site Admin", role=Role.SUPER_ADMIN)
        admin.set_password("password")
        owner = User(email="owner@example.com", full_name="Agency Owner", role=Role.AGENCY_ADMIN)
        owner.set_password("password")
        reviewer = User(email="reviewer@example.com", full_name="Demo Reviewer", role=Role.USER)
        reviewer.set_password("password")
        db.session.add_all([admin, owner, reviewer])
        db.session.flush()

        care = Agency(
            name="Sunrise Care",
            location="Springfield",
            description="Home care and companionship for older adults.",
            contact_email="hello@sunrise.example.com",
            status=AgencyStatus.APPROVED,
            is_verified=True,
            owner=owner,
        )
        care.services = [
            AgencyService(name="Home care", description="Daily living support at home"),
            AgencyService(name="Respite care", description="Short breaks for family carers"),
            AgencyService(name="Companionship"),
        ]
        care.reviews = [
            Review(author=reviewer, rating=5, content="Kind and reliable staff.", status=ReviewStatus.APPROVED),
            Review(author=reviewer, rating=4, content="Good communication.", status=ReviewStatus.APPROVED),
            Review(author=reviewer, rating=1, content="Awaiting moderation.", status=ReviewStatus.PENDING),
        ]
        nursing = Agency(
            name="Harbour Nursing",
            location="Shelbyville",
            description="Registered nurses for short and long placements.",
            status=AgencyStatus.PENDING,
            owner=owner,
        )
        nursing.services = [AgencyService(name="Night nursing")]
        db.session.add_all([care, nursing])
        db.session.commit()

        for agency_id, snapshot in asyncio.run(recalculate_all(app.extensions["agency_console"])):
            print(f"Agency {agency_id}: trust score {snapshot['agency']['trust_score']}")
        print("Seed data inserted successfully.")


if __name__ == "__main__":
    run_seeds()
