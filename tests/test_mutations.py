"""Tests for the mutation coordinator and its collaborators (storage, notifications)."""
import asyncio

import pytest
import requests

from agency_console.errors import NotFoundError, PermissionDeniedError, ValidationError
from agency_console.gateway import AGENCIES, PHOTOS, REVIEWS, SERVICES
from agency_console.services import Actor, MutationCoordinator
from agency_console.services.notifications import Notifier, render
from agency_console.services.storage import BROCHURE_CONSTRAINTS, PHOTO_CONSTRAINTS

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
PDF = b"%PDF-1.4\n" + b"\x00" * 64


@pytest.fixture
def coordinator(gateway, notifier, storage) -> MutationCoordinator:
    return MutationCoordinator(gateway, notifier, storage, admin_email="admin@example.com")


def stored_files(storage, bucket):
    folder = storage.root / bucket
    return sorted(path.name for path in folder.iterdir()) if folder.exists() else []


def test_first_photo_becomes_the_cover(backend, coordinator, storage, agency) -> None:
    async def scenario():
        first = await coordinator.add_photo(agency["id"], PNG, "front.png", "image/png", caption="Front")
        second = await coordinator.add_photo(
            agency["id"], PNG, "back.png", "image/png", existing=first.result.value
        )
        return second.result.value

    photos = asyncio.run(scenario())

    assert [(photo["caption"], photo["is_cover"]) for photo in photos] == [("Front", True), ("back.png", False)]
    assert photos[0]["url"].startswith("/uploads/agency-photos/")
    assert len(stored_files(storage, PHOTO_CONSTRAINTS.bucket)) == 2


def test_photo_upload_is_validated_before_anything_is_stored(backend, coordinator, storage, agency) -> None:
    with pytest.raises(ValidationError):
        asyncio.run(coordinator.add_photo(agency["id"], PDF, "doc.pdf", "application/pdf"))
    with pytest.raises(ValidationError):
        asyncio.run(coordinator.add_photo(agency["id"], b"x" * (5 * 1024 * 1024 + 1), "big.png", "image/png"))

    assert backend.count("insert", PHOTOS) == 0
    assert stored_files(storage, PHOTO_CONSTRAINTS.bucket) == []


def test_failed_photo_insert_discards_the_upload(backend, coordinator, storage, agency) -> None:
    backend.fail("insert", PHOTOS, PermissionDeniedError("denied"))

    with pytest.raises(PermissionDeniedError):
        asyncio.run(coordinator.add_photo(agency["id"], PNG, "front.png", "image/png"))

    assert stored_files(storage, PHOTO_CONSTRAINTS.bucket) == []


def test_deleting_a_photo_removes_its_file(backend, coordinator, storage, agency) -> None:
    async def scenario():
        added = await coordinator.add_photo(agency["id"], PNG, "front.png", "image/png")
        return await coordinator.delete_photo(agency["id"], added.result.value[0])

    refresh = asyncio.run(scenario())

    assert refresh.result.value == []
    assert stored_files(storage, PHOTO_CONSTRAINTS.bucket) == []


def test_replacing_a_brochure_deletes_the_old_file(backend, coordinator, storage, agency) -> None:
    async def scenario():
        first = await coordinator.upload_brochure(agency, PDF, "brochure.pdf", "application/pdf")
        second = await coordinator.upload_brochure(first, PDF, "brochure-2024.pdf", "application/pdf")
        return first, second

    first, second = asyncio.run(scenario())

    assert first["brochure_url"] != second["brochure_url"]
    assert stored_files(storage, BROCHURE_CONSTRAINTS.bucket) == [second["brochure_url"].rsplit("/", 1)[-1]]
    assert backend.row(AGENCIES, agency["id"])["brochure_url"] == second["brochure_url"]


def test_brochures_must_be_pdfs(coordinator, agency) -> None:
    with pytest.raises(ValidationError) as excinfo:
        asyncio.run(coordinator.upload_brochure(agency, PNG, "brochure.png", "image/png"))
    assert excinfo.value.message == "Please upload a PDF file."


def test_deleting_a_missing_brochure(coordinator, agency) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(coordinator.delete_brochure(agency))


def test_deleting_an_already_deleted_service(backend, coordinator, agency) -> None:
    service_id = backend.tables[SERVICES][0]["id"]

    async def scenario():
        await coordinator.delete_service(agency["id"], service_id)
        return await coordinator.delete_service(agency["id"], service_id)

    refresh = asyncio.run(scenario())

    assert refresh.result.ok
    assert [row["name"] for row in refresh.result.value] == ["Respite care"]


def test_service_name_is_required(backend, coordinator, agency) -> None:
    with pytest.raises(ValidationError):
        asyncio.run(coordinator.add_service(agency["id"], "  <i></i> "))
    assert backend.count("insert", SERVICES) == 0


def test_submitted_reviews_start_pending(backend, coordinator, agency) -> None:
    reviewer = Actor(user_id=9, email="reviewer@example.com")

    review = asyncio.run(coordinator.submit_review(agency["id"], reviewer, "5", "<p>Wonderful</p>"))

    assert review["status"] == "pending"
    assert review["rating"] == 5
    assert review["content"] == "Wonderful"
    assert review["user_id"] == 9


@pytest.mark.parametrize("rating", [0, 6, "five", None])
def test_review_rating_must_be_between_1_and_5(backend, coordinator, agency, rating) -> None:
    with pytest.raises(ValidationError):
        asyncio.run(coordinator.submit_review(agency["id"], Actor(user_id=9), rating, "Fine"))
    assert backend.count("insert", REVIEWS) == 0


def test_new_agencies_notify_the_administrators(backend, coordinator, notifier) -> None:
    creator = Actor(user_id=4)

    agency = asyncio.run(
        coordinator.create_agency(creator, {"name": " Bright Futures ", "location": "Ogdenville", "website": ""})
    )

    assert agency["name"] == "Bright Futures"
    assert agency["website"] is None
    assert agency["owner_id"] == 4
    assert agency["status"] == "pending"
    assert agency["trust_score"] == 0
    assert notifier.sent == [
        (
            "new_agency",
            "admin@example.com",
            {"agency_name": "Bright Futures", "location": "Ogdenville", "contact_email": ""},
        )
    ]


def test_derived_fields_cannot_be_edited(coordinator, agency) -> None:
    with pytest.raises(ValidationError) as excinfo:
        asyncio.run(coordinator.update_agency(agency["id"], {"trust_score": 100, "name": "x"}))
    assert set(excinfo.value.fields) == {"trust_score"}


def test_approving_an_agency_notifies_its_owner(backend, coordinator, notifier) -> None:
    agency = backend.seed(AGENCIES, name="Harbour Nursing", owner_id=2, status="pending", trust_score=0)

    updated = asyncio.run(
        coordinator.set_agency_status(agency, "approved", owner_email="owner@example.com", owner_name="Olive")
    )

    assert updated["status"] == "approved"
    assert notifier.sent == [
        ("agency_approved", "owner@example.com", {"owner_name": "Olive", "agency_name": "Harbour Nursing"})
    ]


def test_notification_failures_do_not_abort_the_operation(backend, gateway, storage) -> None:
    class BrokenNotifier:
        def notify(self, template, to, data):
            raise RuntimeError("queue is full")

    coordinator = MutationCoordinator(gateway, BrokenNotifier(), storage, admin_email="admin@example.com")

    agency = asyncio.run(coordinator.create_agency(Actor(user_id=4), {"name": "Bright Futures"}))

    assert backend.row(AGENCIES, agency["id"])["name"] == "Bright Futures"


# -- notifier -----------------------------------------------------------------


def test_templates_render_with_missing_values_blank() -> None:
    subject, body = render("review_approved", {"agency_name": "Sunrise Care"})
    assert subject == "Your Review Has Been Approved"
    assert "Your review for Sunrise Care has been approved" in body
    assert body.startswith("Dear ,")


def test_notifier_without_endpoint_only_logs() -> None:
    notifier = Notifier(url=None)
    assert notifier.notify("new_agency", "admin@example.com", {"agency_name": "x"}) is None
    assert Notifier(url="http://notify.invalid").notify("new_agency", None, {}) is None


def test_notifier_posts_the_rendered_message(monkeypatch) -> None:
    sent = []

    class Response:
        def raise_for_status(self) -> None:
            return None

    def fake_post(url, json=None, headers=None, timeout=None):
        sent.append((url, json, headers))
        return Response()

    monkeypatch.setattr(requests, "post", fake_post)
    notifier = Notifier(url="http://notify.example.com/send", token="secret")

    future = notifier.notify("agency_approved", "owner@example.com", {"owner_name": "Olive", "agency_name": "Sunrise"})

    assert future.result(timeout=5) is True
    url, payload, headers = sent[0]
    assert url == "http://notify.example.com/send"
    assert payload["to"] == "owner@example.com"
    assert payload["subject"] == "Your Agency Listing Has Been Approved"
    assert headers == {"Authorization": "Bearer secret"}


def test_notifier_swallows_delivery_errors(monkeypatch) -> None:
    def failing_post(*args, **kwargs):
        raise requests.ConnectionError("unreachable")

    monkeypatch.setattr(requests, "post", failing_post)
    notifier = Notifier(url="http://notify.example.com/send")

    future = notifier.notify("review_rejected", "reviewer@example.com", {})

    assert future.result(timeout=5) is False


def test_notifier_shutdown_waits_for_queued_messages(monkeypatch) -> None:
    sent = []

    class Response:
        def raise_for_status(self) -> None:
            return None

    def fake_post(url, json=None, headers=None, timeout=None):
        sent.append(json["to"])
        return Response()

    monkeypatch.setattr(requests, "post", fake_post)
    notifier = Notifier(url="http://notify.example.com/send")

    future = notifier.notify("review_approved", "reviewer@example.com", {"agency_name": "Sunrise"})
    notifier.shutdown()

    assert future.done()
    assert sent == ["reviewer@example.com"]
