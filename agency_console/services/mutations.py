"""Mutation coordinator.

The only component that writes remote state. Every operation follows
the same shape:

1. validate locally and reject invariant violations before any remote
   call;
2. apply the write through the gateway, raising the gateway's error if
   it fails (local state is then left untouched by the caller);
3. on success, re-fetch the affected collection and hand it back as a
   ``Refresh`` for the console to apply.

The local snapshot is never patched by hand; it only ever holds what
was read back from storage.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence

from ..errors import (
    ConsoleError,
    CoverPhotoTransitionError,
    NotFoundError,
    ResponseAlreadyExistsError,
    ValidationError,
)
from ..gateway import AGENCIES, PHOTOS, RESPONSES, REVIEWS, SERVICES, RemoteDataGateway, Result
from ..util.sanitization import clean_optional, strip_tags
from .identity import Actor
from .loader import fetch_dependent
from .notifications import Notifier
from .storage import BROCHURE_CONSTRAINTS, PHOTO_CONSTRAINTS, AssetStorage, validate_upload

logger = logging.getLogger(__name__)

AGENCY_PROFILE_FIELDS = (
    "name",
    "location",
    "description",
    "contact_phone",
    "contact_email",
    "website",
    "business_hours",
    "image_url",
)
REVIEW_DECISIONS = ("approved", "rejected")
AGENCY_DECISIONS = ("pending", "approved", "rejected")


@dataclass(frozen=True)
class Refresh:
    """A freshly fetched collection to be applied to the snapshot."""
    collection: str
    result: Result


def _profile_patch(values: Mapping[str, Any]) -> dict:
    unknown = sorted(set(values) - set(AGENCY_PROFILE_FIELDS))
    if unknown:
        raise ValidationError(
            "Only profile fields can be updated.", {name: ["Not an editable field."] for name in unknown}
        )
    patch = {}
    for name in AGENCY_PROFILE_FIELDS:
        if name in values:
            value = values[name]
            patch[name] = (value.strip() or None) if isinstance(value, str) else value
    return patch


def _require_text(value: Optional[str], field: str) -> str:
    cleaned = strip_tags(value or "")
    if not cleaned:
        raise ValidationError(f"{field} is required.", {field: ["Missing data for required field."]})
    return cleaned


class MutationCoordinator:
    """Applies writes through the gateway and re-syncs what they touched."""

    def __init__(
        self,
        gateway: RemoteDataGateway,
        notifier: Optional[Notifier] = None,
        storage: Optional[AssetStorage] = None,
        admin_email: Optional[str] = None,
    ) -> None:
        self.gateway = gateway
        self.notifier = notifier
        self.storage = storage
        self.admin_email = admin_email

    async def refresh(self, collection: str, agency_id: int, review_ids: Sequence[int] = ()) -> Refresh:
        return Refresh(collection, await fetch_dependent(self.gateway, collection, agency_id, review_ids))

    def _notify(self, template: str, to: Optional[str], data: Mapping[str, Any]) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(template, to, data)
        except Exception:  # notifications never abort the operation
            logger.exception("Could not queue %s notification", template)

    def _storage(self) -> AssetStorage:
        if self.storage is None:
            raise ConsoleError("Asset storage is not configured.")
        return self.storage

    def _discard_asset(self, url: Optional[str]) -> None:
        if not url or self.storage is None:
            return
        try:
            self.storage.delete(url)
        except (OSError, ValidationError) as exc:
            logger.warning("Could not delete asset %s: %s", url, exc)

    # -- agencies ---------------------------------------------------------

    async def create_agency(self, actor: Actor, values: Mapping[str, Any]) -> dict:
        """Create an agency owned by ``actor`` and tell the administrators about it."""
        patch = _profile_patch(values)
        patch["name"] = _require_text(patch.get("name"), "name")
        patch.update(owner_id=actor.user_id, status="pending", is_verified=False, trust_score=0)
        agency = (await self.gateway.insert(AGENCIES, patch)).unwrap()
        logger.info("Agency %s created by user %s", agency["id"], actor.user_id)
        self._notify(
            "new_agency",
            self.admin_email,
            {
                "agency_name": agency["name"],
                "location": agency.get("location") or "",
                "contact_email": agency.get("contact_email") or "",
            },
        )
        return agency

    async def update_agency(self, agency_id: int, values: Mapping[str, Any]) -> dict:
        patch = _profile_patch(values)
        if "name" in patch:
            patch["name"] = _require_text(patch["name"], "name")
        if patch:
            (await self.gateway.update(AGENCIES, agency_id, patch)).unwrap()
        return (await self.gateway.fetch_one(AGENCIES, agency_id)).unwrap()

    async def set_verification(self, agency_id: int, is_verified: bool) -> dict:
        (await self.gateway.update(AGENCIES, agency_id, {"is_verified": bool(is_verified)})).unwrap()
        return (await self.gateway.fetch_one(AGENCIES, agency_id)).unwrap()

    async def set_agency_status(
        self,
        agency: Mapping[str, Any],
        status: str,
        owner_email: Optional[str] = None,
        owner_name: Optional[str] = None,
    ) -> dict:
        if status not in AGENCY_DECISIONS:
            raise ValidationError("Invalid status.", {"status": [f"Must be one of {', '.join(AGENCY_DECISIONS)}."]})
        (await self.gateway.update(AGENCIES, agency["id"], {"status": status})).unwrap()
        updated = (await self.gateway.fetch_one(AGENCIES, agency["id"])).unwrap()
        if status == "approved" and agency.get("status") != "approved":
            self._notify(
                "agency_approved",
                owner_email,
                {"owner_name": owner_name or owner_email or "", "agency_name": updated["name"]},
            )
        return updated

    async def persist_trust_score(self, agency_id: int, score: int) -> Result:
        return await self.gateway.update(AGENCIES, agency_id, {"trust_score": score})

    async def upload_brochure(
        self, agency: Mapping[str, Any], data: bytes, filename: str, content_type: str
    ) -> dict:
        storage = self._storage()
        url = storage.upload(data, filename, content_type, BROCHURE_CONSTRAINTS)
        result = await self.gateway.update(AGENCIES, agency["id"], {"brochure_url": url})
        if not result.ok:
            self._discard_asset(url)
            raise result.error
        self._discard_asset(agency.get("brochure_url"))
        return (await self.gateway.fetch_one(AGENCIES, agency["id"])).unwrap()

    async def delete_brochure(self, agency: Mapping[str, Any]) -> dict:
        url = agency.get("brochure_url")
        if not url:
            raise NotFoundError("This agency has no brochure.")
        (await self.gateway.update(AGENCIES, agency["id"], {"brochure_url": None})).unwrap()
        self._discard_asset(url)
        return (await self.gateway.fetch_one(AGENCIES, agency["id"])).unwrap()

    # -- services ---------------------------------------------------------

    async def add_service(self, agency_id: int, name: str, description: Optional[str] = None) -> Refresh:
        values = {
            "agency_id": agency_id,
            "name": _require_text(name, "name"),
            "description": clean_optional(description),
        }
        (await self.gateway.insert(SERVICES, values)).unwrap()
        return await self.refresh(SERVICES, agency_id)

    async def delete_service(self, agency_id: int, service_id: int) -> Refresh:
        (await self.gateway.remove(SERVICES, service_id, scope={"agency_id": agency_id})).unwrap()
        return await self.refresh(SERVICES, agency_id)

    # -- photos -----------------------------------------------------------

    async def add_photo(
        self,
        agency_id: int,
        data: bytes,
        filename: str,
        content_type: str,
        caption: Optional[str] = None,
        existing: Optional[Iterable[Mapping]] = None,
    ) -> Refresh:
        """Upload and attach a photo; the first photo of an agency becomes its cover.

        ``existing`` holds the loaded photos. When it is ``None`` (photos
        failed to load) the agency's photos are counted remotely.
        """
        validate_upload(data, content_type, PHOTO_CONSTRAINTS)
        if existing is None:
            existing = (await self.gateway.fetch_collection(PHOTOS, {"agency_id": agency_id})).unwrap()
        make_cover = not list(existing)
        url = self._storage().upload(data, filename, content_type, PHOTO_CONSTRAINTS)
        try:
            if make_cover:
                (await self.gateway.update_matching(
                    PHOTOS, {"agency_id": agency_id, "is_cover": True}, {"is_cover": False}
                )).unwrap()
            values = {
                "agency_id": agency_id,
                "url": url,
                "caption": clean_optional(caption) or filename,
                "is_cover": make_cover,
            }
            (await self.gateway.insert(PHOTOS, values)).unwrap()
        except ConsoleError:
            self._discard_asset(url)
            raise
        return await self.refresh(PHOTOS, agency_id)

    async def delete_photo(self, agency_id: int, photo: Mapping[str, Any]) -> Refresh:
        (await self.gateway.remove(PHOTOS, photo["id"], scope={"agency_id": agency_id})).unwrap()
        self._discard_asset(photo.get("url"))
        return await self.refresh(PHOTOS, agency_id)

    async def set_cover_photo(self, agency_id: int, photo_id: int, photos: Iterable[Mapping]) -> Refresh:
        """Make ``photo_id`` the only cover photo of the agency.

        The flag is cleared on every photo of the agency first and then
        set on the target. If the second step fails the agency has no
        cover until the call is retried; that state is reported through
        ``CoverPhotoTransitionError`` along with the refreshed photos.
        """
        if photo_id not in {photo["id"] for photo in photos}:
            raise NotFoundError(f"Photo {photo_id} does not belong to this agency.")
        (await self.gateway.update_matching(PHOTOS, {"agency_id": agency_id}, {"is_cover": False})).unwrap()
        result = await self.gateway.update_matching(
            PHOTOS, {"id": photo_id, "agency_id": agency_id}, {"is_cover": True}
        )
        if result.ok and result.value == 0:
            result = Result.failure(NotFoundError(f"Photo {photo_id} no longer exists."))
        if not result.ok:
            logger.warning("Agency %s left without a cover photo: %s", agency_id, result.error.message)
            raise CoverPhotoTransitionError(photo_id, result.error, await self.refresh(PHOTOS, agency_id))
        return await self.refresh(PHOTOS, agency_id)

    # -- reviews ----------------------------------------------------------

    async def submit_review(self, agency_id: int, actor: Actor, rating: Any, content: str) -> dict:
        """Create a pending review by ``actor``."""
        try:
            rating = int(rating)
        except (TypeError, ValueError):
            raise ValidationError("rating must be a number.", {"rating": ["Not a valid integer."]}) from None
        if not 1 <= rating <= 5:
            raise ValidationError("rating must be between 1 and 5.", {"rating": ["Must be between 1 and 5."]})
        (await self.gateway.fetch_one(AGENCIES, agency_id)).unwrap()
        values = {
            "agency_id": agency_id,
            "user_id": actor.user_id,
            "rating": rating,
            "content": _require_text(content, "content"),
            "status": "pending",
        }
        return (await self.gateway.insert(REVIEWS, values)).unwrap()

    async def decide_review(
        self, agency_id: int, review: Mapping[str, Any], status: str, agency_name: Optional[str] = None
    ) -> Refresh:
        """Approve or reject a review and tell its author.

        Re-deciding an already decided review is allowed; the console
        recomputes the score afterwards either way.
        """
        if status not in REVIEW_DECISIONS:
            raise ValidationError(
                "Invalid review status.", {"status": [f"Must be one of {', '.join(REVIEW_DECISIONS)}."]}
            )
        (await self.gateway.update(REVIEWS, review["id"], {"status": status})).unwrap()
        logger.info("Review %s %s (was %s)", review["id"], status, review.get("status"))
        self._notify(
            f"review_{status}",
            review.get("user_email"),
            {"user_name": review.get("user_email") or "", "agency_name": agency_name or ""},
        )
        return await self.refresh(REVIEWS, agency_id)

    async def respond_to_review(
        self,
        agency_id: int,
        review_id: int,
        content: str,
        review_ids: Sequence[int],
        existing: Optional[Mapping[int, Mapping]],
        actor: Optional[Actor] = None,
    ) -> Refresh:
        """Attach the single administrator response a review may carry.

        ``existing`` maps review ids to their loaded responses. When it is
        ``None`` (responses failed to load) the check is made remotely.
        """
        if review_id not in review_ids:
            raise NotFoundError(f"Review {review_id} does not belong to this agency.")
        if existing is None:
            remote = (await self.gateway.fetch_collection(RESPONSES, {"review_id": review_id})).unwrap()
            existing = {row["review_id"]: row for row in remote}
        if review_id in existing:
            raise ResponseAlreadyExistsError(review_id)
        values = {
            "review_id": review_id,
            "content": _require_text(content, "content"),
            "author_id": actor.user_id if actor else None,
        }
        (await self.gateway.insert(RESPONSES, values)).unwrap()
        return await self.refresh(RESPONSES, agency_id, review_ids)
