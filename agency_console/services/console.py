"""The admin console: orchestration of selection, loading and mutations.

``AdminConsole`` is the single control loop behind the dashboard. It
owns the ``ConsoleState`` snapshot and is the only code that replaces
it, always through the reducers in ``agency_console.services.state``.
Everything else receives read-only snapshots:

* the ``SelectionController`` hands out a token per selection, and every
  completion is checked against it before it is applied;
* the ``DependentCollectionsLoader`` reports each collection as it
  resolves and asks for a score recomputation once services and reviews
  are in;
* the ``MutationCoordinator`` performs writes and returns refreshed
  collections for the console to apply.

The trust score is recomputed under a lock from the snapshot current at
that moment, so overlapping recalculations cannot persist a stale score
after a newer one.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Mapping, Optional

from ..errors import (
    CoverPhotoTransitionError,
    LoadTimeoutError,
    LocalInvariantViolation,
    NotFoundError,
    PartialCollectionFailure,
    PermissionDeniedError,
)
from ..gateway import AGENCIES, PHOTOS, RESPONSES, REVIEWS, SERVICES, RemoteDataGateway, Result
from . import state as reducers
from .identity import Actor
from .loader import DependentCollectionsLoader
from .mutations import MutationCoordinator, Refresh
from .notifications import Notifier
from .selection import Phase, Selection, SelectionController
from .state import TRUST_SCORE, ConsoleState
from .storage import AssetStorage
from .trust_score import TrustScoreMetrics, compute_metrics

logger = logging.getLogger(__name__)


class AdminConsole:
    """Holds one actor's view of their agencies and the selected aggregate."""

    def __init__(
        self,
        gateway: RemoteDataGateway,
        actor: Actor,
        notifier: Optional[Notifier] = None,
        storage: Optional[AssetStorage] = None,
        admin_email: Optional[str] = None,
        load_timeout: Optional[float] = 30.0,
    ) -> None:
        self.gateway = gateway
        self.actor = actor
        self.load_timeout = load_timeout
        self.selection = SelectionController()
        self.loader = DependentCollectionsLoader(gateway)
        self.mutations = MutationCoordinator(gateway, notifier, storage, admin_email)
        self._state = ConsoleState()
        self._score_lock = asyncio.Lock()

    @property
    def state(self) -> ConsoleState:
        return self._state

    @property
    def phase(self) -> Phase:
        return self.selection.phase

    def snapshot(self) -> dict:
        return reducers.state_as_dict(self._state, self.phase)

    def _dispatch(self, reducer, *args) -> None:
        self._state = reducer(self._state, *args)

    def _require_selection(self) -> Selection:
        if self.selection.current is None or self._state.selection != self.selection.current:
            raise LocalInvariantViolation("No agency selected.")
        return self.selection.current

    def _require_super_admin(self) -> None:
        if not self.actor.is_super_admin:
            raise PermissionDeniedError("Only super admins can perform this action.")

    def _apply_refresh(self, selection: Selection, refresh: Refresh) -> None:
        self._apply_result(selection, refresh.collection, refresh.result)

    def _apply_result(self, selection: Selection, collection: str, result: Result) -> None:
        if not self.selection.is_current(selection):
            logger.debug("Discarding %s for stale selection %s", collection, selection)
            return
        if result.ok:
            self._dispatch(reducers.collection_loaded, selection, collection, result.value)
        else:
            self._dispatch(reducers.collection_failed, selection, result.error)

    # -- agencies and selection -------------------------------------------

    async def load_agencies(self) -> tuple:
        """Load the agencies the actor may administer."""
        filters = None if self.actor.is_super_admin else {"owner_id": self.actor.user_id}
        rows = (await self.gateway.fetch_collection(AGENCIES, filters, order_by="name")).unwrap()
        self._dispatch(reducers.agencies_loaded, rows)
        return self._state.agencies

    async def select_agency(self, agency_id: int) -> ConsoleState:
        """Select an agency and load its aggregate.

        Returns once the load settles. If another agency was selected in
        the meantime the results of this load are discarded and the
        newer selection's state is returned instead.
        """
        selection = self.selection.select(agency_id)
        result = await self.gateway.fetch_one(AGENCIES, agency_id)
        if not self.selection.is_current(selection):
            return self._state
        if not result.ok or not self.actor.can_administer(result.value):
            self.selection.clear()
            self._dispatch(reducers.selection_cleared)
            if not result.ok:
                raise result.error
            raise PermissionDeniedError("You don't have permission to administer this agency.")
        self._dispatch(reducers.selection_started, selection, result.value)

        load = self.loader.load(
            agency_id,
            on_result=partial(self._apply_result, selection),
            on_inputs_ready=partial(self.recalculate_trust_score, selection),
        )
        try:
            await asyncio.wait_for(load, timeout=self.load_timeout)
        except asyncio.TimeoutError:
            if self.selection.is_current(selection):
                pending = sorted(self._state.pending)
                logger.warning("Loading agency %s timed out; still pending: %s", agency_id, pending)
                self._dispatch(
                    reducers.load_timed_out, selection, [LoadTimeoutError(name) for name in pending]
                )
        self.selection.mark_ready(selection)
        return self._state

    def clear_selection(self) -> None:
        self.selection.clear()
        self._dispatch(reducers.selection_cleared)

    async def recalculate_trust_score(self, selection: Optional[Selection] = None) -> Optional[TrustScoreMetrics]:
        """Recompute the trust score of the selected agency and persist it.

        The score is only persisted when both services and reviews are
        known; with either missing the breakdown is still shown but the
        cached score is left alone.
        """
        selection = selection or self._require_selection()
        async with self._score_lock:
            if not self.selection.is_current(selection):
                logger.debug("Skipping score recomputation for stale selection %s", selection)
                return None
            state = self._state
            metrics = compute_metrics(
                state.reviews, len(state.services), bool(state.agency.get("is_verified"))
            )
            incomplete = sorted({SERVICES, REVIEWS} & (set(state.errors) | state.pending))
            if incomplete:
                logger.warning(
                    "Agency %s: not persisting trust score, %s unavailable",
                    selection.agency_id, ", ".join(incomplete),
                )
                self._dispatch(reducers.metrics_computed, selection, metrics)
                return metrics
            if metrics.score != state.agency.get("trust_score"):
                result = await self.mutations.persist_trust_score(selection.agency_id, metrics.score)
                if not result.ok:
                    logger.warning(
                        "Agency %s: failed to persist trust score %d: %s",
                        selection.agency_id, metrics.score, result.error.message,
                    )
                    self._dispatch(reducers.metrics_computed, selection, metrics)
                    self._dispatch(
                        reducers.collection_failed,
                        selection,
                        PartialCollectionFailure(
                            TRUST_SCORE, f"Failed to save trust score: {result.error.message}", result.error
                        ),
                    )
                    return metrics
                logger.info("Agency %s trust score %s -> %d", selection.agency_id, state.agency.get("trust_score"), metrics.score)
            self._dispatch(reducers.score_applied, selection, metrics)
            return metrics

    # -- agency profile ---------------------------------------------------

    async def create_agency(self, values: Mapping[str, Any]) -> Mapping:
        agency = await self.mutations.create_agency(self.actor, values)
        self._dispatch(reducers.agency_added, agency)
        return agency

    async def update_agency(self, values: Mapping[str, Any]) -> ConsoleState:
        selection = self._require_selection()
        agency = await self.mutations.update_agency(selection.agency_id, values)
        self._dispatch(reducers.agency_patched, agency)
        return self._state

    async def set_verification(self, is_verified: bool) -> ConsoleState:
        self._require_super_admin()
        selection = self._require_selection()
        agency = await self.mutations.set_verification(selection.agency_id, is_verified)
        self._dispatch(reducers.agency_patched, agency)
        await self.recalculate_trust_score(selection)
        return self._state

    async def set_agency_status(
        self, status: str, owner_email: Optional[str] = None, owner_name: Optional[str] = None
    ) -> ConsoleState:
        self._require_super_admin()
        self._require_selection()
        agency = await self.mutations.set_agency_status(self._state.agency, status, owner_email, owner_name)
        self._dispatch(reducers.agency_patched, agency)
        return self._state

    async def upload_brochure(self, data: bytes, filename: str, content_type: str) -> ConsoleState:
        self._require_selection()
        agency = await self.mutations.upload_brochure(self._state.agency, data, filename, content_type)
        self._dispatch(reducers.agency_patched, agency)
        return self._state

    async def delete_brochure(self) -> ConsoleState:
        self._require_selection()
        agency = await self.mutations.delete_brochure(self._state.agency)
        self._dispatch(reducers.agency_patched, agency)
        return self._state

    # -- services ---------------------------------------------------------

    async def add_service(self, name: str, description: Optional[str] = None) -> ConsoleState:
        selection = self._require_selection()
        refresh = await self.mutations.add_service(selection.agency_id, name, description)
        self._apply_refresh(selection, refresh)
        await self.recalculate_trust_score(selection)
        return self._state

    async def delete_service(self, service_id: int) -> ConsoleState:
        selection = self._require_selection()
        refresh = await self.mutations.delete_service(selection.agency_id, service_id)
        self._apply_refresh(selection, refresh)
        await self.recalculate_trust_score(selection)
        return self._state

    # -- photos -----------------------------------------------------------

    def _photo(self, photo_id: int) -> Mapping:
        for photo in self._state.photos:
            if photo["id"] == photo_id:
                return photo
        raise NotFoundError(f"Photo {photo_id} not found.")

    async def add_photo(
        self, data: bytes, filename: str, content_type: str, caption: Optional[str] = None
    ) -> ConsoleState:
        selection = self._require_selection()
        existing = None if PHOTOS in self._state.errors else self._state.photos
        refresh = await self.mutations.add_photo(
            selection.agency_id, data, filename, content_type, caption, existing=existing
        )
        self._apply_refresh(selection, refresh)
        return self._state

    async def delete_photo(self, photo_id: int) -> ConsoleState:
        selection = self._require_selection()
        refresh = await self.mutations.delete_photo(selection.agency_id, self._photo(photo_id))
        self._apply_refresh(selection, refresh)
        return self._state

    async def set_cover_photo(self, photo_id: int) -> ConsoleState:
        selection = self._require_selection()
        try:
            refresh = await self.mutations.set_cover_photo(selection.agency_id, photo_id, self._state.photos)
        except CoverPhotoTransitionError as err:
            if err.refresh is not None:
                self._apply_refresh(selection, err.refresh)
            raise
        self._apply_refresh(selection, refresh)
        return self._state

    # -- reviews ----------------------------------------------------------

    def _review(self, review_id: int) -> Mapping:
        for review in self._state.reviews:
            if review["id"] == review_id:
                return review
        raise NotFoundError(f"Review {review_id} not found.")

    async def decide_review(self, review_id: int, status: str) -> ConsoleState:
        selection = self._require_selection()
        refresh = await self.mutations.decide_review(
            selection.agency_id, self._review(review_id), status, self._state.agency.get("name")
        )
        self._apply_refresh(selection, refresh)
        await self.recalculate_trust_score(selection)
        return self._state

    async def respond_to_review(self, review_id: int, content: str) -> ConsoleState:
        selection = self._require_selection()
        state = self._state
        existing = None if RESPONSES in state.errors else state.responses
        refresh = await self.mutations.respond_to_review(
            selection.agency_id,
            review_id,
            content,
            [review["id"] for review in state.reviews],
            existing,
            self.actor,
        )
        self._apply_refresh(selection, refresh)
        return self._state


@dataclass
class ConsoleServices:
    """Per-application collaborators shared by every console."""
    gateway: RemoteDataGateway
    notifier: Optional[Notifier] = None
    storage: Optional[AssetStorage] = None
    admin_email: Optional[str] = None
    load_timeout: Optional[float] = 30.0

    def console_for(self, actor: Actor) -> AdminConsole:
        return AdminConsole(
            self.gateway,
            actor,
            notifier=self.notifier,
            storage=self.storage,
            admin_email=self.admin_email,
            load_timeout=self.load_timeout,
        )

    def coordinator(self) -> MutationCoordinator:
        return MutationCoordinator(self.gateway, self.notifier, self.storage, self.admin_email)
