"""Dependent collections loader.

Loading an agency's aggregate is a small dependency graph rather than a
chain of awaited calls::

    services ─┐
    photos    ├─ (independent, fetched concurrently)
    reviews ──┼──> responses (filtered by the resolved review ids)
              └──> trust score (once services and reviews have resolved)

Each collection's outcome is reported on its own through ``on_result``,
so a failure fetching photos leaves services and reviews usable and the
score recomputation still runs. Failures are wrapped as
``PartialCollectionFailure`` for the caller to record.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Sequence

from ..errors import PartialCollectionFailure
from ..gateway import PHOTOS, RESPONSES, REVIEWS, SERVICES, RemoteDataGateway, Result

logger = logging.getLogger(__name__)

ResultCallback = Callable[[str, Result], None]
InputsReadyCallback = Callable[[], Awaitable[None]]

_LABELS = {
    SERVICES: "services",
    PHOTOS: "photos",
    REVIEWS: "reviews",
    RESPONSES: "review responses",
}


@dataclass
class LoadReport:
    """What a load produced, per collection."""
    agency_id: int
    results: dict = field(default_factory=dict)

    @property
    def failures(self) -> dict:
        return {name: result.error for name, result in self.results.items() if not result.ok}


def as_partial_failure(collection: str, result: Result) -> Result:
    if result.ok or isinstance(result.error, PartialCollectionFailure):
        return result
    label = _LABELS.get(collection, collection)
    return Result.failure(
        PartialCollectionFailure(collection, f"Failed to load {label}: {result.error.message}", result.error)
    )


async def fetch_dependent(
    gateway: RemoteDataGateway, collection: str, agency_id: int, review_ids: Sequence[int] = ()
) -> Result:
    """Fetch one dependent collection of ``agency_id`` as the console orders it.

    Responses are keyed by review rather than agency, so they need the
    ids of the reviews already loaded.
    """
    if collection == RESPONSES:
        if not review_ids:
            return Result.success([])
        result = await gateway.fetch_collection(RESPONSES, {"review_id": list(review_ids)})
    elif collection == REVIEWS:
        result = await gateway.fetch_collection(
            REVIEWS, {"agency_id": agency_id}, order_by="created_at", descending=True
        )
    else:
        result = await gateway.fetch_collection(collection, {"agency_id": agency_id})
    return as_partial_failure(collection, result)


class DependentCollectionsLoader:
    """Fetches the dependent collections of one agency in dependency order."""

    def __init__(self, gateway: RemoteDataGateway) -> None:
        self.gateway = gateway

    async def load(
        self,
        agency_id: int,
        on_result: ResultCallback,
        on_inputs_ready: Optional[InputsReadyCallback] = None,
    ) -> LoadReport:
        report = LoadReport(agency_id)

        def publish(collection: str, result: Result) -> Result:
            result = as_partial_failure(collection, result)
            if not result.ok:
                logger.warning("Agency %s: %s", agency_id, result.error.message)
            report.results[collection] = result
            on_result(collection, result)
            return result

        async def fetch(collection: str) -> Result:
            return publish(collection, await fetch_dependent(self.gateway, collection, agency_id))

        async def fetch_responses(reviews_task: "asyncio.Future[Result]") -> Result:
            reviews = await reviews_task
            if not reviews.ok:
                return publish(
                    RESPONSES,
                    Result.failure(
                        PartialCollectionFailure(
                            RESPONSES, "Review responses unavailable because reviews failed to load."
                        )
                    ),
                )
            review_ids = [review["id"] for review in reviews.value]
            return publish(RESPONSES, await fetch_dependent(self.gateway, RESPONSES, agency_id, review_ids))

        services_task = asyncio.ensure_future(fetch(SERVICES))
        photos_task = asyncio.ensure_future(fetch(PHOTOS))
        reviews_task = asyncio.ensure_future(fetch(REVIEWS))
        responses_task = asyncio.ensure_future(fetch_responses(reviews_task))
        tasks = [services_task, photos_task, reviews_task, responses_task]
        try:
            await asyncio.gather(services_task, reviews_task)
            if on_inputs_ready is not None:
                await on_inputs_ready()
            await asyncio.gather(photos_task, responses_task)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
        return report
