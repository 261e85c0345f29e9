"""Console snapshot and its transition functions.

``ConsoleState`` is an immutable snapshot of the selected agency's
aggregate: the agency itself, its services, photos, reviews and review
responses, the derived trust score metrics, and any per-collection load
failures. Only the console replaces it, and only through the reducer
functions below. Each reducer takes the current state and returns a new
one, ignoring events whose ``Selection`` token is not the one the state
was built for.
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from ..errors import PartialCollectionFailure
from ..gateway import PHOTOS, RESPONSES, REVIEWS, SERVICES
from .selection import Selection
from .trust_score import TrustScoreMetrics

DEPENDENT_COLLECTIONS = (SERVICES, PHOTOS, REVIEWS, RESPONSES)
# error key for a failed score write; not a collection
TRUST_SCORE = "trust_score"

_EMPTY: Mapping = MappingProxyType({})


@dataclass(frozen=True)
class ConsoleState:
    agencies: tuple = ()
    selection: Optional[Selection] = None
    agency: Optional[Mapping] = None
    services: tuple = ()
    photos: tuple = ()
    reviews: tuple = ()
    # review id -> response
    responses: Mapping[int, Mapping] = field(default_factory=lambda: _EMPTY)
    metrics: Optional[TrustScoreMetrics] = None
    errors: Mapping[str, PartialCollectionFailure] = field(default_factory=lambda: _EMPTY)
    pending: frozenset = field(default_factory=frozenset)

    @property
    def agency_id(self) -> Optional[int]:
        return self.selection.agency_id if self.selection else None

    def rows(self, collection: str):
        if collection == RESPONSES:
            return tuple(self.responses.values())
        return getattr(self, _FIELDS[collection])


_FIELDS = {SERVICES: "services", PHOTOS: "photos", REVIEWS: "reviews"}


def _freeze(mapping: Mapping) -> Mapping:
    return MappingProxyType(dict(mapping))


def _without(mapping: Mapping, key) -> Mapping:
    return _freeze({k: v for k, v in mapping.items() if k != key})


def agencies_loaded(state: ConsoleState, rows) -> ConsoleState:
    return dataclasses.replace(state, agencies=tuple(rows))


def selection_started(state: ConsoleState, selection: Selection, agency: Mapping) -> ConsoleState:
    """Reset the aggregate for a newly selected agency."""
    return dataclasses.replace(
        state,
        selection=selection,
        agency=_freeze(agency),
        services=(),
        photos=(),
        reviews=(),
        responses=_EMPTY,
        metrics=None,
        errors=_EMPTY,
        pending=frozenset(DEPENDENT_COLLECTIONS),
    )


def selection_cleared(state: ConsoleState) -> ConsoleState:
    return ConsoleState(agencies=state.agencies)


def collection_loaded(state: ConsoleState, selection: Selection, collection: str, rows) -> ConsoleState:
    if selection != state.selection:
        return state
    changes = {
        "errors": _without(state.errors, collection),
        "pending": state.pending - {collection},
    }
    if collection == RESPONSES:
        changes["responses"] = _freeze({row["review_id"]: _freeze(row) for row in rows})
    else:
        changes[_FIELDS[collection]] = tuple(_freeze(row) for row in rows)
    return dataclasses.replace(state, **changes)


def collection_failed(
    state: ConsoleState, selection: Selection, failure: PartialCollectionFailure
) -> ConsoleState:
    """Record a failed collection, keeping whatever it held before."""
    if selection != state.selection:
        return state
    errors = dict(state.errors)
    errors[failure.collection] = failure
    return dataclasses.replace(
        state, errors=_freeze(errors), pending=state.pending - {failure.collection}
    )


def agency_patched(state: ConsoleState, agency: Mapping) -> ConsoleState:
    """Replace an agency row in the list and, when selected, in the aggregate."""
    agencies = tuple(
        _freeze(agency) if row["id"] == agency["id"] else row for row in state.agencies
    )
    if state.agency_id == agency["id"]:
        return dataclasses.replace(state, agencies=agencies, agency=_freeze(agency))
    return dataclasses.replace(state, agencies=agencies)


def agency_added(state: ConsoleState, agency: Mapping) -> ConsoleState:
    return dataclasses.replace(state, agencies=state.agencies + (_freeze(agency),))


def score_applied(state: ConsoleState, selection: Selection, metrics: TrustScoreMetrics) -> ConsoleState:
    if selection != state.selection or state.agency is None:
        return state
    agency = dict(state.agency)
    agency["trust_score"] = metrics.score
    state = agency_patched(state, agency)
    return dataclasses.replace(state, metrics=metrics, errors=_without(state.errors, TRUST_SCORE))


def metrics_computed(state: ConsoleState, selection: Selection, metrics: TrustScoreMetrics) -> ConsoleState:
    """Show a breakdown without touching the cached score."""
    if selection != state.selection:
        return state
    return dataclasses.replace(state, metrics=metrics)


def load_timed_out(state: ConsoleState, selection: Selection, failures) -> ConsoleState:
    for failure in failures:
        state = collection_failed(state, selection, failure)
    return state


def state_as_dict(state: ConsoleState, phase) -> dict:
    """Serialise a snapshot for display collaborators."""
    return {
        "phase": phase.value,
        "agencies": [dict(row) for row in state.agencies],
        "agency": dict(state.agency) if state.agency is not None else None,
        "services": [dict(row) for row in state.services],
        "photos": [dict(row) for row in state.photos],
        "reviews": [
            dict(row, response=dict(state.responses[row["id"]]) if row["id"] in state.responses else None)
            for row in state.reviews
        ],
        "metrics": state.metrics.as_dict() if state.metrics else None,
        "errors": {name: failure.payload() for name, failure in state.errors.items()},
        "loading": sorted(state.pending),
    }
