"""Agency selection state machine.

States move ``NO_SELECTION -> LOADING -> READY`` and back to ``LOADING``
whenever an agency is (re)selected. Each selection hands out a fresh
``Selection`` token. Loads never abort in-flight requests; instead every
completion is checked against the current token and discarded when the
user has moved on, so a late answer for agency A can never overwrite
agency B's data, nor a newer load of A itself.
"""
from __future__ import annotations

import enum
import itertools
import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


class Phase(enum.Enum):
    NO_SELECTION = "no_selection"
    LOADING = "loading"
    READY = "ready"


@dataclass(frozen=True)
class Selection:
    agency_id: int
    generation: int


class SelectionController:
    """Owns the currently selected agency and its load phase."""

    def __init__(self) -> None:
        self._generations = itertools.count(1)
        self.current: Optional[Selection] = None
        self.phase = Phase.NO_SELECTION

    @property
    def agency_id(self) -> Optional[int]:
        return self.current.agency_id if self.current else None

    def select(self, agency_id: int) -> Selection:
        """Start loading ``agency_id``; any earlier selection becomes stale."""
        if self.current is not None and self.phase is Phase.LOADING:
            logger.debug(
                "Selection of agency %s superseded by agency %s while loading",
                self.current.agency_id, agency_id,
            )
        self.current = Selection(agency_id, next(self._generations))
        self.phase = Phase.LOADING
        return self.current

    def clear(self) -> None:
        self.current = None
        self.phase = Phase.NO_SELECTION

    def is_current(self, selection: Optional[Selection]) -> bool:
        return selection is not None and selection == self.current

    def mark_ready(self, selection: Selection) -> bool:
        """Move to ``READY`` if ``selection`` is still current."""
        if not self.is_current(selection):
            logger.debug("Ignoring completion of stale selection %s", selection)
            return False
        self.phase = Phase.READY
        return True
