"""Detection of events that describe the same real-world occurrence."""

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterable, Optional

from ..logging_config import get_logger
from ..models import Event

if TYPE_CHECKING:
    from ..repositories.events import EventRepository

logger = get_logger(__name__)


def _utc_date(value: datetime):
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).date()


def is_same_day(first: Optional[datetime], second: Optional[datetime]) -> bool:
    """True when both dates fall on the same UTC calendar day.

    Naive datetimes are read as UTC. Missing dates never match.
    """
    if first is None or second is None:
        return False
    return _utc_date(first) == _utc_date(second)


def events_are_duplicate(first: Event, second: Event) -> bool:
    """Decide whether two events are the same occurrence.

    Identical non-empty sentences are duplicates regardless of date, which
    catches re-imports of the same narrative. Otherwise actor, action and
    target must all be equal and the events must arrive on the same day.
    """
    if first.sentence and first.sentence == second.sentence:
        return True

    return (
        first.actor == second.actor
        and first.action == second.action
        and first.target == second.target
        and is_same_day(first.date_received, second.date_received)
    )


class EventDuplicateDetector:
    """Checks incoming events against the session and the persisted corpus."""

    def __init__(self, events: "EventRepository"):
        self.events = events

    async def find_duplicate(
        self,
        event: Event,
        session_events: Iterable[Event] = (),
    ) -> Optional[Event]:
        """Return an already-known event equivalent to ``event``, if any.

        Args:
            event: Candidate event
            session_events: Events accepted earlier in the same run

        Returns:
            The first duplicate found, or None
        """
        for existing in session_events:
            if existing.id != event.id and events_are_duplicate(event, existing):
                return existing

        if event.sentence:
            for existing in await self.events.find_by_field("sentence", event.sentence):
                if existing.id != event.id:
                    return existing

        for existing in await self.events.find_by_field("actor", event.actor):
            if existing.id != event.id and events_are_duplicate(event, existing):
                return existing

        return None

    async def is_duplicate(self, event: Event, session_events: Iterable[Event] = ()) -> bool:
        duplicate = await self.find_duplicate(event, session_events)
        if duplicate is not None:
            logger.info(
                f"Skipping duplicate event {event.id}",
                extra={"duplicate_of": duplicate.id},
            )
        return duplicate is not None
