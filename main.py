"""
Multi-Calendar Aggregator — Entry Point.

`python main.py` lists the configured calendars, the upcoming events across
all of them and any conflicts in the next seven days.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from multical.adapters.calendar_factory import create_aggregator
from multical.config import settings

logger = logging.getLogger(__name__)


async def run() -> None:
    aggregator = create_aggregator()
    include_mailbox = settings.INCLUDE_MAILBOX_CALENDARS

    sources = await aggregator.registry.enabled_sources(include_mailbox)
    for source in sources:
        print(f"{source.color}  {source.title}  [{source.backend_kind.value}]  {source.id}")

    result = await aggregator.collect_events(sources, settings.DEFAULT_MAX_EVENTS)
    for failure in result.failures:
        logger.warning("Calendar %r unavailable: %s", failure.title, failure.error)
    for event in result.events[:20]:
        when = "all day" if event.is_all_day else event.start.strftime("%Y-%m-%d %H:%M")
        print(f"{when}  {event.title}  ({event.organizer})")

    now = datetime.now(timezone.utc)
    conflicts = await aggregator.detect_conflicts(sources, now, now + timedelta(days=7))
    for conflict in conflicts:
        print(
            f"Conflict: {conflict.first.title} / {conflict.second.title} "
            f"({conflict.overlap_minutes} min)"
        )


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
