"""
Full sync: re-read every event of a calendar and upsert it.
"""

import logging

from ..models import ListEventsOptions
from ..models import SyncStats
from .apply import CalendarContext
from .apply import apply_event

logger = logging.getLogger(__name__)


def run_full_sync(ctx: CalendarContext, stats: SyncStats):
    """Page through the whole calendar, then persist the feed's sync token.

    Recurring series are kept intact (``singleEvents=False``). Nothing is
    deleted by absence. The token is written only after the last page has
    been processed, so an interrupted run leaves any previous token alone.
    """
    logger.debug(f"Full sync of {ctx.name}")
    page_token = None
    pages = 0

    while True:
        page = ctx.client.list_events(
            ctx.provider_calendar_id,
            ListEventsOptions(page_token=page_token, show_deleted=False, single_events=False),
        )
        pages += 1

        for item in page.events:
            apply_event(ctx, item, stats)

        page_token = page.next_page_token
        if not page_token:
            break

    if page.next_sync_token:
        ctx.store.update_calendar_token(ctx.calendar_id, page.next_sync_token)
    else:
        logger.warning(f"Full sync of {ctx.name} returned no sync token")
        ctx.store.mark_calendar_synced(ctx.calendar_id)

    logger.debug(
        f"Full sync of {ctx.name} done: {pages} page(s), "
        f"+{stats.added} ~{stats.updated} ({stats.errors} errors)"
    )
