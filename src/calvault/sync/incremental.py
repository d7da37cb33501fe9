"""
Incremental sync: apply the changes recorded since the stored sync token.
"""

import logging

from ..models import ListEventsOptions
from ..models import SyncStats
from .apply import CalendarContext
from .apply import apply_deletion
from .apply import apply_event
from .utils import is_event_cancelled

logger = logging.getLogger(__name__)


def run_incremental_sync(ctx: CalendarContext, sync_token: str, stats: SyncStats):
    """Apply inserts, updates and deletions since ``sync_token``.

    The sync token seeds only the first request; later pages are chained
    with page tokens. ``SyncTokenExpiredError`` from any page propagates
    immediately and no token is written.
    """
    logger.debug(f"Incremental sync of {ctx.name}")
    page_token = None
    first = True

    while True:
        options = ListEventsOptions(page_token=page_token, show_deleted=True)
        if first:
            options.sync_token = sync_token
            first = False

        page = ctx.client.list_events(ctx.provider_calendar_id, options)

        for item in page.events:
            if is_event_cancelled(item):
                apply_deletion(ctx, item, stats)
            else:
                apply_event(ctx, item, stats)

        page_token = page.next_page_token
        if not page_token:
            break

    if page.next_sync_token:
        ctx.store.update_calendar_token(ctx.calendar_id, page.next_sync_token)
    else:
        # Keep the old token; the next run replays from the same point.
        logger.warning(f"Incremental sync of {ctx.name} returned no new sync token")
        ctx.store.mark_calendar_synced(ctx.calendar_id)

    logger.debug(
        f"Incremental sync of {ctx.name} done: "
        f"+{stats.added} ~{stats.updated} -{stats.deleted} ({stats.errors} errors)"
    )
