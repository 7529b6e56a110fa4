# offer_tracker/services/buybox_activity_service.py
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from offer_tracker.models.buybox_activity import BuyboxActivity

logger = logging.getLogger(__name__)


@dataclass
class BuyboxActivityWindow:
    """Activity returned to a reader, with the event-time window it covers."""
    activities: List[BuyboxActivity]
    start: Optional[datetime] = None
    end: Optional[datetime] = None


class BuyboxActivityReader:
    """Read side of the buybox audit log."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def in_window(self, listing_id: int, start: datetime, end: datetime) -> BuyboxActivityWindow:
        """All activity for a listing with start <= event_time <= end, newest first."""
        if start > end:
            raise ValueError("start must not be after end")
        result = await self.db.execute(
            select(BuyboxActivity)
            .where(
                BuyboxActivity.listing_id == listing_id,
                BuyboxActivity.event_time >= start,
                BuyboxActivity.event_time <= end,
            )
            .order_by(BuyboxActivity.event_time.desc(), BuyboxActivity.id.desc())
        )
        return BuyboxActivityWindow(list(result.scalars().all()), start, end)

    async def consume_unviewed(self, listing_id: int) -> BuyboxActivityWindow:
        """
        Return unviewed activity (oldest first) and mark it viewed.

        Only the returned rows are marked, so activity recorded while the
        caller reads stays unviewed for the next call.
        """
        result = await self.db.execute(
            select(BuyboxActivity)
            .where(BuyboxActivity.listing_id == listing_id, BuyboxActivity.viewed.is_(False))
            .order_by(BuyboxActivity.event_time.asc(), BuyboxActivity.id.asc())
        )
        activities = list(result.scalars().all())
        if not activities:
            return BuyboxActivityWindow([])

        start = activities[0].event_time
        end = activities[-1].event_time
        await self.db.execute(
            update(BuyboxActivity)
            .where(BuyboxActivity.id.in_([a.id for a in activities]))
            .values(viewed=True)
        )
        await self.db.commit()
        logger.debug(f"Marked {len(activities)} buybox activity row(s) viewed for listing {listing_id}")
        return BuyboxActivityWindow(activities, start, end)
