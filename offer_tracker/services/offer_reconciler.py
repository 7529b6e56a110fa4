# offer_tracker/services/offer_reconciler.py
"""
Offer reconciliation for ANY_OFFER_CHANGED notifications.

Each notification carries the complete set of current offers for a listing,
listed in the marketplace's own competitive order. A reconciliation pass
replaces the listing's persisted offers with that snapshot:

1. Capture the tracked seller's own offers per channel (landed price and
   whether any of them holds the buybox).
2. Build the new offer set in memory: one offer per (merchant, channel),
   ranked by first appearance. A later duplicate entry for the same merchant
   only replaces the first one when it is cheaper and the first one is not
   the buybox winner; the rank never moves.
3. Swap the persisted set for the new one, upsert the channel summaries and
   record a BuyboxActivity row for every channel whose own-offer buybox state
   changed.

The whole pass runs under the listing's lock inside one transaction, so a
concurrent reader sees either the old set or the new one.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from offer_tracker.core.enums import BuyboxEvent, FulfillmentChannel
from offer_tracker.core.exceptions import ReconciliationInvariantError
from offer_tracker.models.buybox_activity import BuyboxActivity
from offer_tracker.models.listing import Listing
from offer_tracker.models.notification import Notification
from offer_tracker.models.offer import Offer
from offer_tracker.models.offer_summary import OfferSummary
from offer_tracker.models.seller import Seller
from offer_tracker.schemas.notification import OfferEntry
from offer_tracker.services.listing_locks import ListingLockRegistry, listing_locks
from offer_tracker.services.summary_normalizer import ChannelSummary

logger = logging.getLogger(__name__)

CHANNELS = (FulfillmentChannel.FBA, FulfillmentChannel.MERCHANT)

# Offer columns refreshed when a cheaper duplicate entry replaces an earlier one
MUTABLE_OFFER_FIELDS = {
    'listing_price': 'listing_price',
    'shipping_price': 'shipping_price',
    'is_buybox_eligible': 'is_featured_merchant',
    'is_buybox_winner': 'is_buybox_winner',
    'ships_from_state': 'ships_from_state',
    'ships_from_country': 'ships_from_country',
    'shipping_maximum_hours': 'shipping_maximum_hours',
    'shipping_minimum_hours': 'shipping_minimum_hours',
    'shipping_available_date': 'shipping_available_date',
    'shipping_availability_type': 'shipping_availability_type',
    'sub_condition': 'sub_condition',
    'is_offer_prime': 'is_offer_prime',
    'is_offer_national_prime': 'is_offer_national_prime',
    'ships_domestically': 'ships_domestically',
}


@dataclass(frozen=True)
class OwnOfferBaseline:
    """The tracked seller's own offers before a pass, per channel."""
    prices: Dict[FulfillmentChannel, Decimal]
    buybox: Dict[FulfillmentChannel, bool]


@dataclass
class ReconcilePass:
    """State accumulated while walking one notification's offers."""
    ranks: Dict[FulfillmentChannel, int] = field(default_factory=lambda: {c: 1 for c in CHANNELS})
    offers: Dict[Tuple[str, FulfillmentChannel], Offer] = field(default_factory=dict)
    new_prices: Dict[FulfillmentChannel, Decimal] = field(default_factory=dict)
    new_buybox: Dict[FulfillmentChannel, bool] = field(default_factory=lambda: {c: False for c in CHANNELS})
    own_feedback_rating: Optional[Decimal] = None
    skipped: int = 0

    @property
    def materialized(self) -> List[Offer]:
        return list(self.offers.values())


@dataclass
class ReconcileResult:
    offers: List[Offer]
    summaries: Dict[FulfillmentChannel, OfferSummary]
    activities: List[BuyboxActivity]


def own_offer_baseline(offers: Iterable[Offer]) -> OwnOfferBaseline:
    prices = {}
    buybox = {c: False for c in CHANNELS}
    for offer in offers:
        if not offer.is_own_offer:
            continue
        if offer.landed_price is not None:
            prices[offer.channel] = offer.landed_price
        if offer.is_buybox_winner:
            buybox[offer.channel] = True
    return OwnOfferBaseline(prices=prices, buybox=buybox)


def _copy_mutable_fields(offer: Offer, entry: OfferEntry) -> None:
    for column, attribute in MUTABLE_OFFER_FIELDS.items():
        setattr(offer, column, getattr(entry, attribute))


def apply_entry(
    state: ReconcilePass,
    entry: OfferEntry,
    *,
    listing_id: int,
    own_merchant_id: str,
    notification_id: Optional[int] = None,
) -> ReconcilePass:
    """
    Fold one offer entry into the pass.

    Entries that are not condition "new" are ignored; entries missing a
    seller id or a price component are skipped with a warning.
    """
    if not entry.is_new_condition:
        return state

    missing = entry.missing_fields
    if missing:
        logger.warning(f"Skipping offer entry for listing {listing_id} missing {', '.join(missing)}")
        state.skipped += 1
        return state

    channel = entry.channel
    landed_price = entry.landed_price
    is_own_offer = entry.seller_id == own_merchant_id

    if is_own_offer and entry.positive_feedback_rating is not None:
        state.own_feedback_rating = entry.positive_feedback_rating

    key = (entry.seller_id, channel)
    offer = state.offers.get(key)
    if offer is None:
        offer = Offer(
            listing_id=listing_id,
            merchant_id=entry.seller_id,
            rank=state.ranks[channel],
            is_own_offer=is_own_offer,
            is_fba=channel.is_fba,
            notification_id=notification_id,
            seller_feedback_count=entry.feedback_count,
            seller_positive_feedback_rating=entry.positive_feedback_rating,
        )
        _copy_mutable_fields(offer, entry)
        state.offers[key] = offer
        state.ranks[channel] += 1
    elif not offer.is_buybox_winner and landed_price < offer.landed_price:
        # Same merchant listed twice: keep the cheaper offer at the first rank
        _copy_mutable_fields(offer, entry)

    if offer.is_own_offer and offer.is_buybox_winner:
        state.new_prices[channel] = offer.landed_price
        state.new_buybox[channel] = True

    return state


def verify_ranks(state: ReconcilePass) -> None:
    """Ranks within each channel must be exactly 1..K."""
    by_channel: Dict[FulfillmentChannel, List[int]] = {c: [] for c in CHANNELS}
    for offer in state.offers.values():
        by_channel[offer.channel].append(offer.rank)
    for channel, ranks in by_channel.items():
        if sorted(ranks) != list(range(1, len(ranks) + 1)):
            raise ReconciliationInvariantError(
                f"Non-contiguous ranks for channel {channel.value}: {sorted(ranks)}"
            )


def buybox_transitions(
    baseline: OwnOfferBaseline,
    state: ReconcilePass,
    *,
    listing_id: int,
    event_time: Optional[datetime],
    notification_id: Optional[int] = None,
) -> List[BuyboxActivity]:
    activities = []
    for channel in CHANNELS:
        won = state.new_buybox[channel]
        if won == baseline.buybox[channel]:
            continue
        activities.append(BuyboxActivity(
            listing_id=listing_id,
            notification_id=notification_id,
            is_fba=channel.is_fba,
            event=(BuyboxEvent.WON if won else BuyboxEvent.LOST).value,
            old_price=baseline.prices.get(channel),
            new_price=state.new_prices.get(channel),
            event_time=event_time,
            viewed=False,
        ))
    return activities


class OfferReconciler:
    """
    Replaces a listing's offers from an ANY_OFFER_CHANGED snapshot.

    Args:
        db: Session used for the pass; committed on success, rolled back on failure
        seller: The tracked seller (own offers, feedback rating sink)
        locks: Listing lock registry shared by all offer writers
    """

    def __init__(self, db: AsyncSession, seller: Seller, locks: Optional[ListingLockRegistry] = None):
        self.db = db
        self.seller = seller
        self.locks = locks or listing_locks

    async def reconcile(
        self,
        listing: Listing,
        offer_entries: Sequence[OfferEntry],
        event_time: Optional[datetime],
        notification: Optional[Notification] = None,
        summary: Optional[Dict[FulfillmentChannel, ChannelSummary]] = None,
    ) -> ReconcileResult:
        listing_id = listing.id
        notification_id = notification.id if notification is not None else None

        async with self.locks.hold(listing_id):
            try:
                await self._lock_listing_row(listing_id)

                current = (await self.db.execute(
                    select(Offer).where(Offer.listing_id == listing_id)
                )).scalars().all()
                baseline = own_offer_baseline(current)

                state = ReconcilePass()
                for entry in offer_entries:
                    state = apply_entry(
                        state,
                        entry,
                        listing_id=listing_id,
                        own_merchant_id=self.seller.merchant_id,
                        notification_id=notification_id,
                    )
                verify_ranks(state)

                if state.own_feedback_rating is not None:
                    self.seller.positive_feedback_rating = state.own_feedback_rating

                # The snapshot is complete: competitors missing from it are gone
                await self.db.execute(delete(Offer).where(Offer.listing_id == listing_id))
                offers = state.materialized
                self.db.add_all(offers)

                summaries = await self._upsert_summaries(listing_id, summary or {}, event_time)

                activities = buybox_transitions(
                    baseline,
                    state,
                    listing_id=listing_id,
                    event_time=event_time,
                    notification_id=notification_id,
                )
                self.db.add_all(activities)

                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.info(
            f"Reconciled listing {listing_id} ({listing.asin}): {len(offers)} offers, "
            f"{state.skipped} skipped, {len(activities)} buybox change(s)"
        )
        for activity in activities:
            logger.info(
                f"Buybox {activity.event} on listing {listing_id} "
                f"({'FBA' if activity.is_fba else 'merchant'}): {activity.old_price} -> {activity.new_price}"
            )

        return ReconcileResult(offers=offers, summaries=summaries, activities=activities)

    async def _lock_listing_row(self, listing_id: int) -> None:
        await self.db.execute(
            select(Listing.id).where(Listing.id == listing_id).with_for_update()
        )

    async def _upsert_summaries(
        self,
        listing_id: int,
        summary: Dict[FulfillmentChannel, ChannelSummary],
        event_time: Optional[datetime],
    ) -> Dict[FulfillmentChannel, OfferSummary]:
        rows = (await self.db.execute(
            select(OfferSummary).where(OfferSummary.listing_id == listing_id)
        )).scalars().all()
        existing = {FulfillmentChannel.from_is_fba(row.is_fba): row for row in rows}

        updated = {}
        for channel, channel_summary in summary.items():
            values = channel_summary.present_values()
            if not values:
                continue
            row = existing.get(channel)
            if row is None:
                row = OfferSummary(listing_id=listing_id, is_fba=channel.is_fba)
                self.db.add(row)
            for column, value in values.items():
                setattr(row, column, value)
            row.event_time = event_time
            updated[channel] = row
        return updated
