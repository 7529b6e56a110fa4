# offer_tracker/services/notification_router.py
"""
Routes one queue message to the handler for its notification type.

Flow per message:

    parse envelope -> resolve subscription -> record Notification (PROCESSING)
        -> handler -> DispatchOutcome -> finalize record

Handlers return a DispatchOutcome or raise one of the service exceptions;
exceptions are translated here:

- MalformedPayloadError / UnknownReferenceError / UnsupportedNotificationTypeError -> DROPPED
- TransientDependencyError / ReconciliationInvariantError -> DEFERRED

PROCESSED and DROPPED records are finalized (status, reason, processed_at) and
the caller may delete the message. DEFERRED records stay PROCESSING so the
redelivered message picks the same record up again.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from offer_tracker.core.config import Settings, get_settings
from offer_tracker.core.enums import (
    DispatchOutcomeKind,
    FulfillmentChannel,
    NotificationStatus,
    NotificationType,
    ReportStatus,
    FBA_FULFILLMENT_TYPES,
    MERCHANT_FULFILLMENT_TYPES,
    NEW_CONDITION,
)
from offer_tracker.core.exceptions import (
    MalformedPayloadError,
    ReconciliationInvariantError,
    TransientDependencyError,
    UnknownReferenceError,
    UnsupportedNotificationTypeError,
)
from offer_tracker.models.listing import Listing
from offer_tracker.models.notification import Notification
from offer_tracker.models.offer import Offer
from offer_tracker.models.offer_summary import OfferSummary
from offer_tracker.models.report import Report
from offer_tracker.models.seller import Seller
from offer_tracker.models.subscription import Subscription
from offer_tracker.schemas.notification import (
    ListingStatusChange,
    NotificationEnvelope,
    OfferChangedPayload,
    PricingHealthPayload,
    ReportProcessingFinished,
)
from offer_tracker.schemas.payload import get_path
from offer_tracker.services.listing_locks import ListingLockRegistry, listing_locks
from offer_tracker.services.listing_resolver import ListingResolver, PricingApiListingResolver
from offer_tracker.services.offer_reconciler import OfferReconciler
from offer_tracker.services.report_downloader import (
    ReportCallbackRegistry,
    ReportDownloader,
    default_report_callbacks,
)
from offer_tracker.services.summary_normalizer import normalize_summary

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchOutcome:
    kind: DispatchOutcomeKind
    reason: Optional[str] = None

    @classmethod
    def processed(cls, reason: Optional[str] = None) -> "DispatchOutcome":
        return cls(DispatchOutcomeKind.PROCESSED, reason)

    @classmethod
    def dropped(cls, reason: str) -> "DispatchOutcome":
        return cls(DispatchOutcomeKind.DROPPED, reason)

    @classmethod
    def deferred(cls, reason: str) -> "DispatchOutcome":
        return cls(DispatchOutcomeKind.DEFERRED, reason)

    @property
    def acknowledge(self) -> bool:
        """Whether the queue message should be deleted."""
        return self.kind is not DispatchOutcomeKind.DEFERRED


class NotificationRouter:
    """
    Dispatches notifications for the tracked seller.

    Args:
        db: Session for this message
        listing_resolver: Creates unknown listings (default: pricing API resolver)
        report_downloader: Background report fetcher (default: reports API downloader)
        report_callbacks: Report type -> document consumer (default: store documents under REPORTS_DIR)
        settings: Application settings
        locks: Listing lock registry shared with other message tasks
    """

    def __init__(
        self,
        db: AsyncSession,
        listing_resolver: Optional[ListingResolver] = None,
        report_downloader: Optional[ReportDownloader] = None,
        report_callbacks: Optional[ReportCallbackRegistry] = None,
        settings: Optional[Settings] = None,
        locks: Optional[ListingLockRegistry] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.listing_resolver = listing_resolver
        self.report_downloader = report_downloader
        self.report_callbacks = report_callbacks or default_report_callbacks(self.settings)
        self.locks = locks or listing_locks

        self._handlers = {
            NotificationType.LISTINGS_ITEM_STATUS_CHANGE: self._handle_listing_status_change,
            NotificationType.REPORT_PROCESSING_FINISHED: self._handle_report_processing_finished,
            NotificationType.ANY_OFFER_CHANGED: self._handle_any_offer_changed,
            NotificationType.PRICING_HEALTH: self._handle_pricing_health,
        }

    async def route(self, body: Union[str, bytes, Dict[str, Any]]) -> DispatchOutcome:
        """Process one message body and return what should happen to the message."""
        try:
            envelope = NotificationEnvelope.from_body(body)
        except MalformedPayloadError as e:
            logger.error(f"Dropping malformed notification: {e}")
            return DispatchOutcome.dropped(str(e))

        subscription = await self._get_subscription(envelope.subscription_id)
        if subscription is None:
            logger.error(
                f"Unknown notification received with subscription id #{envelope.subscription_id} "
                f"and notification type {envelope.notification_type}"
            )
            return DispatchOutcome.dropped(f"unknown subscription {envelope.subscription_id}")

        notification, previous_outcome = await self._record_notification(subscription, envelope)
        if previous_outcome is not None:
            return previous_outcome

        notification_id = notification.id
        notification_type = subscription.notification_type or envelope.notification_type

        try:
            outcome = await self.dispatch(notification_type, envelope, notification)
        except UnsupportedNotificationTypeError as e:
            logger.warning(str(e))
            outcome = DispatchOutcome.dropped(str(e))
        except (MalformedPayloadError, UnknownReferenceError) as e:
            await self.db.rollback()
            logger.error(f"Dropping {notification_type} notification #{notification_id}: {e}")
            outcome = DispatchOutcome.dropped(str(e))
        except TransientDependencyError as e:
            await self.db.rollback()
            logger.warning(f"Deferring {notification_type} notification #{notification_id}: {e}")
            outcome = DispatchOutcome.deferred(str(e))
        except ReconciliationInvariantError as e:
            await self.db.rollback()
            logger.error(f"Reconciliation failed for notification #{notification_id}: {e}")
            outcome = DispatchOutcome.deferred(str(e))

        await self._finalize(notification_id, outcome)
        return outcome

    async def dispatch(
        self,
        notification_type: Optional[str],
        envelope: NotificationEnvelope,
        notification: Notification,
    ) -> DispatchOutcome:
        try:
            handler = self._handlers.get(NotificationType(notification_type))
        except ValueError:
            handler = None

        if handler is None:
            raise UnsupportedNotificationTypeError(f"Notification type {notification_type} not supported.")

        return await handler(envelope, notification)

    # --- Handlers ---

    async def _handle_listing_status_change(
        self, envelope: NotificationEnvelope, notification: Notification
    ) -> DispatchOutcome:
        """A listing was created or deleted on the seller's account."""
        change = ListingStatusChange.from_payload(envelope.data)

        seller = await self._require_seller(change.seller_id, NotificationType.LISTINGS_ITEM_STATUS_CHANGE)

        if not change.asin:
            logger.error(
                f"No asin provided in incoming {NotificationType.LISTINGS_ITEM_STATUS_CHANGE.value} "
                f"notification for seller #{seller.id}. Aborting processing."
            )
            return DispatchOutcome.dropped("missing asin")

        listing = await self._get_listing(seller, change.asin)

        if change.is_deleted and listing is not None:
            async with self.locks.hold(listing.id):
                await self.db.delete(listing)  # cascades offers, summaries and buybox activity
                await self.db.commit()
            logger.info(f"Deleted listing for asin {change.asin} (seller {seller.merchant_id})")
        elif not change.is_deleted and listing is None:
            listing = Listing(seller_id=seller.id, asin=change.asin)
            self.db.add(listing)
            await self.db.commit()
            logger.info(f"Created listing {listing.id} for asin {change.asin} (seller {seller.merchant_id})")

        return DispatchOutcome.processed()

    async def _handle_report_processing_finished(
        self, envelope: NotificationEnvelope, notification: Notification
    ) -> DispatchOutcome:
        """A requested report finished; download it in the background."""
        finished = ReportProcessingFinished.from_payload(envelope.data)
        logger.info(f"Processing REPORT_PROCESSING_FINISHED notification for report type {finished.report_type}")

        report = (await self.db.execute(
            select(Report).where(Report.amz_id == finished.report_id)
        )).scalars().first()
        if report is None:
            raise UnknownReferenceError(f"unknown report {finished.report_id}: not found in database")

        if finished.processing_status != ReportStatus.DONE.value:
            logger.error(f"Report #{report.id} finished with status {finished.processing_status}")
            report.status = finished.processing_status or ReportStatus.FATAL.value
            await self.db.commit()
            return DispatchOutcome.processed(f"report finished with status {finished.processing_status}")

        callback = self.report_callbacks.get(report.type)
        if callback is None:
            logger.error(f"No result handler registered for report type {report.type}")
            return DispatchOutcome.dropped(f"no result handler for report type {report.type}")

        report.status = ReportStatus.DONE.value
        report.document_id = finished.report_document_id
        await self.db.commit()

        if self.report_downloader is None:
            self.report_downloader = ReportDownloader(self.settings)
        self.report_downloader.dispatch(report, callback)
        return DispatchOutcome.processed()

    async def _handle_any_offer_changed(
        self, envelope: NotificationEnvelope, notification: Notification
    ) -> DispatchOutcome:
        """Full offer snapshot for a listing; reconcile it."""
        data = get_path(envelope.data, 'AnyOfferChangedNotification')
        if not isinstance(data, dict):
            raise MalformedPayloadError("ANY_OFFER_CHANGED payload has no AnyOfferChangedNotification")
        payload = OfferChangedPayload.from_payload(data)

        seller = await self._require_seller(payload.seller_id, NotificationType.ANY_OFFER_CHANGED)

        if not self._is_designated_marketplace(payload.marketplace_id):
            logger.info(
                f"Aborting processing of {NotificationType.ANY_OFFER_CHANGED.value} notification because "
                f"it is for a non-designated marketplace with ID: {payload.marketplace_id}."
            )
            return DispatchOutcome.dropped(f"marketplace {payload.marketplace_id} not tracked")

        listing = await self._get_or_resolve_listing(seller, payload.asin)
        if listing is None:
            return DispatchOutcome.deferred(f"could not resolve listing for asin {payload.asin}")

        summary = normalize_summary(payload.summary)
        reconciler = OfferReconciler(self.db, seller, self.locks)
        await reconciler.reconcile(
            listing,
            payload.offers,
            envelope.event_time,
            notification=notification,
            summary=summary,
        )
        return DispatchOutcome.processed()

    async def _handle_pricing_health(
        self, envelope: NotificationEnvelope, notification: Notification
    ) -> DispatchOutcome:
        """
        Own-offer price and competitive price threshold for a listing.

        Patches a single own offer and one summary field. Competitor offers and
        buybox activity are left alone: this notification says nothing about them.
        """
        health = PricingHealthPayload.from_payload(envelope.data)

        seller = await self._require_seller(health.seller_id, NotificationType.PRICING_HEALTH)

        if not self._is_designated_marketplace(health.marketplace_id):
            logger.info(
                f"Aborting processing of {NotificationType.PRICING_HEALTH.value} notification because "
                f"it is for a non-designated marketplace with ID: {health.marketplace_id}."
            )
            return DispatchOutcome.dropped(f"marketplace {health.marketplace_id} not tracked")

        if self.settings.PRICING_HEALTH_ENFORCE_CONDITION and (health.condition or '').lower() != NEW_CONDITION:
            logger.info(f"Ignoring {NotificationType.PRICING_HEALTH.value} notification for condition {health.condition}")
            return DispatchOutcome.processed(f"condition {health.condition} not tracked")

        if not health.asin:
            raise MalformedPayloadError("PRICING_HEALTH payload has no offerChangeTrigger.asin")

        if health.competitive_price_threshold is None:
            logger.info(
                f"Incoming {NotificationType.PRICING_HEALTH.value} notification for {health.asin} does not "
                f"contain competitive price information. Aborting processing."
            )
            return DispatchOutcome.processed("no competitive price threshold")

        if health.listing_price is None or health.shipping_price is None:
            raise MalformedPayloadError(f"PRICING_HEALTH notification for {health.asin} has no merchant offer price")

        channel = self._channel_for_fulfillment_type(health.fulfillment_type)

        listing = await self._get_or_resolve_listing(seller, health.asin)
        if listing is None:
            return DispatchOutcome.deferred(f"could not resolve listing for asin {health.asin}")

        await self._patch_own_offer(
            seller,
            listing,
            channel,
            listing_price=health.listing_price,
            shipping_price=health.shipping_price,
            price_threshold=health.competitive_price_threshold,
            event_time=envelope.event_time,
            notification_id=notification.id,
        )
        return DispatchOutcome.processed()

    # --- Helpers ---

    async def _patch_own_offer(
        self,
        seller: Seller,
        listing: Listing,
        channel: FulfillmentChannel,
        *,
        listing_price: Decimal,
        shipping_price: Decimal,
        price_threshold: Decimal,
        event_time: Optional[datetime],
        notification_id: Optional[int],
    ) -> None:
        async with self.locks.hold(listing.id):
            try:
                await self.db.execute(
                    select(Listing.id).where(Listing.id == listing.id).with_for_update()
                )

                offer = (await self.db.execute(
                    select(Offer).where(
                        Offer.listing_id == listing.id,
                        Offer.is_fba == channel.is_fba,
                        Offer.is_own_offer.is_(True),
                    )
                )).scalars().first()
                if offer is None:
                    offer = Offer(
                        listing_id=listing.id,
                        merchant_id=seller.merchant_id,
                        is_own_offer=True,
                        is_fba=channel.is_fba,
                        is_buybox_winner=False,
                        is_buybox_eligible=False,
                        notification_id=notification_id,
                    )
                    self.db.add(offer)

                summary = (await self.db.execute(
                    select(OfferSummary).where(
                        OfferSummary.listing_id == listing.id,
                        OfferSummary.is_fba == channel.is_fba,
                    )
                )).scalars().first()
                if summary is None:
                    summary = OfferSummary(listing_id=listing.id, is_fba=channel.is_fba, event_time=event_time)
                    self.db.add(summary)

                offer.listing_price = listing_price
                offer.shipping_price = shipping_price
                summary.competitive_price_threshold = price_threshold
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.info(
            f"Updated own {channel.value} offer on listing {listing.id}: "
            f"{listing_price} + {shipping_price}, threshold {price_threshold}"
        )

    @staticmethod
    def _channel_for_fulfillment_type(fulfillment_type: Optional[str]) -> FulfillmentChannel:
        code = (fulfillment_type or '').upper()
        if code in FBA_FULFILLMENT_TYPES:
            return FulfillmentChannel.FBA
        if code in MERCHANT_FULFILLMENT_TYPES:
            return FulfillmentChannel.MERCHANT
        raise MalformedPayloadError(f"Unknown fulfillment type {fulfillment_type}")

    def _is_designated_marketplace(self, marketplace_id: Optional[str]) -> bool:
        return marketplace_id == self.settings.DESIGNATED_MARKETPLACE_ID

    async def _get_subscription(self, amz_subscription_id: str) -> Optional[Subscription]:
        result = await self.db.execute(
            select(Subscription).where(Subscription.amz_subscription_id == amz_subscription_id)
        )
        return result.scalars().first()

    async def _get_seller(self, merchant_id: Optional[str]) -> Optional[Seller]:
        if not merchant_id:
            return None
        result = await self.db.execute(select(Seller).where(Seller.merchant_id == merchant_id))
        return result.scalars().first()

    async def _require_seller(self, merchant_id: Optional[str], notification_type: NotificationType) -> Seller:
        seller = await self._get_seller(merchant_id)
        if seller is None:
            raise UnknownReferenceError(
                f"unknown seller {merchant_id} associated with incoming {notification_type.value} notification"
            )
        return seller

    async def _get_listing(self, seller: Seller, asin: str) -> Optional[Listing]:
        result = await self.db.execute(
            select(Listing).where(Listing.seller_id == seller.id, Listing.asin == asin)
        )
        return result.scalars().first()

    async def _get_or_resolve_listing(self, seller: Seller, asin: str) -> Optional[Listing]:
        listing = await self._get_listing(seller, asin)
        if listing is not None:
            return listing

        if self.listing_resolver is None:
            self.listing_resolver = PricingApiListingResolver(self.settings)
        listing = await self.listing_resolver.resolve(self.db, seller, asin)
        if listing is None:
            logger.error(f"Could not retrieve listing data for asin `{asin}`. Deferring notification.")
        return listing

    async def _record_notification(
        self, subscription: Subscription, envelope: NotificationEnvelope
    ) -> Tuple[Notification, Optional[DispatchOutcome]]:
        """
        Create the PROCESSING record for this message.

        A redelivered message reuses its PROCESSING record. If the record is
        already terminal the message was handled but not deleted; its earlier
        outcome is returned and nothing is dispatched.
        """
        if envelope.notification_id:
            existing = (await self.db.execute(
                select(Notification)
                .where(Notification.amz_notification_id == envelope.notification_id)
                .order_by(Notification.id.desc())
            )).scalars().first()
            if existing is not None:
                status = NotificationStatus(existing.status)
                if status.is_terminal:
                    logger.info(f"Notification {envelope.notification_id} already {status.value.lower()}")
                    if status is NotificationStatus.PROCESSED:
                        return existing, DispatchOutcome.processed("already processed")
                    return existing, DispatchOutcome.dropped(existing.status_reason or "already dropped")
                logger.info(f"Resuming notification #{existing.id} ({envelope.notification_id})")
                return existing, None

        notification = Notification(
            subscription_id=subscription.id,
            amz_notification_id=envelope.notification_id,
            status=NotificationStatus.PROCESSING.value,
            event_time=envelope.event_time,
            payload=envelope.body,
        )
        self.db.add(notification)
        await self.db.commit()
        return notification, None

    async def _finalize(self, notification_id: int, outcome: DispatchOutcome) -> None:
        if outcome.kind is DispatchOutcomeKind.DEFERRED:
            logger.info(f"Notification #{notification_id} deferred: {outcome.reason}")
            return

        notification = await self.db.get(Notification, notification_id)
        if outcome.kind is DispatchOutcomeKind.PROCESSED:
            notification.status = NotificationStatus.PROCESSED.value
        else:
            notification.status = NotificationStatus.DROPPED.value
            notification.status_reason = outcome.reason
        notification.processed_at = datetime.now(timezone.utc)
        await self.db.commit()
