# tests/unit/services/test_notification_router.py
import asyncio
import json
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import func, select

from offer_tracker.core.enums import (
    BuyboxEvent,
    DispatchOutcomeKind,
    NotificationStatus,
    NotificationType,
    ReportStatus,
    ReportType,
)
from offer_tracker.core.exceptions import TransientDependencyError, UnknownReferenceError
from offer_tracker.models.buybox_activity import BuyboxActivity
from offer_tracker.models.listing import Listing
from offer_tracker.models.notification import Notification
from offer_tracker.models.offer import Offer
from offer_tracker.models.offer_summary import OfferSummary
from offer_tracker.models.report import Report
from offer_tracker.models.subscription import Subscription
from offer_tracker.schemas.notification import NotificationEnvelope
from offer_tracker.services.listing_resolver import ListingResolver
from offer_tracker.services.notification_router import DispatchOutcome, NotificationRouter
from offer_tracker.services.report_downloader import ReportCallbackRegistry, ReportDocumentStore, ReportDownloader

TEST_ASIN = "B000TEST01"
OTHER_MARKETPLACE = "A1F83G8C2ARO7P"


class StubResolver(ListingResolver):
    """Creates the listing, returns None, or raises, depending on ``mode``"""

    def __init__(self, mode="create"):
        self.mode = mode
        self.calls = []

    async def resolve(self, db, seller, asin):
        self.calls.append(asin)
        if self.mode == "transient":
            raise TransientDependencyError("pricing API unavailable")
        if self.mode == "none":
            return None
        listing = Listing(seller_id=seller.id, asin=asin)
        db.add(listing)
        await db.commit()
        return listing


@pytest.fixture
def resolver():
    return StubResolver()


@pytest.fixture
def downloader():
    return MagicMock(spec=ReportDownloader)


@pytest.fixture
def callbacks():
    registry = ReportCallbackRegistry()
    registry.register(ReportType.MERCHANT_LISTINGS_DATA_LITE.value, AsyncMock())
    return registry


@pytest.fixture
def router(db_session, resolver, downloader, callbacks, settings, locks):
    return NotificationRouter(
        db_session,
        listing_resolver=resolver,
        report_downloader=downloader,
        report_callbacks=callbacks,
        settings=settings,
        locks=locks,
    )


async def all_rows(db_session, model):
    return (await db_session.execute(select(model).order_by(model.id))).scalars().all()


async def count_rows(db_session, model):
    return (await db_session.execute(select(func.count()).select_from(model))).scalar()


def test_dispatch_outcome_acknowledge():
    assert DispatchOutcome.processed().acknowledge
    assert DispatchOutcome.dropped("bad").acknowledge
    assert not DispatchOutcome.deferred("later").acknowledge


# --- Envelope / subscription ---

async def test_malformed_body_is_dropped_without_record(router, db_session, subscriptions):
    outcome = await router.route("{not json")

    assert outcome.kind is DispatchOutcomeKind.DROPPED
    assert await count_rows(db_session, Notification) == 0


async def test_body_with_invalid_utf8_is_dropped(router, db_session, subscriptions):
    outcome = await router.route(b'{"NotificationType": "\xff\xfe"}')

    assert outcome.kind is DispatchOutcomeKind.DROPPED
    assert outcome.acknowledge
    assert await count_rows(db_session, Notification) == 0


async def test_unknown_subscription_is_dropped(router, db_session, subscriptions, build_offer_changed, build_offer):
    body = build_offer_changed([build_offer("S1", "10.00")], subscription_id="sub-unknown")

    outcome = await router.route(body)

    assert outcome.kind is DispatchOutcomeKind.DROPPED
    assert "sub-unknown" in outcome.reason
    assert await count_rows(db_session, Notification) == 0


async def test_unsupported_notification_type_is_dropped(router, db_session, seller, build_envelope):
    db_session.add(Subscription(amz_subscription_id="sub-fees", notification_type="FEE_PROMOTION"))
    await db_session.commit()
    body = build_envelope(NotificationType.PRICING_HEALTH, {}, subscription_id="sub-fees")

    outcome = await router.route(body)

    assert outcome.kind is DispatchOutcomeKind.DROPPED
    assert "not supported" in outcome.reason
    [notification] = await all_rows(db_session, Notification)
    assert notification.status == NotificationStatus.DROPPED.value
    assert notification.processed_at is not None


# --- ANY_OFFER_CHANGED ---

async def test_offer_changed_reconciles_listing(
    router, db_session, seller, subscriptions, listing, build_offer_changed, build_offer
):
    summary = {
        "NumberOfOffers": [{"Condition": "new", "FulfillmentChannel": "Amazon", "OfferCount": 2}],
        "BuyBoxPrices": [{"Condition": "new", "FulfillmentChannel": "Amazon", "LandedPrice": {"Amount": "10.00"}}],
    }
    body = build_offer_changed(
        [build_offer("S1", "10.00", winner=True), build_offer("S2", "12.00")],
        summary=summary,
    )

    outcome = await router.route(body)

    assert outcome.kind is DispatchOutcomeKind.PROCESSED
    [notification] = await all_rows(db_session, Notification)
    assert notification.status == NotificationStatus.PROCESSED.value
    assert notification.payload["NotificationType"] == NotificationType.ANY_OFFER_CHANGED.value

    offers = await all_rows(db_session, Offer)
    assert [(o.merchant_id, o.rank, o.is_own_offer) for o in offers] == [("S1", 1, True), ("S2", 2, False)]
    assert all(o.notification_id == notification.id for o in offers)

    [summary_row] = await all_rows(db_session, OfferSummary)
    assert summary_row.is_fba is True
    assert summary_row.num_offers == 2
    assert summary_row.buybox_price == Decimal("10.00")

    [activity] = await all_rows(db_session, BuyboxActivity)
    assert activity.event == BuyboxEvent.WON.value
    assert activity.notification_id == notification.id


async def test_offer_changed_other_marketplace_mutates_nothing(
    router, db_session, seller, subscriptions, listing, build_offer_changed, build_offer
):
    body = build_offer_changed(
        [build_offer("S1", "10.00", winner=True)],
        marketplace_id=OTHER_MARKETPLACE,
        summary={"NumberOfOffers": [{"Condition": "new", "OfferCount": 1}]},
    )

    outcome = await router.route(body)

    assert outcome.kind is DispatchOutcomeKind.DROPPED
    assert outcome.acknowledge
    assert await count_rows(db_session, Offer) == 0
    assert await count_rows(db_session, OfferSummary) == 0
    assert await count_rows(db_session, BuyboxActivity) == 0
    [notification] = await all_rows(db_session, Notification)
    assert notification.status == NotificationStatus.DROPPED.value
    assert OTHER_MARKETPLACE in notification.status_reason


async def test_offer_changed_unknown_seller_is_dropped(
    router, db_session, seller, subscriptions, build_offer_changed, build_offer
):
    outcome = await router.route(build_offer_changed([build_offer("S9", "10.00")], seller_id="S9"))

    assert outcome.kind is DispatchOutcomeKind.DROPPED
    assert await count_rows(db_session, Listing) == 0
    assert "unknown seller S9" in outcome.reason
    [notification] = await all_rows(db_session, Notification)
    assert notification.status == NotificationStatus.DROPPED.value
    assert "unknown seller S9" in notification.status_reason


async def test_dispatch_raises_for_unknown_seller(
    router, db_session, seller, subscriptions, build_offer_changed, build_offer
):
    envelope = NotificationEnvelope.from_body(build_offer_changed([build_offer("S9", "10.00")], seller_id="S9"))

    with pytest.raises(UnknownReferenceError, match="unknown seller S9"):
        await router.dispatch(NotificationType.ANY_OFFER_CHANGED.value, envelope, notification=None)


async def test_offer_changed_without_section_is_dropped(router, db_session, seller, subscriptions, build_envelope):
    body = build_envelope(NotificationType.ANY_OFFER_CHANGED, {"SomethingElse": {}})

    outcome = await router.route(body)

    assert outcome.kind is DispatchOutcomeKind.DROPPED
    [notification] = await all_rows(db_session, Notification)
    assert notification.status == NotificationStatus.DROPPED.value


async def test_offer_changed_resolves_unknown_listing(
    router, resolver, db_session, seller, subscriptions, build_offer_changed, build_offer
):
    outcome = await router.route(build_offer_changed([build_offer("S2", "12.00")]))

    assert outcome.kind is DispatchOutcomeKind.PROCESSED
    assert resolver.calls == [TEST_ASIN]
    [listing] = await all_rows(db_session, Listing)
    assert listing.asin == TEST_ASIN
    assert await count_rows(db_session, Offer) == 1



async def test_resolver_runs_without_listing_lock(
    db_session, settings, locks, seller, subscriptions, build_offer_changed, build_offer
):
    held_while_resolving = []

    class LockCheckingResolver(StubResolver):
        async def resolve(self, db, seller, asin):
            held_while_resolving.append(len(locks))
            return await super().resolve(db, seller, asin)

    router = NotificationRouter(db_session, listing_resolver=LockCheckingResolver(), settings=settings, locks=locks)

    outcome = await router.route(build_offer_changed([build_offer("S2", "12.00")]))

    assert outcome.kind is DispatchOutcomeKind.PROCESSED
    assert held_while_resolving == [0]


@pytest.mark.parametrize("mode", ["none", "transient"])
async def test_offer_changed_unresolved_listing_is_deferred(
    router, resolver, db_session, seller, subscriptions, build_offer_changed, build_offer, mode
):
    resolver.mode = mode

    outcome = await router.route(build_offer_changed([build_offer("S2", "12.00")]))

    assert outcome.kind is DispatchOutcomeKind.DEFERRED
    assert not outcome.acknowledge
    [notification] = await all_rows(db_session, Notification)
    assert notification.status == NotificationStatus.PROCESSING.value
    assert await count_rows(db_session, Offer) == 0


async def test_redelivered_deferred_message_reuses_record(
    router, resolver, db_session, seller, subscriptions, build_offer_changed, build_offer
):
    body = build_offer_changed([build_offer("S2", "12.00")], notification_id="n-redeliver")
    resolver.mode = "none"
    assert (await router.route(body)).kind is DispatchOutcomeKind.DEFERRED

    resolver.mode = "create"
    outcome = await router.route(body)

    assert outcome.kind is DispatchOutcomeKind.PROCESSED
    [notification] = await all_rows(db_session, Notification)
    assert notification.status == NotificationStatus.PROCESSED.value


async def test_redelivered_processed_message_is_not_dispatched_again(
    router, db_session, seller, subscriptions, listing, build_offer_changed, build_offer, mocker
):
    body = build_offer_changed([build_offer("S1", "10.00", winner=True)], notification_id="n-twice")
    await router.route(body)
    dispatch = mocker.spy(router, "dispatch")

    outcome = await router.route(body)

    assert outcome.kind is DispatchOutcomeKind.PROCESSED
    assert outcome.reason == "already processed"
    dispatch.assert_not_called()
    assert await count_rows(db_session, Notification) == 1
    assert await count_rows(db_session, BuyboxActivity) == 1


async def test_offer_changed_camelcase_body(router, db_session, seller, subscriptions, listing):
    body = {
        "notificationVersion": "1.0",
        "notificationType": "ANY_OFFER_CHANGED",
        "eventTime": "2024-05-01T12:00:00Z",
        "payload": {
            "anyOfferChangedNotification": {
                "sellerId": "S1",
                "offerChangeTrigger": {"marketplaceId": "ATVPDKIKX0DER", "asin": TEST_ASIN},
                "summary": {},
                "offers": [{
                    "sellerId": "S2",
                    "subCondition": "new",
                    "listingPrice": {"amount": 12.0},
                    "shipping": {"amount": 0},
                    "isFulfilledByAmazon": False,
                    "isBuyBoxWinner": True,
                }],
            }
        },
        "notificationMetadata": {"subscriptionId": "sub-any-offer-changed", "notificationId": "n-camel"},
    }

    outcome = await router.route(json.dumps(body))

    assert outcome.kind is DispatchOutcomeKind.PROCESSED
    [offer] = await all_rows(db_session, Offer)
    assert offer.merchant_id == "S2"
    assert offer.is_fba is False
    assert offer.is_buybox_winner is True


# --- LISTINGS_ITEM_STATUS_CHANGE ---

def status_change(build_envelope, statuses, seller_id="S1", asin=TEST_ASIN, notification_id="n-status"):
    return build_envelope(
        NotificationType.LISTINGS_ITEM_STATUS_CHANGE,
        {"SellerId": seller_id, "MarketplaceId": "ATVPDKIKX0DER", "Asin": asin, "Sku": "SKU-1", "Status": statuses},
        notification_id=notification_id,
    )


async def test_listing_status_change_creates_listing(router, db_session, seller, subscriptions, build_envelope):
    outcome = await router.route(status_change(build_envelope, ["BUYABLE", "DISCOVERABLE"]))

    assert outcome.kind is DispatchOutcomeKind.PROCESSED
    [listing] = await all_rows(db_session, Listing)
    assert listing.asin == TEST_ASIN


async def test_listing_status_change_deletes_listing_and_offers(
    router, db_session, seller, subscriptions, listing, build_envelope, build_offer_changed, build_offer
):
    await router.route(build_offer_changed([build_offer("S1", "10.00", winner=True), build_offer("S2", "11.00")]))
    assert await count_rows(db_session, Offer) == 2

    outcome = await router.route(status_change(build_envelope, ["DELETED"]))

    assert outcome.kind is DispatchOutcomeKind.PROCESSED
    assert await count_rows(db_session, Listing) == 0
    assert await count_rows(db_session, Offer) == 0
    assert await count_rows(db_session, BuyboxActivity) == 0


async def test_listing_status_change_unknown_seller_is_dropped(
    router, db_session, seller, subscriptions, build_envelope
):
    outcome = await router.route(status_change(build_envelope, ["BUYABLE"], seller_id="S9"))

    assert outcome.kind is DispatchOutcomeKind.DROPPED
    assert outcome.acknowledge
    assert await count_rows(db_session, Listing) == 0


async def test_listing_status_change_missing_asin_is_dropped(
    router, db_session, seller, subscriptions, build_envelope
):
    outcome = await router.route(status_change(build_envelope, ["BUYABLE"], asin=None))
    assert outcome.kind is DispatchOutcomeKind.DROPPED


# --- REPORT_PROCESSING_FINISHED ---

def report_finished(build_envelope, status="DONE", report_id="54321"):
    return build_envelope(
        NotificationType.REPORT_PROCESSING_FINISHED,
        {
            "reportProcessingFinishedNotification": {
                "sellerId": "S1",
                "reportId": report_id,
                "reportType": ReportType.MERCHANT_LISTINGS_DATA_LITE.value,
                "processingStatus": status,
                "reportDocumentId": "amzn1.tortuga.doc",
            }
        },
        notification_id=f"n-report-{status}",
    )


@pytest.fixture
async def report(db_session, seller):
    report = Report(amz_id="54321", seller_id=seller.id, type=ReportType.MERCHANT_LISTINGS_DATA_LITE.value)
    db_session.add(report)
    await db_session.commit()
    return report


async def test_report_done_dispatches_download(
    router, downloader, callbacks, db_session, subscriptions, report, build_envelope
):
    outcome = await router.route(report_finished(build_envelope))

    assert outcome.kind is DispatchOutcomeKind.PROCESSED
    downloader.dispatch.assert_called_once_with(
        report, callbacks.get(ReportType.MERCHANT_LISTINGS_DATA_LITE.value)
    )
    [row] = await all_rows(db_session, Report)
    assert row.status == ReportStatus.DONE.value
    assert row.document_id == "amzn1.tortuga.doc"


async def test_report_done_stores_document_by_default(
    downloader, db_session, settings, locks, subscriptions, report, build_envelope, tmp_path
):
    router = NotificationRouter(
        db_session,
        report_downloader=downloader,
        settings=settings.model_copy(update={"REPORTS_DIR": str(tmp_path)}),
        locks=locks,
    )

    outcome = await router.route(report_finished(build_envelope))

    assert outcome.kind is DispatchOutcomeKind.PROCESSED
    [(dispatched, callback)] = [c.args for c in downloader.dispatch.call_args_list]
    assert dispatched is report
    assert isinstance(callback, ReportDocumentStore)
    assert callback.directory == tmp_path
    [row] = await all_rows(db_session, Report)
    assert row.status == ReportStatus.DONE.value


async def test_report_failed_status_is_saved(router, downloader, db_session, subscriptions, report, build_envelope):
    outcome = await router.route(report_finished(build_envelope, status="FATAL"))

    assert outcome.kind is DispatchOutcomeKind.PROCESSED
    downloader.dispatch.assert_not_called()
    [row] = await all_rows(db_session, Report)
    assert row.status == ReportStatus.FATAL.value


async def test_report_without_callback_is_dropped(
    router, downloader, callbacks, db_session, subscriptions, seller, build_envelope
):
    db_session.add(Report(amz_id="999", seller_id=seller.id, type=ReportType.SELLER_FEEDBACK_DATA.value))
    await db_session.commit()

    outcome = await router.route(report_finished(build_envelope, report_id="999"))

    assert outcome.kind is DispatchOutcomeKind.DROPPED
    downloader.dispatch.assert_not_called()
    [row] = await all_rows(db_session, Report)
    assert row.status == ReportStatus.IN_QUEUE.value


async def test_unknown_report_is_dropped(router, downloader, db_session, subscriptions, seller, build_envelope):
    outcome = await router.route(report_finished(build_envelope, report_id="404"))

    assert outcome.kind is DispatchOutcomeKind.DROPPED
    assert "unknown report 404" in outcome.reason
    downloader.dispatch.assert_not_called()


# --- PRICING_HEALTH ---

def pricing_health(build_envelope, threshold="18.99", fulfillment_type="MFN", condition="new",
                   listing_price="20.00", detail=False, notification_id="n-health"):
    payload = {
        "sellerId": "S1",
        "offerChangeTrigger": {"marketplaceId": "ATVPDKIKX0DER", "asin": TEST_ASIN},
        "merchantOffer": {
            "condition": condition,
            "fulfillmentType": fulfillment_type,
            "listingPrice": {"amount": listing_price, "currencyCode": "USD"},
            "shipping": {"amount": "2.00", "currencyCode": "USD"},
        },
        "summary": {},
    }
    if threshold is not None:
        payload["summary"]["referencePrice"] = {"competitivePriceThreshold": {"amount": threshold}}
    body = build_envelope(NotificationType.PRICING_HEALTH, payload, notification_id=notification_id)
    return {"detail": body} if detail else body


async def test_pricing_health_patches_own_offer_and_threshold(
    router, db_session, seller, subscriptions, listing, build_envelope, build_offer_changed, build_offer
):
    await router.route(build_offer_changed([build_offer("S2", "21.00", fba=False, winner=True)]))

    outcome = await router.route(pricing_health(build_envelope))

    assert outcome.kind is DispatchOutcomeKind.PROCESSED
    offers = {o.merchant_id: o for o in await all_rows(db_session, Offer)}
    assert offers["S2"].listing_price == Decimal("21.00")
    assert offers["S1"].is_own_offer is True
    assert offers["S1"].is_fba is False
    assert offers["S1"].landed_price == Decimal("22.00")
    [summary] = await all_rows(db_session, OfferSummary)
    assert summary.is_fba is False
    assert summary.competitive_price_threshold == Decimal("18.99")
    assert await count_rows(db_session, BuyboxActivity) == 0



async def test_pricing_health_waits_for_listing_lock(router, locks, seller, subscriptions, listing, build_envelope):
    listing_id = listing.id
    release = asyncio.Event()
    holding = asyncio.Event()

    async def other_writer():
        async with locks.hold(listing_id):
            holding.set()
            await release.wait()

    writer = asyncio.create_task(other_writer())
    await holding.wait()
    patch = asyncio.create_task(router.route(pricing_health(build_envelope)))
    await asyncio.sleep(0.05)

    assert not patch.done()

    release.set()
    await writer
    assert (await patch).kind is DispatchOutcomeKind.PROCESSED


async def test_pricing_health_updates_existing_own_offer(
    router, db_session, seller, subscriptions, listing, build_envelope
):
    await router.route(pricing_health(build_envelope, notification_id="n-1"))
    await router.route(pricing_health(build_envelope, listing_price="19.00", threshold="17.50", notification_id="n-2"))

    [offer] = await all_rows(db_session, Offer)
    assert offer.listing_price == Decimal("19.00")
    [summary] = await all_rows(db_session, OfferSummary)
    assert summary.competitive_price_threshold == Decimal("17.50")


async def test_pricing_health_detail_wrapper_and_fba(router, db_session, seller, subscriptions, listing, build_envelope):
    outcome = await router.route(json.dumps(pricing_health(build_envelope, fulfillment_type="AFN", detail=True)))

    assert outcome.kind is DispatchOutcomeKind.PROCESSED
    [offer] = await all_rows(db_session, Offer)
    assert offer.is_fba is True


async def test_pricing_health_without_threshold_changes_nothing(
    router, db_session, seller, subscriptions, listing, build_envelope
):
    outcome = await router.route(pricing_health(build_envelope, threshold=None))

    assert outcome.kind is DispatchOutcomeKind.PROCESSED
    assert await count_rows(db_session, Offer) == 0


async def test_pricing_health_unknown_fulfillment_type_is_dropped(
    router, db_session, seller, subscriptions, listing, build_envelope
):
    outcome = await router.route(pricing_health(build_envelope, fulfillment_type="XYZ"))

    assert outcome.kind is DispatchOutcomeKind.DROPPED
    assert await count_rows(db_session, Offer) == 0


async def test_pricing_health_condition_filter(router, settings, db_session, seller, subscriptions, listing, build_envelope):
    # Off by default: used-condition offers are patched like any other
    await router.route(pricing_health(build_envelope, condition="used", notification_id="n-used-1"))
    assert await count_rows(db_session, Offer) == 1

    router.settings = settings.model_copy(update={"PRICING_HEALTH_ENFORCE_CONDITION": True})
    outcome = await router.route(
        pricing_health(build_envelope, condition="used", listing_price="1.00", notification_id="n-used-2")
    )

    assert outcome.kind is DispatchOutcomeKind.PROCESSED
    [offer] = await all_rows(db_session, Offer)
    assert offer.listing_price == Decimal("20.00")
