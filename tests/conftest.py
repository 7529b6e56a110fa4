# tests/conftest.py
import json
import os
import tempfile

# offer_tracker.database builds its engine at import time
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), 'offer_tracker_test.db')}",
)

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from offer_tracker import models  # noqa: F401
from offer_tracker.database import Base
from offer_tracker.core.config import Settings
from offer_tracker.core.enums import NotificationType
from offer_tracker.models.listing import Listing
from offer_tracker.models.seller import Seller
from offer_tracker.models.subscription import Subscription
from offer_tracker.services.listing_locks import ListingLockRegistry

US_MARKETPLACE = "ATVPDKIKX0DER"
OWN_MERCHANT = "S1"
TEST_ASIN = "B000TEST01"

SUBSCRIPTION_IDS = {
    NotificationType.ANY_OFFER_CHANGED: "sub-any-offer-changed",
    NotificationType.LISTINGS_ITEM_STATUS_CHANGE: "sub-listing-status",
    NotificationType.REPORT_PROCESSING_FINISHED: "sub-report-finished",
    NotificationType.PRICING_HEALTH: "sub-pricing-health",
}


@pytest.fixture
def settings():
    """Provide test settings"""
    return Settings(
        DATABASE_URL=os.environ["DATABASE_URL"],
        SQS_QUEUE_URL="https://sqs.us-east-1.amazonaws.com/123456789012/notifications",
        DESIGNATED_MARKETPLACE_ID=US_MARKETPLACE,
        LISTING_RESOLVER_DELAY_SECONDS=0,
        PRICING_API_BASE_URL="https://pricing.test",
        REPORTS_API_BASE_URL="https://reports.test",
    )


@pytest.fixture(scope="function")
async def test_engine(tmp_path):
    """Create and configure the test database engine (function-scoped)."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'offer_tracker.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Provide a database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def locks():
    """Fresh lock registry; asyncio locks must not outlive the test's event loop"""
    return ListingLockRegistry()


@pytest.fixture
async def seller(db_session):
    seller = Seller(merchant_id=OWN_MERCHANT, name="Own Store")
    db_session.add(seller)
    await db_session.commit()
    return seller


@pytest.fixture
async def subscriptions(db_session):
    rows = {
        notification_type: Subscription(
            amz_subscription_id=amz_id,
            notification_type=notification_type.value,
        )
        for notification_type, amz_id in SUBSCRIPTION_IDS.items()
    }
    db_session.add_all(rows.values())
    await db_session.commit()
    return rows


@pytest.fixture
async def listing(db_session, seller):
    listing = Listing(seller_id=seller.id, asin=TEST_ASIN)
    db_session.add(listing)
    await db_session.commit()
    return listing


# --- Payload builders ---

def offer_payload(seller_id, price, shipping="0.00", fba=True, winner=False,
                  condition="new", featured=True, feedback_rating=None):
    """One element of an ANY_OFFER_CHANGED Offers array"""
    offer = {
        "SellerId": seller_id,
        "SubCondition": condition,
        "ListingPrice": {"Amount": price, "CurrencyCode": "USD"},
        "Shipping": {"Amount": shipping, "CurrencyCode": "USD"},
        "IsFulfilledByAmazon": fba,
        "IsBuyBoxWinner": winner,
        "IsFeaturedMerchant": featured,
        "ShipsFrom": {"State": "WA", "Country": "US"},
        "ShippingTime": {"MaximumHours": 48, "MinimumHours": 24, "AvailabilityType": "NOW"},
        "PrimeInformation": {"IsOfferPrime": fba, "IsOfferNationalPrime": fba},
    }
    if feedback_rating is not None:
        offer["SellerFeedbackRating"] = {
            "SellerPositiveFeedbackRating": feedback_rating,
            "FeedbackCount": 120,
        }
    return offer


def envelope(notification_type, payload, notification_id="n-1",
             event_time="2024-05-01T12:00:00Z", subscription_id=None):
    return {
        "NotificationVersion": "1.0",
        "NotificationType": notification_type.value,
        "PayloadVersion": "1.0",
        "EventTime": event_time,
        "Payload": payload,
        "NotificationMetadata": {
            "ApplicationId": "amzn1.sellerapps.app.test",
            "SubscriptionId": subscription_id or SUBSCRIPTION_IDS[notification_type],
            "PublishTime": event_time,
            "NotificationId": notification_id,
        },
    }


def offer_changed_body(offers, asin=TEST_ASIN, seller_id=OWN_MERCHANT, marketplace_id=US_MARKETPLACE,
                       summary=None, **kwargs):
    payload = {
        "AnyOfferChangedNotification": {
            "SellerId": seller_id,
            "OfferChangeTrigger": {
                "MarketplaceId": marketplace_id,
                "ASIN": asin,
                "ItemCondition": "new",
                "TimeOfOfferChange": "2024-05-01T11:59:58Z",
            },
            "Summary": summary or {},
            "Offers": offers,
        }
    }
    return json.dumps(envelope(NotificationType.ANY_OFFER_CHANGED, payload, **kwargs))


@pytest.fixture
def build_offer():
    return offer_payload


@pytest.fixture
def build_envelope():
    return envelope


@pytest.fixture
def build_offer_changed():
    return offer_changed_body
