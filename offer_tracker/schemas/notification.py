"""
Typed views of inbound notifications.

Raw queue bodies are parsed once at the router boundary; handlers and the
reconciler only ever see these models.
"""
import json
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from offer_tracker.core.enums import FulfillmentChannel, NEW_CONDITION
from offer_tracker.core.exceptions import MalformedPayloadError
from offer_tracker.schemas.payload import get_path, first_path


def _to_decimal(v):
    if v is None or v == '':
        return None
    if isinstance(v, Decimal):
        return v
    try:
        return Decimal(str(v))
    except (InvalidOperation, ValueError, TypeError):
        return None


class PayloadModel(BaseModel):
    """Base for payload views; validation errors surface as MalformedPayloadError."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @classmethod
    def build(cls, **fields):
        try:
            return cls(**fields)
        except ValidationError as e:
            raise MalformedPayloadError(f"Invalid {cls.__name__}: {e}") from e


class OfferEntry(PayloadModel):
    """One element of an ANY_OFFER_CHANGED ``Offers`` array."""

    seller_id: Optional[str] = None
    sub_condition: Optional[str] = None
    listing_price: Optional[Decimal] = None
    shipping_price: Optional[Decimal] = None
    is_fulfilled_by_amazon: bool = False
    is_buybox_winner: bool = False
    is_featured_merchant: bool = False

    feedback_count: Optional[int] = None
    positive_feedback_rating: Optional[Decimal] = None

    ships_from_state: Optional[str] = None
    ships_from_country: Optional[str] = None
    shipping_maximum_hours: Optional[int] = None
    shipping_minimum_hours: Optional[int] = None
    shipping_available_date: Optional[str] = None
    shipping_availability_type: Optional[str] = None
    is_offer_prime: Optional[bool] = None
    is_offer_national_prime: Optional[bool] = None
    ships_domestically: Optional[bool] = None

    @field_validator('listing_price', 'shipping_price', 'positive_feedback_rating', mode='before')
    @classmethod
    def validate_amount(cls, v):
        return _to_decimal(v)

    @field_validator('is_fulfilled_by_amazon', 'is_buybox_winner', 'is_featured_merchant', mode='before')
    @classmethod
    def default_false(cls, v):
        return False if v is None else v

    @field_validator('feedback_count', 'shipping_maximum_hours', 'shipping_minimum_hours', mode='before')
    @classmethod
    def validate_integers(cls, v):
        if v is None or v == '': return None
        try: return int(v)
        except (ValueError, TypeError): return None

    @field_validator('shipping_available_date', mode='before')
    @classmethod
    def validate_date(cls, v):
        return None if v is None else str(v)

    @classmethod
    def from_payload(cls, raw: Dict[str, Any]) -> "OfferEntry":
        return cls.build(
            seller_id=get_path(raw, 'SellerId'),
            sub_condition=get_path(raw, 'SubCondition'),
            listing_price=get_path(raw, 'ListingPrice.Amount'),
            shipping_price=get_path(raw, 'Shipping.Amount'),
            is_fulfilled_by_amazon=get_path(raw, 'IsFulfilledByAmazon'),
            is_buybox_winner=get_path(raw, 'IsBuyBoxWinner'),
            is_featured_merchant=get_path(raw, 'IsFeaturedMerchant'),
            feedback_count=get_path(raw, 'SellerFeedbackRating.FeedbackCount'),
            positive_feedback_rating=get_path(raw, 'SellerFeedbackRating.SellerPositiveFeedbackRating'),
            ships_from_state=get_path(raw, 'ShipsFrom.State'),
            ships_from_country=get_path(raw, 'ShipsFrom.Country'),
            shipping_maximum_hours=get_path(raw, 'ShippingTime.MaximumHours'),
            shipping_minimum_hours=get_path(raw, 'ShippingTime.MinimumHours'),
            shipping_available_date=get_path(raw, 'ShippingTime.AvailableDate'),
            shipping_availability_type=get_path(raw, 'ShippingTime.AvailabilityType'),
            is_offer_prime=get_path(raw, 'PrimeInformation.IsOfferPrime'),
            is_offer_national_prime=get_path(raw, 'PrimeInformation.IsOfferNationalPrime'),
            ships_domestically=get_path(raw, 'ShipsDomestically'),
        )

    @property
    def channel(self) -> FulfillmentChannel:
        return FulfillmentChannel.from_is_fba(self.is_fulfilled_by_amazon)

    @property
    def is_new_condition(self) -> bool:
        return (self.sub_condition or '').lower() == NEW_CONDITION

    @property
    def missing_fields(self) -> List[str]:
        """Required fields absent from this entry; non-empty means the entry is skipped."""
        required = {
            'SellerId': self.seller_id,
            'ListingPrice.Amount': self.listing_price,
            'Shipping.Amount': self.shipping_price,
        }
        return [name for name, value in required.items() if value is None]

    @property
    def landed_price(self) -> Decimal:
        return self.listing_price + self.shipping_price


class OfferChangedPayload(PayloadModel):
    """The ``AnyOfferChangedNotification`` section of an ANY_OFFER_CHANGED payload."""

    seller_id: Optional[str] = None
    asin: str
    marketplace_id: Optional[str] = None
    item_condition: Optional[str] = None
    summary: Dict[str, Any] = {}
    offers: List[OfferEntry] = []

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "OfferChangedPayload":
        asin = first_path(data, 'OfferChangeTrigger.ASIN', 'OfferChangeTrigger.Asin')
        if not asin:
            raise MalformedPayloadError("ANY_OFFER_CHANGED payload has no OfferChangeTrigger.ASIN")

        summary = get_path(data, 'Summary')
        raw_offers = get_path(data, 'Offers')
        offers = [
            OfferEntry.from_payload(raw)
            for raw in (raw_offers if isinstance(raw_offers, list) else [])
            if isinstance(raw, dict)
        ]
        return cls.build(
            seller_id=get_path(data, 'SellerId'),
            asin=asin,
            marketplace_id=get_path(data, 'OfferChangeTrigger.MarketplaceId'),
            item_condition=get_path(data, 'OfferChangeTrigger.ItemCondition'),
            summary=summary if isinstance(summary, dict) else {},
            offers=offers,
        )


class ListingStatusChange(PayloadModel):
    """LISTINGS_ITEM_STATUS_CHANGE payload."""

    seller_id: Optional[str] = None
    asin: Optional[str] = None
    sku: Optional[str] = None
    statuses: List[str] = []

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "ListingStatusChange":
        statuses = get_path(data, 'Status', default=[])
        if isinstance(statuses, str):
            statuses = [statuses]
        return cls.build(
            seller_id=get_path(data, 'SellerId'),
            asin=get_path(data, 'Asin'),
            sku=get_path(data, 'Sku'),
            statuses=[str(s) for s in statuses],
        )

    @property
    def is_deleted(self) -> bool:
        return 'DELETED' in self.statuses


class ReportProcessingFinished(PayloadModel):
    """The ``reportProcessingFinishedNotification`` section of REPORT_PROCESSING_FINISHED."""

    seller_id: Optional[str] = None
    report_id: str
    report_type: Optional[str] = None
    processing_status: Optional[str] = None
    report_document_id: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "ReportProcessingFinished":
        section = get_path(data, 'ReportProcessingFinishedNotification')
        if not isinstance(section, dict):
            raise MalformedPayloadError("REPORT_PROCESSING_FINISHED payload has no reportProcessingFinishedNotification")
        report_id = get_path(section, 'ReportId')
        if not report_id:
            raise MalformedPayloadError("REPORT_PROCESSING_FINISHED payload has no reportId")
        return cls.build(
            seller_id=get_path(section, 'SellerId'),
            report_id=str(report_id),
            report_type=get_path(section, 'ReportType'),
            processing_status=get_path(section, 'ProcessingStatus'),
            report_document_id=get_path(section, 'ReportDocumentId'),
        )


class PricingHealthPayload(PayloadModel):
    """PRICING_HEALTH payload: the seller's own offer plus reference prices."""

    seller_id: Optional[str] = None
    asin: Optional[str] = None
    marketplace_id: Optional[str] = None
    condition: Optional[str] = None
    fulfillment_type: Optional[str] = None
    listing_price: Optional[Decimal] = None
    shipping_price: Optional[Decimal] = None
    competitive_price_threshold: Optional[Decimal] = None

    @field_validator('listing_price', 'shipping_price', 'competitive_price_threshold', mode='before')
    @classmethod
    def validate_amount(cls, v):
        return _to_decimal(v)

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "PricingHealthPayload":
        return cls.build(
            seller_id=get_path(data, 'SellerId'),
            asin=first_path(data, 'OfferChangeTrigger.ASIN', 'OfferChangeTrigger.Asin'),
            marketplace_id=get_path(data, 'OfferChangeTrigger.MarketplaceId'),
            condition=get_path(data, 'MerchantOffer.Condition'),
            fulfillment_type=get_path(data, 'MerchantOffer.FulfillmentType'),
            listing_price=get_path(data, 'MerchantOffer.ListingPrice.Amount'),
            shipping_price=get_path(data, 'MerchantOffer.Shipping.Amount'),
            competitive_price_threshold=get_path(
                data, 'Summary.ReferencePrice.CompetitivePriceThreshold.Amount'
            ),
        )


class NotificationEnvelope(PayloadModel):
    """
    The outer notification: metadata plus the type-specific ``Payload`` section.

    ``body`` keeps the (unwrapped) message as received for the audit record.
    """

    subscription_id: str
    notification_id: Optional[str] = None
    notification_type: Optional[str] = None
    event_time: Optional[datetime] = None
    body: Dict[str, Any]
    data: Dict[str, Any] = {}

    @classmethod
    def from_body(cls, body: Union[str, bytes, Dict[str, Any]]) -> "NotificationEnvelope":
        if isinstance(body, (str, bytes)):
            try:
                body = json.loads(body)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise MalformedPayloadError(f"Notification body is not valid JSON: {e}") from e
        if not isinstance(body, dict):
            raise MalformedPayloadError("Notification body is not a JSON object")

        subscription_id = get_path(body, 'NotificationMetadata.SubscriptionId')
        # Some notification types (EventBridge style) nest everything under 'detail'
        if subscription_id is None and isinstance(body.get('detail'), dict):
            body = body['detail']
            subscription_id = get_path(body, 'NotificationMetadata.SubscriptionId')
        if subscription_id is None:
            raise MalformedPayloadError("Notification has no NotificationMetadata.SubscriptionId")

        data = get_path(body, 'Payload')
        return cls.build(
            subscription_id=str(subscription_id),
            notification_id=get_path(body, 'NotificationMetadata.NotificationId'),
            notification_type=get_path(body, 'NotificationType'),
            event_time=get_path(body, 'EventTime'),
            body=body,
            data=data if isinstance(data, dict) else {},
        )
