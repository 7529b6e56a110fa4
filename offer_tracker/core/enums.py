"""
Shared enums and constants used across the application.
"""

from enum import Enum


class FulfillmentChannel(str, Enum):
    FBA = "fba"
    MERCHANT = "merchant"

    @property
    def is_fba(self) -> bool:
        return self is FulfillmentChannel.FBA

    @property
    def summary_label(self) -> str:
        # Label used in the FulfillmentChannel field of notification summaries
        return "Amazon" if self is FulfillmentChannel.FBA else "Merchant"

    @classmethod
    def from_is_fba(cls, is_fba: bool) -> "FulfillmentChannel":
        return cls.FBA if is_fba else cls.MERCHANT


class NotificationType(str, Enum):
    """Notification types this service subscribes to"""
    LISTINGS_ITEM_STATUS_CHANGE = "LISTINGS_ITEM_STATUS_CHANGE"
    REPORT_PROCESSING_FINISHED = "REPORT_PROCESSING_FINISHED"
    ANY_OFFER_CHANGED = "ANY_OFFER_CHANGED"
    PRICING_HEALTH = "PRICING_HEALTH"


class NotificationStatus(str, Enum):
    PROCESSING = "PROCESSING"
    PROCESSED = "PROCESSED"
    DROPPED = "DROPPED"

    @property
    def is_terminal(self) -> bool:
        return self is not NotificationStatus.PROCESSING


class BuyboxEvent(str, Enum):
    WON = "WON"
    LOST = "LOST"


class ReportStatus(str, Enum):
    IN_QUEUE = "IN_QUEUE"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    CANCELLED = "CANCELLED"
    FATAL = "FATAL"


class ReportType(str, Enum):
    MERCHANT_LISTINGS_DATA_LITE = "GET_MERCHANT_LISTINGS_DATA_LITE"
    SELLER_FEEDBACK_DATA = "GET_SELLER_FEEDBACK_DATA"


# Upstream fulfillment type codes seen in PRICING_HEALTH merchant offers
FBA_FULFILLMENT_TYPES = {"FBA", "AFN", "AMAZON"}
MERCHANT_FULFILLMENT_TYPES = {"MFN", "MERCHANT"}

NEW_CONDITION = "new"


class DispatchOutcomeKind(str, Enum):
    """Result of routing one notification"""
    PROCESSED = "PROCESSED"   # handled; record finalized, message deleted
    DROPPED = "DROPPED"       # can never succeed; record finalized, message deleted
    DEFERRED = "DEFERRED"     # blocked on a dependency; left for redelivery
